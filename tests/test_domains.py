"""Tests for domain validation and site options."""
from __future__ import annotations

import pytest

from sitectl.domains import SiteOptions, artifact_name, normalize_domain_input, validate_domain
from sitectl.errors import InvalidDomainError
from sitectl.exit_codes import ExitCode


@pytest.mark.parametrize(
    "value",
    ["example.com", "a.com", "sub.example.co.uk", "my-site.example", "localhost", "x1.io"],
)
def test_validate_domain_accepts_hostnames(value: str) -> None:
    """Dot-separated alphanumeric labels are accepted."""
    assert validate_domain(value) == value


def test_validate_domain_normalises_case_and_whitespace() -> None:
    """Surrounding whitespace is stripped and the name lower-cased."""
    assert validate_domain("  Example.COM ") == "example.com"


@pytest.mark.parametrize(
    "value",
    [
        "",
        "   ",
        "-example.com",
        "example-.com",
        "exa mple.com",
        "example..com",
        "example.com/",
        "http://example.com",
        "ex_ample.com",
        "a" * 64 + ".com",
    ],
)
def test_validate_domain_rejects_invalid_names(value: str) -> None:
    """Malformed names raise ``InvalidDomainError`` with a validation exit code."""
    with pytest.raises(InvalidDomainError) as excinfo:
        validate_domain(value)
    assert excinfo.value.exit_code is ExitCode.VALIDATION
    assert excinfo.value.hint


def test_validate_domain_rejects_overlong_names() -> None:
    """Names longer than 253 characters are rejected."""
    label = "a" * 60
    value = ".".join([label] * 5)
    assert len(value) > 253
    with pytest.raises(InvalidDomainError, match="253"):
        validate_domain(value)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("https://example.com/", "example.com"),
        ("http://www.example.com", "example.com"),
        ("www.example.com", "example.com"),
        ("  example.com  ", "example.com"),
    ],
)
def test_normalize_domain_input(raw: str, expected: str) -> None:
    """Prompted input has its scheme, trailing slash, and www prefix removed."""
    assert normalize_domain_input(raw) == expected


def test_site_options_certificate_names() -> None:
    """The www name is only requested when the redirect is enabled."""
    plain = SiteOptions.build("Example.com")
    redirect = SiteOptions.build("example.com", www_redirect=True)

    assert plain.domain == "example.com"
    assert plain.certificate_names() == ("example.com",)
    assert redirect.certificate_names() == ("example.com", "www.example.com")
    assert redirect.www_domain == "www.example.com"
    assert redirect.artifact_name == artifact_name("example.com") == "example.com.conf"
