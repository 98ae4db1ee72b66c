"""Unit tests for admission token validation."""

import pytest

from src.relay.auth import (
    POLICY_VIOLATION,
    AdmissionRejected,
    AnyTokenValidator,
    StaticTokenValidator,
    build_validator,
    token_from_path,
)
from src.relay.config import AuthConfig


class TestStaticTokenValidator:
    """Test allow-list validation."""

    def test_accepts_listed_token(self) -> None:
        """Test a listed token passes."""
        validator = StaticTokenValidator(["alpha", "beta"])

        validator.check("beta")

    def test_rejects_unlisted_token(self) -> None:
        """Test an unlisted token is refused with 1008."""
        validator = StaticTokenValidator(["alpha"])

        with pytest.raises(AdmissionRejected) as exc_info:
            validator.check("gamma")

        assert exc_info.value.reason == "Invalid token"
        assert exc_info.value.code == POLICY_VIOLATION == 1008

    @pytest.mark.parametrize("token", [None, ""])
    def test_rejects_missing_token(self, token: str | None) -> None:
        """Test a missing token is refused before validation."""
        validator = StaticTokenValidator(["alpha"])

        with pytest.raises(AdmissionRejected, match="Authentication required"):
            validator.check(token)

    def test_empty_allow_list_refuses_everything(self) -> None:
        """Test no tokens configured means nothing is admitted."""
        validator = StaticTokenValidator([""])

        with pytest.raises(AdmissionRejected):
            validator.check("anything")


class TestAnyTokenValidator:
    """Test development validator."""

    def test_accepts_any_non_empty_token(self) -> None:
        """Test any token passes."""
        AnyTokenValidator().check("whatever")

    def test_still_requires_token(self) -> None:
        """Test a token must be present."""
        with pytest.raises(AdmissionRejected, match="Authentication required"):
            AnyTokenValidator().check(None)


def test_build_validator_by_mode() -> None:
    """Test the configured mode selects the validator."""
    assert isinstance(build_validator(AuthConfig(mode="any")), AnyTokenValidator)
    assert isinstance(
        build_validator(AuthConfig(mode="static", tokens=["t"])), StaticTokenValidator
    )


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/ws?token=abc", "abc"),
        ("/?token=a%2Bb%3D", "a+b="),
        ("/ws?other=1&token=xyz", "xyz"),
        ("/ws", None),
        ("/ws?token=", None),
        ("", None),
    ],
)
def test_token_from_path(path: str, expected: str | None) -> None:
    """Test the token is read from the query string."""
    assert token_from_path(path) == expected
