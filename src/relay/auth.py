"""Admission token validation.

Tokens are issued by an external service and arrive in the ``token`` query
parameter of the connection URI. The relay treats them as opaque strings and
only decides whether to admit the connection.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from collections.abc import Iterable
from urllib.parse import parse_qs, urlsplit

from src.relay.config import AuthConfig

logger = logging.getLogger(__name__)

# Close code for policy-violation rejection (RFC 6455)
POLICY_VIOLATION = 1008


class AdmissionRejected(Exception):
    """Connection refused before admission."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = POLICY_VIOLATION


class TokenValidator(ABC):
    """Decides whether a token may open a relay connection."""

    @abstractmethod
    def is_valid(self, token: str) -> bool:
        """Check a non-empty token."""
        pass

    def check(self, token: str | None) -> None:
        """Validate a token taken from a connection request.

        Raises:
            AdmissionRejected: If the token is missing or invalid
        """
        if not token:
            raise AdmissionRejected("Authentication required")
        if not self.is_valid(token):
            raise AdmissionRejected("Invalid token")


class StaticTokenValidator(TokenValidator):
    """Accepts only tokens from a fixed allow-list."""

    def __init__(self, tokens: Iterable[str]) -> None:
        self._tokens = [token for token in tokens if token]
        if not self._tokens:
            logger.warning("Static token validator has no tokens; every connection will be refused")

    def is_valid(self, token: str) -> bool:
        # Compare against every entry so timing does not reveal a match position.
        matched = False
        for candidate in self._tokens:
            if secrets.compare_digest(candidate.encode(), token.encode()):
                matched = True
        return matched


class AnyTokenValidator(TokenValidator):
    """Accepts any non-empty token. For local development only."""

    def is_valid(self, token: str) -> bool:
        return True


def build_validator(config: AuthConfig) -> TokenValidator:
    """Create the validator selected by configuration."""
    if config.mode == "any":
        logger.warning("Token validation disabled: any non-empty token is admitted")
        return AnyTokenValidator()
    return StaticTokenValidator(config.tokens)


def token_from_path(path: str) -> str | None:
    """Extract the ``token`` query parameter from a request path."""
    values = parse_qs(urlsplit(path).query).get("token")
    if not values:
        return None
    return values[0]
