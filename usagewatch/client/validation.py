"""Input validation for the organisation ID and session token.

Both values end up in an HTTP request (the org ID in the URL path, the token
in the ``Cookie`` header), so they are checked against a strict character
whitelist before being stored or sent.
"""

from __future__ import annotations

import logging
import re
from typing import Final

from usagewatch.core.exceptions import CredentialValidationError

__all__ = [
    "MAX_SESSION_TOKEN_LENGTH",
    "MAX_ORG_ID_LENGTH",
    "validate_session_token",
    "validate_org_id",
]

logger = logging.getLogger(__name__)

MAX_SESSION_TOKEN_LENGTH: Final[int] = 4096
MAX_ORG_ID_LENGTH: Final[int] = 128

#: Alphanumerics, ``-``, ``_``, ``.`` and the base64 characters ``+ / =``.
_SESSION_TOKEN_RE: Final[re.Pattern[str]] = re.compile(r"[A-Za-z0-9\-_.+/=]+")

#: UUID-like identifiers: alphanumerics, ``-`` and ``_``.
_ORG_ID_RE: Final[re.Pattern[str]] = re.compile(r"[A-Za-z0-9\-_]+")


def validate_session_token(token: str) -> str:
    """Return *token* unchanged if it is a well-formed session token.

    Raises:
        CredentialValidationError: If the token is empty, longer than
            :data:`MAX_SESSION_TOKEN_LENGTH`, or contains a character outside
            the whitelist (which would allow header injection).
    """
    if not token:
        raise CredentialValidationError("session_token", "must not be empty")
    if len(token) > MAX_SESSION_TOKEN_LENGTH:
        raise CredentialValidationError(
            "session_token", f"longer than {MAX_SESSION_TOKEN_LENGTH} characters"
        )
    if not _SESSION_TOKEN_RE.fullmatch(token):
        raise CredentialValidationError("session_token", "contains invalid characters")
    return token


def validate_org_id(org_id: str) -> str:
    """Return *org_id* unchanged if it is a well-formed organisation ID.

    Raises:
        CredentialValidationError: If the ID is empty, longer than
            :data:`MAX_ORG_ID_LENGTH`, or has an invalid format.
    """
    if not org_id:
        raise CredentialValidationError("organization_id", "must not be empty")
    if len(org_id) > MAX_ORG_ID_LENGTH:
        raise CredentialValidationError(
            "organization_id", f"longer than {MAX_ORG_ID_LENGTH} characters"
        )
    if not _ORG_ID_RE.fullmatch(org_id):
        raise CredentialValidationError("organization_id", "invalid format")
    return org_id
