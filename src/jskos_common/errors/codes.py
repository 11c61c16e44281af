"""Error code registry and type URIs for Problem Details.

Codes and URIs are stable; clients match on them.

Examples
--------
>>> from jskos_common.errors.codes import ErrorCode, get_type_uri
>>> get_type_uri(ErrorCode.ENTITY_NOT_FOUND)
'https://jskos.dev/problems/entity-not-found'
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

__all__ = [
    "BASE_TYPE_URI",
    "ErrorCode",
    "get_type_uri",
]


BASE_TYPE_URI: Final[str] = "https://jskos.dev/problems"


class ErrorCode(StrEnum):
    """Stable error codes for JSKOS API exceptions.

    Attributes
    ----------
    MALFORMED_REQUEST
        Query parameters are missing or contradictory.
    MALFORMED_BODY
        Request body could not be parsed.
    INVALID_BODY
        Request body parsed but violates a constraint.
    ENTITY_NOT_FOUND
        The requested entity does not exist.
    DATABASE_ACCESS
        The entity store failed.
    CONFIGURATION_ERROR
        Runtime settings are invalid.
    RUNTIME_ERROR
        Unclassified runtime failure.
    """

    # Request (4xx)
    MALFORMED_REQUEST = "malformed-request"
    MALFORMED_BODY = "malformed-body"
    INVALID_BODY = "invalid-body"
    ENTITY_NOT_FOUND = "entity-not-found"

    # Storage (5xx)
    DATABASE_ACCESS = "database-access"

    # Configuration & runtime
    CONFIGURATION_ERROR = "configuration-error"
    RUNTIME_ERROR = "runtime-error"

    def __str__(self) -> str:
        """Return the code value as a string."""
        return self.value


def get_type_uri(code: ErrorCode) -> str:
    """Get the RFC 9457 type URI for an error code.

    Parameters
    ----------
    code : ErrorCode
        Error code enum value.

    Returns
    -------
    str
        Complete type URI (e.g., "https://jskos.dev/problems/invalid-body").
    """
    return f"{BASE_TYPE_URI}/{code.value}"
