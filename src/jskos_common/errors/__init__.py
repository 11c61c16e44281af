"""Exception hierarchy and Problem Details support.

Examples
--------
>>> from jskos_common.errors import ErrorCode, MalformedRequestError
>>> try:
...     raise MalformedRequestError("Parameter `to` is not allowed for inference.")
... except MalformedRequestError as e:
...     details = e.to_problem_details(instance="/mappings/infer")
...     assert details["code"] == ErrorCode.MALFORMED_REQUEST
"""

from __future__ import annotations

from jskos_common.errors.codes import BASE_TYPE_URI, ErrorCode, get_type_uri
from jskos_common.errors.exceptions import (
    DatabaseAccessError,
    EntityNotFoundError,
    InvalidBodyError,
    JskosError,
    JskosErrorConfig,
    MalformedBodyError,
    MalformedRequestError,
    SettingsError,
)

__all__ = [
    "BASE_TYPE_URI",
    "DatabaseAccessError",
    "EntityNotFoundError",
    "ErrorCode",
    "InvalidBodyError",
    "JskosError",
    "JskosErrorConfig",
    "MalformedBodyError",
    "MalformedRequestError",
    "SettingsError",
    "get_type_uri",
]
