"""Shared foundation for the JSKOS API packages.

The modules in this package provide the error taxonomy with RFC 9457 Problem Details,
structured logging, Prometheus metrics and typed runtime settings used by
:mod:`jskos_api`.
"""

from __future__ import annotations

__all__ = [
    "errors",
    "fastapi_helpers",
    "logging",
    "observability",
    "problem_details",
    "settings",
    "types",
]
