"""JSKOS API: mapping query and inference over concept schemes.

:mod:`jskos_api.mappings` translates mapping requests into store-independent
predicates, :mod:`jskos_api.inference` derives mappings through the broader
hierarchy of a concept and :mod:`jskos_api.app` exposes both over HTTP.
"""

from __future__ import annotations

__all__ = [
    "app",
    "concepts",
    "inference",
    "mappings",
    "mongo_store",
    "predicates",
    "ranking",
    "relations",
    "schemas",
    "schemes",
    "service",
    "store",
]
