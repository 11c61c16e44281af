"""Resolution of scheme references to canonical schemes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from jskos_api.predicates import EqualsIgnoreCase, FieldMatch, field_in
from jskos_common.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from jskos_api.store import EntityStore
    from jskos_common.types import JsonObject

__all__ = [
    "Scheme",
    "SchemeResolver",
    "is_uri",
    "split_values",
]

logger = get_logger(__name__)

_URI_PATTERN: Final = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:\S+$")


def is_uri(value: str) -> bool:
    """Return whether ``value`` looks like an absolute URI (``scheme:rest``)."""
    return bool(_URI_PATTERN.match(value))


def split_values(value: str | None) -> list[str]:
    """Split a pipe-delimited parameter, dropping empty parts."""
    if not value:
        return []
    return [part for part in value.split("|") if part]


def _strings(value: object) -> list[str]:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []


@dataclass(frozen=True, slots=True)
class Scheme:
    """Canonical view of a stored concept scheme.

    Attributes
    ----------
    uri : str
        Canonical URI.
    identifier : tuple[str, ...]
        Alternate URIs treated as equivalent to ``uri``.
    notation : tuple[str, ...]
        Scheme notations.
    document : JsonObject
        The stored document.
    """

    uri: str
    identifier: tuple[str, ...] = ()
    notation: tuple[str, ...] = ()
    document: JsonObject = field(default_factory=dict, compare=False, repr=False)

    @property
    def uris(self) -> list[str]:
        """Canonical URI followed by the alternates, without duplicates."""
        return list(dict.fromkeys((self.uri, *self.identifier)))

    def matches(self, reference: JsonObject | str) -> bool:
        """Return whether ``reference`` (a URI or ``{"uri": ...}`` object) names this scheme."""
        if isinstance(reference, str):
            candidates = {reference}
        else:
            uri = reference.get("uri")
            candidates = set(_strings(reference.get("identifier")))
            if isinstance(uri, str):
                candidates.add(uri)
        return not candidates.isdisjoint(self.uris)

    @classmethod
    def from_document(cls, document: JsonObject) -> Scheme:
        """Build a Scheme from a stored scheme document."""
        uri = document.get("uri")
        return cls(
            uri=uri if isinstance(uri, str) else "",
            identifier=tuple(_strings(document.get("identifier"))),
            notation=tuple(_strings(document.get("notation"))),
            document=document,
        )


class SchemeResolver:
    """Resolve scheme references by URI, alternate identifier or notation.

    The resolver is a stateless wrapper over the scheme store and is safe to
    share between concurrent requests.

    Parameters
    ----------
    schemes : EntityStore
        Store holding scheme documents.
    """

    def __init__(self, schemes: EntityStore) -> None:
        self._schemes = schemes

    async def resolve(self, reference: str) -> Scheme | None:
        """Return the scheme named by ``reference``, or None when it is unknown.

        URIs and alternate identifiers match exactly; notations match exactly
        but ignoring case.

        Parameters
        ----------
        reference : str
            URI, alternate identifier or notation.

        Returns
        -------
        Scheme | None
            Canonical scheme, or None. Callers fall back to treating the raw
            reference as a literal URI.
        """
        if not reference:
            return None
        document = await self._schemes.find_one(field_in(("uri", "identifier"), (reference,)))
        if document is None:
            document = await self._schemes.find_one(
                FieldMatch("notation", EqualsIgnoreCase(reference))
            )
        if document is None:
            logger.debug(
                "Unknown scheme reference",
                extra={"operation": "resolve_scheme", "reference": reference},
            )
            return None
        return Scheme.from_document(document)

    async def uris_for(self, references: Iterable[str]) -> list[str]:
        """Expand ``references`` to every URI they stand for.

        Known schemes contribute their URI and alternates; unknown references
        are kept as literal URIs.
        """
        uris: list[str] = []
        for reference in references:
            scheme = await self.resolve(reference)
            uris.extend(scheme.uris if scheme is not None else [reference])
        return list(dict.fromkeys(uris))

    async def resolve_all(self, references: Iterable[str]) -> list[Scheme]:
        """Resolve ``references`` keeping unknown ones as bare ``Scheme(uri=reference)``."""
        resolved: list[Scheme] = []
        for reference in references:
            scheme = await self.resolve(reference)
            resolved.append(scheme if scheme is not None else Scheme(uri=reference))
        return resolved

