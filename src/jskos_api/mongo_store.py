"""MongoDB-backed entity stores.

Predicates are compiled to native filters by :func:`compile_predicate`. All
user input that ends up in a ``$regex`` is escaped with :func:`re.escape`.
Driver failures surface as :class:`~jskos_common.errors.DatabaseAccessError`
and are not retried here.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Final

from pymongo import ASCENDING, DESCENDING, AsyncMongoClient
from pymongo.errors import PyMongoError

from jskos_api.predicates import (
    AllOf,
    AnyOf,
    ContainsText,
    Equals,
    EqualsIgnoreCase,
    Exists,
    FieldMatch,
    MatchAll,
    Missing,
    Not,
    Prefix,
)
from jskos_api.store import JskosStores
from jskos_common.errors import DatabaseAccessError
from jskos_common.logging import get_logger

if TYPE_CHECKING:
    from pymongo.asynchronous.collection import AsyncCollection

    from jskos_api.predicates import Predicate
    from jskos_api.store import SortSpec
    from jskos_common.settings import RuntimeSettings
    from jskos_common.types import JsonObject, JsonValue

__all__ = [
    "MAPPING_INDEXES",
    "MongoEntityStore",
    "compile_predicate",
    "connect_stores",
]

logger = get_logger(__name__)

type MongoFilter = dict[str, Any]

# Never true: every stored document carries an _id.
_MATCH_NOTHING: Final[MongoFilter] = {"_id": {"$exists": False}}


def _mapping_indexes() -> list[list[tuple[str, int]]]:
    indexes: list[list[tuple[str, int]]] = []
    for path in (
        "from.memberSet",
        "from.memberList",
        "from.memberChoice",
        "to.memberSet",
        "to.memberList",
        "to.memberChoice",
        "fromScheme",
        "toScheme",
    ):
        indexes.extend([[(f"{path}.notation", ASCENDING)], [(f"{path}.uri", ASCENDING)]])
    indexes.append([("fromScheme.uri", ASCENDING), ("toScheme.uri", ASCENDING)])
    for field in ("fromScheme.uri", "fromScheme.notation", "toScheme.uri", "toScheme.notation"):
        indexes.append([(field, ASCENDING), ("modified", DESCENDING)])
    indexes.append([("partOf.uri", ASCENDING), ("modified", DESCENDING)])
    indexes.extend(
        [(field, ASCENDING)]
        for field in (
            "uri",
            "identifier",
            "type",
            "created",
            "modified",
            "mappingRelevance",
            "partOf.uri",
            "creator.uri",
            "creator.prefLabel.de",
            "creator.prefLabel.en",
        )
    )
    return indexes


MAPPING_INDEXES: Final[list[list[tuple[str, int]]]] = _mapping_indexes()
"""Index key lists created on the mappings collection."""


def _compile_field(path: str, predicate: Predicate) -> MongoFilter:  # noqa: PLR0911
    match predicate:
        case Equals(value=value):
            return {path: value}
        case EqualsIgnoreCase(value=value):
            return {path: {"$regex": f"^{re.escape(value)}$", "$options": "i"}}
        case Prefix(prefix=prefix):
            return {path: {"$regex": f"^{re.escape(prefix)}"}}
        case ContainsText(text=text):
            return {path: {"$regex": re.escape(text), "$options": "i"}}
        case Exists():
            return {path: {"$exists": True}}
        case Missing():
            return {path: {"$exists": False}}
        case AnyOf(items=items):
            if not items:
                return dict(_MATCH_NOTHING)
            return {"$or": [_compile_field(path, item) for item in items]}
        case AllOf(items=items):
            if not items:
                return {}
            return {"$and": [_compile_field(path, item) for item in items]}
        case MatchAll():
            return {}
    msg = f"Unsupported field predicate for {path!r}: {predicate!r}"
    raise TypeError(msg)


def compile_predicate(predicate: Predicate) -> MongoFilter:
    """Translate ``predicate`` into a MongoDB query filter.

    Parameters
    ----------
    predicate : Predicate
        Document-level predicate.

    Returns
    -------
    MongoFilter
        Filter document for ``find`` / ``count_documents``.

    Raises
    ------
    TypeError
        If the predicate tree is not well formed.

    Examples
    --------
    >>> from jskos_api.predicates import FieldMatch, Prefix
    >>> compile_predicate(FieldMatch("to.memberSet.notation", Prefix("a.b")))
    {'to.memberSet.notation': {'$regex': '^a\\\\.b'}}
    """
    match predicate:
        case MatchAll():
            return {}
        case FieldMatch(path=path, predicate=inner):
            return _compile_field(path, inner)
        case Not(predicate=inner):
            return {"$nor": [compile_predicate(inner)]}
        case AnyOf(items=items):
            if not items:
                return dict(_MATCH_NOTHING)
            return {"$or": [compile_predicate(item) for item in items]}
        case AllOf(items=items):
            if not items:
                return {}
            return {"$and": [compile_predicate(item) for item in items]}
    msg = f"Predicate {predicate!r} must be wrapped in FieldMatch"
    raise TypeError(msg)


def _normalise(document: dict[str, Any]) -> JsonObject:
    if "_id" in document and not isinstance(document["_id"], str):
        document["_id"] = str(document["_id"])
    return document


class MongoEntityStore:
    """EntityStore over one MongoDB collection.

    Parameters
    ----------
    collection : AsyncCollection
        Async collection handle from :class:`pymongo.AsyncMongoClient`.
    """

    def __init__(self, collection: AsyncCollection[dict[str, Any]]) -> None:
        self._collection = collection

    @property
    def name(self) -> str:
        """Collection name."""
        return self._collection.name

    async def find(
        self,
        predicate: Predicate,
        *,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec | None = None,
    ) -> list[JsonObject]:
        if limit == 0:
            return []
        query = compile_predicate(predicate)
        try:
            cursor = self._collection.find(query)
            if sort:
                cursor = cursor.sort(list(sort))
            if skip:
                cursor = cursor.skip(skip)
            if limit is not None:
                cursor = cursor.limit(limit)
            documents = await cursor.to_list()
        except PyMongoError as exc:
            logger.exception(
                "Find failed",
                extra={"operation": "store.find", "collection": self.name},
            )
            raise DatabaseAccessError(cause=exc) from exc
        return [_normalise(document) for document in documents]

    async def count(self, predicate: Predicate) -> int:
        try:
            return await self._collection.count_documents(compile_predicate(predicate))
        except PyMongoError as exc:
            logger.exception(
                "Count failed",
                extra={"operation": "store.count", "collection": self.name},
            )
            raise DatabaseAccessError(cause=exc) from exc

    async def find_one(self, predicate: Predicate) -> JsonObject | None:
        try:
            document = await self._collection.find_one(compile_predicate(predicate))
        except PyMongoError as exc:
            logger.exception(
                "Find one failed",
                extra={"operation": "store.find_one", "collection": self.name},
            )
            raise DatabaseAccessError(cause=exc) from exc
        return _normalise(document) if document is not None else None

    async def count_by(self, predicate: Predicate, path: str) -> list[tuple[JsonValue, int]]:
        pipeline = [
            {"$match": compile_predicate(predicate)},
            {"$group": {"_id": f"${path}", "count": {"$sum": 1}}},
        ]
        try:
            cursor = await self._collection.aggregate(pipeline)
            groups = await cursor.to_list()
        except PyMongoError as exc:
            logger.exception(
                "Aggregation failed",
                extra={"operation": "store.count_by", "collection": self.name},
            )
            raise DatabaseAccessError(cause=exc) from exc
        return [(group["_id"], group["count"]) for group in groups]

    async def insert_one(self, document: JsonObject) -> None:
        try:
            await self._collection.insert_one(dict(document))
        except PyMongoError as exc:
            logger.exception(
                "Insert failed",
                extra={"operation": "store.insert_one", "collection": self.name},
            )
            raise DatabaseAccessError(cause=exc) from exc

    async def create_indexes(self, indexes: list[list[tuple[str, int]]]) -> None:
        """Create ``indexes`` on the collection (existing ones are kept)."""
        try:
            for keys in indexes:
                await self._collection.create_index(keys)
        except PyMongoError as exc:
            raise DatabaseAccessError(cause=exc) from exc
        logger.info(
            "Indexes created",
            extra={"operation": "create_indexes", "collection": self.name, "count": len(indexes)},
        )


def connect_stores(settings: RuntimeSettings) -> tuple[JskosStores, AsyncMongoClient[dict[str, Any]]]:
    """Open a client for ``settings.mongo`` and build the stores.

    The client connects lazily; the caller owns it and closes it on shutdown.

    Returns
    -------
    tuple[JskosStores, AsyncMongoClient]
        Stores and the underlying client.
    """
    mongo = settings.mongo
    client: AsyncMongoClient[dict[str, Any]] = AsyncMongoClient(
        mongo.url,
        serverSelectionTimeoutMS=mongo.server_selection_timeout_ms,
        **mongo.options,
    )
    database = client[settings.database_name]
    logger.info(
        "Document store configured",
        extra={"operation": "connect_stores", "host": mongo.host, "db": settings.database_name},
    )
    stores = JskosStores(
        concepts=MongoEntityStore(database["concepts"]),
        schemes=MongoEntityStore(database["terminologies"]),
        mappings=MongoEntityStore(database["mappings"]),
        concordances=MongoEntityStore(database["concordances"]),
        annotations=MongoEntityStore(database["annotations"]),
    )
    return stores, client
