"""Read access (and fixture writes) to the bot's document database.

The harness treats the store as an external collaborator: it reads per-user
documents and collection counts to verify outcomes, and only writes through
explicit scenario fixtures.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

COLLECTION_COUNT_KEY = "collections"


class StoreError(Exception):
    """The document store could not be reached or a query failed."""


class FixtureError(Exception):
    """A setup or teardown fixture could not be applied."""


class DocumentStore(Protocol):
    """Interface the harness needs from the bot's database."""

    users_collection: str
    user_key: str

    async def ping(self) -> bool:
        ...

    async def find_one(self, collection: str, query: dict[str, Any]) -> dict[str, Any] | None:
        ...

    async def count(self, collection: str, query: dict[str, Any] | None = None) -> int:
        ...

    async def collection_names(self) -> list[str]:
        ...

    async def distinct(self, collection: str, field_name: str) -> list[Any]:
        ...

    async def index_names(self, collection: str) -> list[str]:
        ...

    async def set_fields(self, collection: str, query: dict[str, Any], fields: dict[str, Any]) -> int:
        ...

    async def aclose(self) -> None:
        ...


class MongoDocumentStore:
    """DocumentStore backed by MongoDB through pymongo's async client.

    Args:
        uri: MongoDB connection string.
        database: Database name.
        users_collection: Collection holding one document per user.
        user_key: Field in the users collection holding the chat id.
        timeout_ms: Server selection timeout.
        logger: Logger instance for logging.
    """

    def __init__(
        self,
        uri: str,
        database: str,
        users_collection: str = "Users",
        user_key: str = "chatId",
        timeout_ms: int = 5000,
        logger: logging.Logger | None = None,
    ):
        self.users_collection = users_collection
        self.user_key = user_key
        self.logger = logger or logging.getLogger(__name__)
        self._client: AsyncMongoClient = AsyncMongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        self._db = self._client[database]

    async def ping(self) -> bool:
        try:
            result = await self._client.admin.command("ping")
        except PyMongoError as e:
            self.logger.warning(f"MongoDB ping failed: {e}")
            return False
        return result.get("ok") == 1

    async def find_one(self, collection: str, query: dict[str, Any]) -> dict[str, Any] | None:
        try:
            return await self._db[collection].find_one(query, {"_id": 0})
        except PyMongoError as e:
            raise StoreError(f"find_one on {collection} failed: {e}") from e

    async def count(self, collection: str, query: dict[str, Any] | None = None) -> int:
        try:
            return await self._db[collection].count_documents(query or {})
        except PyMongoError as e:
            raise StoreError(f"count on {collection} failed: {e}") from e

    async def collection_names(self) -> list[str]:
        try:
            return sorted(await self._db.list_collection_names())
        except PyMongoError as e:
            raise StoreError(f"listing collections failed: {e}") from e

    async def distinct(self, collection: str, field_name: str) -> list[Any]:
        try:
            return await self._db[collection].distinct(field_name)
        except PyMongoError as e:
            raise StoreError(f"distinct {field_name} on {collection} failed: {e}") from e

    async def index_names(self, collection: str) -> list[str]:
        try:
            info = await self._db[collection].index_information()
        except PyMongoError as e:
            raise StoreError(f"index listing on {collection} failed: {e}") from e
        return sorted(info)

    async def set_fields(self, collection: str, query: dict[str, Any], fields: dict[str, Any]) -> int:
        try:
            result = await self._db[collection].update_one(query, {"$set": fields})
        except PyMongoError as e:
            raise StoreError(f"update on {collection} failed: {e}") from e
        return result.matched_count

    async def aclose(self) -> None:
        await self._client.close()


def _matches_query(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    """Equality plus the $ne / $gte / $lte / $exists operators."""
    for key, condition in query.items():
        value = get_field(doc, key)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                match op:
                    case "$ne":
                        if value == operand:
                            return False
                    case "$gte":
                        if value is None or value < operand:
                            return False
                    case "$lte":
                        if value is None or value > operand:
                            return False
                    case "$exists":
                        if (value is not None) != bool(operand):
                            return False
                    case _:
                        raise StoreError(f"Unsupported operator: {op}")
        elif value != condition:
            return False
    return True


class InMemoryDocumentStore:
    """DocumentStore kept in a dict, for tests and dry runs.

    Args:
        collections: Initial documents per collection name.
        users_collection: Collection holding one document per user.
        user_key: Field in the users collection holding the chat id.
    """

    def __init__(
        self,
        collections: dict[str, list[dict[str, Any]]] | None = None,
        users_collection: str = "Users",
        user_key: str = "chatId",
    ):
        self.collections: dict[str, list[dict[str, Any]]] = {
            name: [dict(doc) for doc in docs] for name, docs in (collections or {}).items()
        }
        self.users_collection = users_collection
        self.user_key = user_key
        self.indexes: dict[str, list[str]] = {}
        self.fail_with: str | None = None
        self.closed = False

    def _check(self) -> None:
        if self.fail_with:
            raise StoreError(self.fail_with)

    def insert(self, collection: str, doc: dict[str, Any]) -> None:
        self.collections.setdefault(collection, []).append(dict(doc))

    def drop(self, collection: str) -> None:
        self.collections.pop(collection, None)

    async def ping(self) -> bool:
        return self.fail_with is None

    async def find_one(self, collection: str, query: dict[str, Any]) -> dict[str, Any] | None:
        self._check()
        for doc in self.collections.get(collection, []):
            if _matches_query(doc, query):
                return dict(doc)
        return None

    async def count(self, collection: str, query: dict[str, Any] | None = None) -> int:
        self._check()
        return sum(1 for doc in self.collections.get(collection, []) if _matches_query(doc, query or {}))

    async def collection_names(self) -> list[str]:
        self._check()
        return sorted(self.collections)

    async def distinct(self, collection: str, field_name: str) -> list[Any]:
        self._check()
        values: list[Any] = []
        for doc in self.collections.get(collection, []):
            value = get_field(doc, field_name)
            if value is not None and value not in values:
                values.append(value)
        return values

    async def index_names(self, collection: str) -> list[str]:
        self._check()
        return sorted(self.indexes.get(collection, ["_id_"]))

    async def set_fields(self, collection: str, query: dict[str, Any], fields: dict[str, Any]) -> int:
        self._check()
        for doc in self.collections.get(collection, []):
            if _matches_query(doc, query):
                doc.update(fields)
                return 1
        return 0

    async def aclose(self) -> None:
        self.closed = True


def get_field(doc: dict[str, Any] | None, path: str) -> Any:
    """Resolve a dotted field path, returning None when any segment is missing."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


async def find_user(store: DocumentStore, chat_id: int, collection: str | None = None) -> dict[str, Any] | None:
    """The per-user document for a chat id."""
    return await store.find_one(collection or store.users_collection, {store.user_key: chat_id})


async def count_snapshot(
    store: DocumentStore,
    collections: list[str],
    include_collection_count: bool = False,
) -> dict[str, int]:
    """Document counts for the given collections (plus the collection count).

    Raises:
        StoreError: If any count fails.
    """
    counts = {name: await store.count(name) for name in collections}
    if include_collection_count:
        counts[COLLECTION_COUNT_KEY] = len(await store.collection_names())
    return counts


async def apply_fixture(
    store: DocumentStore,
    chat_id: int,
    set_fields: dict[str, Any],
    collection: str | None = None,
) -> int:
    """Set fields on a user's document, returning the number of matched documents.

    Raises:
        FixtureError: If the write fails.
    """
    target = collection or store.users_collection
    try:
        return await store.set_fields(target, {store.user_key: chat_id}, set_fields)
    except StoreError as e:
        raise FixtureError(str(e)) from e


# =============================================================================
# Store Recap
# =============================================================================


@dataclass
class StoreRecap:
    """Snapshot of the database used by `botprobe recap`."""
    reachable: bool = False
    collections: dict[str, int] = field(default_factory=dict)
    indexes: dict[str, list[str]] = field(default_factory=dict)
    total_users: int = 0
    paid_users: int = 0
    trial_users: int = 0
    recent_users: int = 0
    reset_users: int = 0
    ai_models: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


async def build_recap(
    store: DocumentStore,
    index_collections: tuple[str, ...] = ("Users", "History"),
    now: datetime | None = None,
    logger: logging.Logger | None = None,
) -> StoreRecap:
    """Collect collection counts, user statistics and indexes.

    Individual query failures are recorded in `errors` rather than raised.
    """
    logger = logger or logging.getLogger(__name__)
    now = now or datetime.now(timezone.utc)
    recap = StoreRecap(reachable=await store.ping())
    if not recap.reachable:
        recap.errors.append("database did not answer ping")
        return recap

    users = store.users_collection
    try:
        for name in await store.collection_names():
            recap.collections[name] = await store.count(name)
            if name in index_collections:
                recap.indexes[name] = await store.index_names(name)
    except StoreError as e:
        logger.warning(f"Collection overview incomplete: {e}")
        recap.errors.append(str(e))

    try:
        recap.total_users = await store.count(users)
        recap.paid_users = await store.count(users, {"isLastPaymentSuccessfull": True})
        recap.trial_users = await store.count(users, {"isLastPaymentSuccessfull": False})
        recap.recent_users = await store.count(users, {"lastActivity": {"$gte": now - timedelta(hours=24)}})
        recap.reset_users = await store.count(users, {"lastContextReset": {"$ne": None}})
        recap.ai_models = sorted(str(v) for v in await store.distinct(users, "currentAI"))
        recap.languages = sorted(str(v) for v in await store.distinct(users, "languageCode"))
    except StoreError as e:
        logger.warning(f"User analysis incomplete: {e}")
        recap.errors.append(str(e))

    return recap
