"""Provides the `Gyro` class, the public entry point for gyro.

`Gyro` combines the connection manager, the identifier codec and the deferred result convention. Every data operation
follows the same steps:

1.  Cast identifier strings in the inputs to `ObjectId`.
2.  Wait for a ready connection and resolve the collection.
3.  Call the driver through `gyro.operations`.
4.  Uncast `ObjectId` values in the output back to strings.
5.  Deliver the outcome through the returned `DeferredResult` and the optional ``callback``.

Driver errors are delivered unchanged and also emitted on the ``error`` signal. Nothing is retried except the connect
step, which the connection manager retries on its own.

Usage Example:
    ```python
    from gyro import Gyro

    db = Gyro("mongodb://localhost:27017/app", {"reconnectTimeout": 1000})
    db.on("close", lambda url: print(f"Lost {url}"))

    async def main():
        [user] = await db.insert("users", {"name": "Alice"}).or_raise()
        found = await db.find_one("users", {"_id": user["_id"]}).or_raise()

        await db.ensure_index("users", {"email": 1}, {"unique": True}).or_raise()
        ticket = await db.get_next_sequence("counters", {"name": "tickets"}, {"upsert": True}).or_raise()

        db.find("users", {}, callback=lambda error, users: print(error or users))
    ```
"""
from functools import wraps
from typing import Any, Awaitable, Callable, Mapping

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorCursor, AsyncIOMotorDatabase

import gyro.operations as operations
from gyro.connection import ConnectionManager, ConnectionState
from gyro.exceptions import ConnectFailed
from gyro.identifiers import cast, is_valid_object_id, new_id, uncast
from gyro.operations import Document, Options, SortSpec
from gyro.results import deferred
from gyro.settings import ConnectionSettings
from gyro.signals import ERROR, Listener, Signals


def _reports_errors[**P, T](method: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    # ConnectFailed has already been emitted by the connection manager
    @wraps(method)
    async def wrapper(self: "Gyro", *args, **kwargs) -> T:
        try:
            return await method(self, *args, **kwargs)
        except ConnectFailed:
            raise
        except Exception as error:
            self.signals.emit(ERROR, error)
            raise

    return wrapper


class Gyro:
    """Resilient, identifier-aware access to a MongoDB database.

    All data operations return a `gyro.results.DeferredResult` and accept a keyword-only ``callback`` that is called
    once as ``callback(error, value)``.

    Attributes:
        connection (ConnectionManager): Owns the single shared connection.
        signals (Signals): Lifecycle signals, shared with the connection manager.
    """
    def __init__(
        self,
        url: str | None = None,
        settings: ConnectionSettings | Mapping[str, Any] | None = None,
        *,
        client_factory: Callable[..., AsyncIOMotorClient] = AsyncIOMotorClient,
    ):
        """
        Args:
            url: MongoDB connection string, defaults to ``mongodb://localhost:27017``.
            settings: `ConnectionSettings`, or an options mapping where ``reconnectTimeout`` (milliseconds) is
                recognized and every other key is passed to the motor client.
            client_factory: Builds the motor client, mostly useful for tests.
        """
        self.signals = Signals()
        self.connection = ConnectionManager(url, settings, signals=self.signals, client_factory=client_factory)

    @property
    def url(self) -> str:
        return self.connection.url

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    # ---------------------------------------- #
    # Signals                                  #
    # ---------------------------------------- #
    def on(self, name: str, listener: Listener) -> Listener:
        return self.signals.on(name, listener)

    def off(self, name: str, listener: Listener) -> bool:
        return self.signals.off(name, listener)

    def emit(self, name: str, *args: Any) -> int:
        return self.signals.emit(name, *args)

    # ---------------------------------------- #
    # Identifiers                              #
    # ---------------------------------------- #
    cast = staticmethod(cast)
    uncast = staticmethod(uncast)
    is_valid_object_id = staticmethod(is_valid_object_id)
    new_id = staticmethod(new_id)

    # ---------------------------------------- #
    # Connection Management                    #
    # ---------------------------------------- #
    @deferred
    async def connect(self) -> AsyncIOMotorDatabase:
        return await self.connection.connect()

    @deferred
    async def collection(self, name: str) -> AsyncIOMotorCollection:
        return await self.connection.collection(name)

    async def disconnect(self):
        await self.connection.disconnect()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    # ---------------------------------------- #
    # Queries                                  #
    # ---------------------------------------- #
    @deferred
    @_reports_errors
    async def find_cursor(self, collection_name: str, query: Document | None = None, options: Options = None) -> AsyncIOMotorCursor:
        """Returns the raw motor cursor. Documents read from it are not uncast."""
        query = cast(query or {})
        collection = await self.connection.collection(collection_name)
        return operations.find_cursor(collection, query, options)

    @deferred
    @_reports_errors
    async def find(self, collection_name: str, query: Document | None = None, options: Options = None) -> list[Document]:
        """Finds all matching documents.

        Options:
            fields: Projection, passed to the driver as its own argument.
            sort: Mapping or list of ``(key, direction)`` pairs.
            limit, skip: Result window.
        """
        query = cast(query or {})
        collection = await self.connection.collection(collection_name)
        return uncast(await operations.find_documents(collection, query, options))

    @deferred
    @_reports_errors
    async def find_one(self, collection_name: str, query: Document | None = None) -> Document | None:
        query = cast(query or {})
        collection = await self.connection.collection(collection_name)
        return uncast(await operations.find_one_document(collection, query))

    @deferred
    @_reports_errors
    async def count(self, collection_name: str, query: Document | None = None, options: Options = None) -> int:
        query = cast(query or {})
        collection = await self.connection.collection(collection_name)
        return await operations.count_documents(collection, query, options)

    @deferred
    @_reports_errors
    async def aggregate(
        self, collection_name: str, pipeline: list[Document] | Document, options: Options = None
    ) -> list[Document]:
        """Runs an aggregation pipeline. A single mapping of stages is split into a list in key order."""
        pipeline = cast(pipeline)
        collection = await self.connection.collection(collection_name)
        return uncast(await operations.aggregate_documents(collection, pipeline, options))

    # ---------------------------------------- #
    # Writes                                   #
    # ---------------------------------------- #
    @deferred
    @_reports_errors
    async def insert(
        self, collection_name: str, documents: Document | list[Document], options: Options = None
    ) -> list[Document]:
        """Inserts one document or a list of documents, acknowledged by default. Returns the inserted documents with
        their ``_id`` as a string."""
        documents = cast(documents)
        collection = await self.connection.collection(collection_name)
        return uncast(await operations.insert_documents(collection, documents, options))

    @deferred
    @_reports_errors
    async def update(
        self, collection_name: str, query: Document, document: Document, options: Options = None
    ) -> Document | None:
        query, document = cast(query), cast(document)
        collection = await self.connection.collection(collection_name)
        return uncast(await operations.update_documents(collection, query, document, options))

    @deferred
    @_reports_errors
    async def find_and_modify(
        self, collection_name: str, query: Document, document: Document | None, options: Options = None
    ) -> Document | list[Document] | None:
        """Modifies one document and returns its new version unless ``new=False`` is passed.

        Options:
            sort: Picks which match is modified.
            upsert: Insert when nothing matches.
            remove: Delete the match instead of updating it.
            multi: Return the document wrapped in a list.
        """
        query, document = cast(query), cast(document)
        collection = await self.connection.collection(collection_name)
        return uncast(await operations.find_and_modify_document(collection, query, document, options))

    @deferred
    @_reports_errors
    async def remove(self, collection_name: str, query: Document, options: Options = None) -> Document | None:
        query = cast(query)
        collection = await self.connection.collection(collection_name)
        return uncast(await operations.remove_documents(collection, query, options))

    @deferred
    async def erase_collection(self, collection_name: str) -> Document | None:
        """Removes every document in the collection."""
        return await self.remove(collection_name, {}).or_raise()

    @deferred
    @_reports_errors
    async def get_next_sequence(self, collection_name: str, query: Document, options: Options = None) -> int | None:
        """Increments the ``seq`` field of the counter matching `query` and returns the new value.

        Pass ``{"upsert": True}`` to create the counter on first use, the first value is then 1. Returns None when the
        counter does not exist and upsert is off.
        """
        query = cast(query)
        collection = await self.connection.collection(collection_name)
        return await operations.next_sequence(collection, query, options)

    # ---------------------------------------- #
    # Indexes                                  #
    # ---------------------------------------- #
    @deferred
    @_reports_errors
    async def ensure_index(self, collection_name: str, index: SortSpec, options: Options = None) -> None:
        collection = await self.connection.collection(collection_name)
        await operations.ensure_index(collection, index, options)

    @deferred
    @_reports_errors
    async def drop_indexes(self, collection_name: str) -> bool:
        collection = await self.connection.collection(collection_name)
        return await operations.drop_indexes(collection)
