import asyncio
import copy
from types import SimpleNamespace

import pytest
import pytest_asyncio
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from gyro import Gyro
from gyro.connection import ConnectionManager


def _matches(document, query):
    return all(document.get(key) == value for key, value in query.items())


def _apply_update(document, update):
    for key, value in update.get("$set", {}).items():
        document[key] = value

    for key, value in update.get("$inc", {}).items():
        document[key] = document.get(key, 0) + value

    return document


class FakeCursor:
    def __init__(self, documents):
        self.documents = documents

    async def to_list(self, length):
        return self.documents[:length] if length else self.documents


class FakeWriteResult:
    def __init__(self, raw_result):
        self.raw_result = raw_result


class FakeCollection:
    """In-memory collection with just enough of the motor collection API for gyro's operations. Filters only support
    exact field equality."""
    def __init__(self, name):
        self.name = name
        self.documents = []
        self.calls = []
        self.write_concerns = []
        self.unique_fields = set()
        self.indexes = []
        self.aggregate_result = []

    def with_options(self, write_concern=None):
        self.write_concerns.append(write_concern)
        return self

    def _select(self, query):
        return [document for document in self.documents if _matches(document, query)]

    def find(self, query, projection=None, **options):
        self.calls.append(("find", query, projection, options))
        documents = [copy.deepcopy(document) for document in self._select(query)]
        documents = documents[options.get("skip", 0):]
        if options.get("limit"):
            documents = documents[:options["limit"]]

        return FakeCursor(documents)

    async def find_one(self, query):
        self.calls.append(("find_one", query))
        found = self._select(query)
        return copy.deepcopy(found[0]) if found else None

    async def count_documents(self, query, **options):
        self.calls.append(("count_documents", query, options))
        return len(self._select(query))

    async def insert_many(self, documents, **options):
        self.calls.append(("insert_many", documents, options))
        for document in documents:
            for field in self.unique_fields:
                if any(existing.get(field) == document.get(field) for existing in self.documents):
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {field}_1")

            document.setdefault("_id", ObjectId())
            self.documents.append(copy.deepcopy(document))

    async def update_one(self, query, update, **options):
        self.calls.append(("update_one", query, update, options))
        found = self._select(query)[:1]
        for document in found:
            _apply_update(document, update)

        return FakeWriteResult({"n": len(found), "nModified": len(found), "ok": 1.0})

    async def update_many(self, query, update, **options):
        self.calls.append(("update_many", query, update, options))
        found = self._select(query)
        for document in found:
            _apply_update(document, update)

        return FakeWriteResult({"n": len(found), "nModified": len(found), "ok": 1.0})

    async def replace_one(self, query, replacement, **options):
        self.calls.append(("replace_one", query, replacement, options))
        found = self._select(query)[:1]
        for document in found:
            _id = document["_id"]
            document.clear()
            document.update(replacement, _id=_id)

        return FakeWriteResult({"n": len(found), "nModified": len(found), "ok": 1.0})

    async def find_one_and_update(
        self, query, update, projection=None, sort=None, upsert=False, return_document=ReturnDocument.BEFORE, **options
    ):
        self.calls.append(("find_one_and_update", query, update, projection, sort, upsert, return_document, options))
        found = self._select(query)[:1]
        if not found:
            if not upsert:
                return None

            document = {"_id": ObjectId(), **query}
            self.documents.append(document)
            before = None
        else:
            document = found[0]
            before = copy.deepcopy(document)

        _apply_update(document, update)
        return copy.deepcopy(document) if return_document == ReturnDocument.AFTER else before

    async def find_one_and_replace(
        self, query, replacement, projection=None, sort=None, upsert=False, return_document=ReturnDocument.BEFORE,
        **options,
    ):
        self.calls.append(("find_one_and_replace", query, replacement, projection, sort, return_document, options))
        found = self._select(query)[:1]
        if not found:
            return None

        before = copy.deepcopy(found[0])
        found[0].clear()
        found[0].update(replacement, _id=before["_id"])
        return copy.deepcopy(found[0]) if return_document == ReturnDocument.AFTER else before

    async def find_one_and_delete(self, query, projection=None, sort=None, **options):
        self.calls.append(("find_one_and_delete", query, projection, sort, options))
        found = self._select(query)[:1]
        for document in found:
            self.documents.remove(document)

        return found[0] if found else None

    async def delete_one(self, query, **options):
        self.calls.append(("delete_one", query, options))
        found = self._select(query)[:1]
        for document in found:
            self.documents.remove(document)

        return FakeWriteResult({"n": len(found), "ok": 1.0})

    async def delete_many(self, query, **options):
        self.calls.append(("delete_many", query, options))
        found = self._select(query)
        for document in found:
            self.documents.remove(document)

        return FakeWriteResult({"n": len(found), "ok": 1.0})

    def aggregate(self, pipeline, **options):
        self.calls.append(("aggregate", pipeline, options))
        return FakeCursor(copy.deepcopy(self.aggregate_result))

    async def create_index(self, keys, **options):
        self.calls.append(("create_index", keys, options))
        self.indexes.append(keys)
        if options.get("unique"):
            self.unique_fields.add(keys if isinstance(keys, str) else keys[0][0])

        return "index_1"

    async def drop_indexes(self):
        self.calls.append(("drop_indexes",))
        self.indexes.clear()
        self.unique_fields.clear()


class FakeDatabase:
    def __init__(self, server, name):
        self.server = server
        self.name = name

    def __getitem__(self, name):
        return self.server.collections.setdefault(name, FakeCollection(name))


class FakeAdmin:
    def __init__(self, client):
        self._client = client

    async def command(self, name):
        # Suspend so concurrent callers get a chance to pile up on the attempt
        await asyncio.sleep(0)
        if not self._client.server.available:
            raise ServerSelectionTimeoutError("No servers found yet")

        return {"ok": 1.0}


class FakeClient:
    def __init__(self, server, url, options):
        self.server = server
        self.url = url
        self.options = options
        self.listeners = options.get("event_listeners", [])
        self.admin = FakeAdmin(self)
        self.closed = False

    def get_default_database(self, default=None):
        return self.server.database(default)

    def close(self):
        self.closed = True

    def report_topology(self, was_readable: bool, is_readable: bool):
        """Plays a topology change through the registered listeners, the way pymongo's monitor threads would."""
        event = SimpleNamespace(
            previous_description=SimpleNamespace(has_readable_server=lambda: was_readable),
            new_description=SimpleNamespace(has_readable_server=lambda: is_readable),
        )
        for listener in self.listeners:
            listener.description_changed(event)


class FakeServer:
    """Stands in for a mongod. Every connect attempt creates a new client, so `attempts` counts low-level connects."""
    def __init__(self):
        self.available = True
        self.clients = []
        self.collections = {}
        self.databases = {}

    @property
    def attempts(self) -> int:
        return len(self.clients)

    @property
    def client(self) -> FakeClient:
        return self.clients[-1]

    def database(self, name):
        return self.databases.setdefault(name, FakeDatabase(self, name))

    def client_factory(self, url, **options):
        client = FakeClient(self, url, options)
        self.clients.append(client)
        return client


async def settle(rounds: int = 5):
    """Lets callbacks scheduled with call_soon/call_soon_threadsafe run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def server():
    return FakeServer()


@pytest_asyncio.fixture
async def manager(server):
    async with ConnectionManager(settings={"reconnectTimeout": 10}, client_factory=server.client_factory) as manager:
        yield manager


@pytest_asyncio.fixture
async def db(server):
    async with Gyro(settings={"reconnectTimeout": 10}, client_factory=server.client_factory) as db:
        yield db
