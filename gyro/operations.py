"""Driver calls behind the `gyro.Gyro` operations.

Each function takes a motor collection plus the already cast query/document/options, normalizes the options into the
shape the motor method expects, makes the call, and unwraps the response. Identifier casting, connection handling and
deferred results all live in `gyro.client`.

Option defaults applied here, callers may override any of them:

-   Writes are acknowledged (``safe=True`` becomes ``WriteConcern(w=1)``, ``safe=False`` becomes ``w=0``).
-   `find_and_modify` returns the modified document (``new=True``).

Keys that are not recognized pass straight through to motor as keyword arguments.
"""
from collections.abc import Mapping
from typing import Any, Sequence, TypeAlias

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorCursor
from pymongo import ReturnDocument, WriteConcern


Document: TypeAlias = dict[str, Any]
Options: TypeAlias = Mapping[str, Any] | None
SortSpec: TypeAlias = str | Sequence[tuple[str, Any]] | Mapping[str, Any] | None

ACKNOWLEDGED = WriteConcern(w=1)
UNACKNOWLEDGED = WriteConcern(w=0)

SEQUENCE_FIELD = "seq"


def find_cursor(collection: AsyncIOMotorCollection, query: Document, options: Options = None) -> AsyncIOMotorCursor:
    """Builds a cursor, ``fields`` becomes the projection and ``sort`` is normalized for pymongo."""
    cursor_options = dict(options or {})
    projection = cursor_options.pop("fields", None)
    if "sort" in cursor_options:
        cursor_options["sort"] = sort_spec(cursor_options["sort"])

    return collection.find(query, projection, **cursor_options)


async def find_documents(collection: AsyncIOMotorCollection, query: Document, options: Options = None) -> list[Document]:
    return await find_cursor(collection, query, options).to_list(None)


async def find_one_document(collection: AsyncIOMotorCollection, query: Document) -> Document | None:
    return await collection.find_one(query)


async def count_documents(collection: AsyncIOMotorCollection, query: Document, options: Options = None) -> int:
    # Projection and ordering do not change a count, count_documents only understands the windowing options
    count_options = dict(options or {})
    for key in ("fields", "sort"):
        count_options.pop(key, None)

    # A cursor treats a zero limit as no limit and a negative one by its magnitude, $limit only accepts positive values
    if limit := count_options.pop("limit", None):
        count_options["limit"] = abs(limit)

    return await collection.count_documents(query, **count_options)


async def insert_documents(
    collection: AsyncIOMotorCollection, documents: Document | list[Document], options: Options = None
) -> list[Document]:
    """Inserts one or many documents. pymongo assigns ``_id`` on the passed documents, they are returned as a list."""
    insert_options = {"safe": True} | dict(options or {})
    target = _write_target(collection, insert_options)
    batch = documents if isinstance(documents, list) else [documents]
    await target.insert_many(batch, **insert_options)
    return batch


async def update_documents(
    collection: AsyncIOMotorCollection, query: Document, document: Document, options: Options = None
) -> Document | None:
    """Updates matching documents and returns the raw server reply (``n``, ``nModified``, ``ok``...).

    ``multi=True`` updates every match. A document without update operators replaces the first match.
    """
    update_options = {"safe": True} | dict(options or {})
    target = _write_target(collection, update_options)
    multi = update_options.pop("multi", False)

    if not has_operators(document):
        result = await target.replace_one(query, document, **update_options)
    elif multi:
        result = await target.update_many(query, document, **update_options)
    else:
        result = await target.update_one(query, document, **update_options)

    return result.raw_result


async def find_and_modify_document(
    collection: AsyncIOMotorCollection, query: Document, document: Document | None, options: Options = None
) -> Document | list[Document] | None:
    """Atomically modifies one document and returns it.

    The driver answers with the document plus the server's update metadata, only the document is surfaced. With
    ``multi=True`` the document is returned inside a list.
    """
    modify_options = {"new": True, "safe": True} | dict(options or {})
    target = _write_target(collection, modify_options)
    sort = sort_spec(modify_options.pop("sort", None))
    projection = modify_options.pop("fields", None)
    multi = modify_options.pop("multi", False)
    return_document = ReturnDocument.AFTER if modify_options.pop("new") else ReturnDocument.BEFORE

    if modify_options.pop("remove", False):
        result = await target.find_one_and_delete(query, projection, sort=sort, **modify_options)
    elif has_operators(document):
        result = await target.find_one_and_update(
            query, document, projection, sort=sort, return_document=return_document, **modify_options
        )
    else:
        result = await target.find_one_and_replace(
            query, document, projection, sort=sort, return_document=return_document, **modify_options
        )

    return [result] if multi else result


async def remove_documents(
    collection: AsyncIOMotorCollection, query: Document, options: Options = None
) -> Document | None:
    """Deletes matching documents and returns the raw server reply. ``single`` or ``justOne`` deletes one match."""
    remove_options = {"safe": True} | dict(options or {})
    target = _write_target(collection, remove_options)
    single = remove_options.pop("single", False)
    just_one = remove_options.pop("justOne", False)

    if single or just_one:
        result = await target.delete_one(query, **remove_options)
    else:
        result = await target.delete_many(query, **remove_options)

    return result.raw_result


async def aggregate_documents(
    collection: AsyncIOMotorCollection, pipeline: list[Document] | Document, options: Options = None
) -> list[Document]:
    stages = pipeline_stages(pipeline)
    # Some driver versions reject an explicitly empty options object, leave it out entirely
    if options:
        cursor = collection.aggregate(stages, **options)
    else:
        cursor = collection.aggregate(stages)

    return await cursor.to_list(None)


async def next_sequence(
    collection: AsyncIOMotorCollection, query: Document, options: Options = None
) -> int | None:
    counter = await find_and_modify_document(collection, query, {"$inc": {SEQUENCE_FIELD: 1}}, options)
    match counter:
        case [{"seq": value}] | {"seq": value}:
            return value

        case _:
            return None


async def ensure_index(collection: AsyncIOMotorCollection, index: SortSpec, options: Options = None) -> None:
    await collection.create_index(sort_spec(index), **dict(options or {}))


async def drop_indexes(collection: AsyncIOMotorCollection) -> bool:
    await collection.drop_indexes()
    return True


def has_operators(document: Document | None) -> bool:
    return bool(document) and all(key.startswith("$") for key in document)


def pipeline_stages(pipeline: list[Document] | Document) -> list[Document]:
    """Accepts a list of stages, or a single mapping of stage name to stage spec which is split in key order."""
    if isinstance(pipeline, Mapping):
        return [{stage: spec} for stage, spec in pipeline.items()]

    return list(pipeline)


def sort_spec(spec: SortSpec) -> str | list[tuple[str, Any]] | None:
    """Normalizes a sort or index key spec. Mappings become ordered ``(key, direction)`` pairs, empty specs become
    None."""
    if not spec:
        return None

    match spec:
        case str():
            return spec

        case Mapping():
            return list(spec.items())

        case _:
            return [tuple(pair) for pair in spec]


def _write_target(collection: AsyncIOMotorCollection, options: dict[str, Any]) -> AsyncIOMotorCollection:
    write_concern = ACKNOWLEDGED if options.pop("safe") else UNACKNOWLEDGED
    return collection.with_options(write_concern=write_concern)
