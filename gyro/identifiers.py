"""Conversion between application-facing identifier strings and `bson.ObjectId`.

Applications pass and receive identifiers as 24 character hex strings. MongoDB stores them as `ObjectId`. The functions
in this module walk arbitrary nested documents and convert identifiers in place, picking them out by the shape of the
value rather than by key name:

-   `cast` turns every valid identifier string into an `ObjectId`. It runs on everything sent to the driver.
-   `uncast` turns every `ObjectId` back into its hex string. It runs on everything received from the driver.

A nested document of the form ``{"$oid": raw}`` is an escape hatch: both directions replace the whole wrapper with
``raw`` as is, without converting it. This lets a caller store a 24 character hex string that must stay a string.

Both functions mutate in place and return the same reference so they can be chained. Neither one raises, a string that
is not a valid identifier is simply left alone.

Example:
    ```python
    query = cast({"_id": "5f1d7a3e9b1e8a0012345678", "tags": {"$in": ["a", "b"]}})
    isinstance(query["_id"], ObjectId)  # True

    document = uncast({"_id": ObjectId("5f1d7a3e9b1e8a0012345678")})
    document["_id"]  # "5f1d7a3e9b1e8a0012345678"
    ```
"""
import re
from collections.abc import MutableMapping, MutableSequence
from typing import Any, Iterable

from bson import ObjectId


OID_KEY = "$oid"
OBJECT_ID_PATTERN = re.compile(r"[0-9a-fA-F]{24}")


def is_valid_object_id(value: Any) -> bool:
    """True when `value` is a string of exactly 24 hexadecimal characters."""
    return isinstance(value, str) and OBJECT_ID_PATTERN.fullmatch(value) is not None


def new_id() -> str:
    """Generates a fresh identifier in string form."""
    return str(ObjectId())


def cast[V](value: V) -> V | ObjectId:
    """Converts identifier strings inside `value` to `ObjectId` instances.

    Dicts and lists are walked recursively and updated in place. A dict holding an ``$oid`` key is replaced by the
    value stored under that key and is not walked any further.

    Args:
        value: A document, a list, or a bare value.

    Returns:
        The same container that was passed in. A bare identifier string is returned as a new `ObjectId`, any other bare
        value is returned unchanged.
    """
    if is_valid_object_id(value):
        return ObjectId(value)

    for key, item in _entries(value):
        if isinstance(item, str):
            if is_valid_object_id(item):
                value[key] = ObjectId(item)

        elif isinstance(item, MutableMapping):
            if OID_KEY in item:
                value[key] = item[OID_KEY]
            else:
                cast(item)

        elif isinstance(item, MutableSequence):
            cast(item)

    return value


def uncast[V](value: V) -> V | str:
    """Converts `ObjectId` instances inside `value` to their hex strings.

    The mirror image of `cast`: dicts and lists are walked recursively and updated in place, ``$oid`` wrappers are
    replaced by their wrapped value.

    Args:
        value: A document, a list, or a bare value as returned by the driver.

    Returns:
        The same container that was passed in. A bare `ObjectId` is returned as its string, any other bare value is
        returned unchanged.
    """
    if isinstance(value, ObjectId):
        return str(value)

    for key, item in _entries(value):
        if isinstance(item, ObjectId):
            value[key] = str(item)

        elif isinstance(item, MutableMapping):
            if OID_KEY in item:
                value[key] = item[OID_KEY]
            else:
                uncast(item)

        elif isinstance(item, MutableSequence):
            uncast(item)

    return value


def _entries(value: Any) -> Iterable[tuple[Any, Any]]:
    # Snapshot so the container can be updated while iterating
    if isinstance(value, MutableMapping):
        return list(value.items())

    if isinstance(value, MutableSequence) and not isinstance(value, (str, bytes, bytearray)):
        return list(enumerate(value))

    return ()
