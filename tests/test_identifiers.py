import pytest
from bson import ObjectId

from gyro.identifiers import cast, is_valid_object_id, new_id, uncast


@pytest.mark.parametrize("value", ["5f1d7a3e9b1e8a0012345678", "ABCDEFabcdef012345678901", "0" * 24])
def test_is_valid_object_id(value):
    assert is_valid_object_id(value)


@pytest.mark.parametrize(
    "value",
    ["123", "5f1d7a3e9b1e8a001234567", "5f1d7a3e9b1e8a00123456789", "5f1d7a3e9b1e8a001234567g", "", None, 12345,
     ObjectId()],
)
def test_is_invalid_object_id(value):
    assert not is_valid_object_id(value)


def test_new_id_is_valid_and_unique():
    ids = {new_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(is_valid_object_id(value) for value in ids)


def test_cast_converts_identifier_strings():
    document = {"_id": new_id(), "name": "1234"}
    result = cast(document)

    assert result is document
    assert isinstance(document["_id"], ObjectId)
    assert document["name"] == "1234"


@pytest.mark.parametrize("value", ["123", "not an object id at all!", "5f1d7a3e9b1e8a001234567z", ""])
def test_cast_leaves_invalid_identifiers(value):
    assert cast({"id": value}) == {"id": value}


def test_cast_recurses_into_nested_documents():
    owner = new_id()
    document = cast({"filter": {"owner": {"$eq": owner}}})

    assert document["filter"]["owner"]["$eq"] == ObjectId(owner)


def test_cast_recurses_into_lists():
    first, second = new_id(), new_id()
    document = cast({"_id": {"$in": [first, second]}, "items": [{"ref": first}]})

    assert document["_id"]["$in"] == [ObjectId(first), ObjectId(second)]
    assert document["items"][0]["ref"] == ObjectId(first)


def test_cast_unwraps_oid_escape_without_casting():
    raw = new_id()
    document = cast({"external_ref": {"$oid": raw}})

    assert document["external_ref"] == raw
    assert isinstance(document["external_ref"], str)


def test_cast_leaves_scalars_alone():
    document = {"count": 5, "ratio": 0.5, "flag": True, "missing": None}
    assert cast(dict(document)) == document


def test_cast_bare_values():
    identifier = new_id()
    assert cast(identifier) == ObjectId(identifier)
    assert cast("123") == "123"
    assert cast(None) is None


def test_uncast_converts_object_ids():
    identifier = ObjectId()
    document = uncast({"_id": identifier, "nested": {"ref": identifier}, "refs": [identifier]})

    assert document == {"_id": str(identifier), "nested": {"ref": str(identifier)}, "refs": [str(identifier)]}


def test_uncast_unwraps_oid_escape():
    assert uncast({"ref": {"$oid": "raw-value"}}) == {"ref": "raw-value"}


def test_uncast_bare_object_id():
    identifier = ObjectId()
    assert uncast(identifier) == str(identifier)


def test_uncast_list_of_documents():
    documents = [{"_id": ObjectId()}, {"_id": ObjectId()}]
    result = uncast(documents)

    assert result is documents
    assert all(isinstance(document["_id"], str) for document in documents)


def test_identifier_round_trip():
    for _ in range(50):
        identifier = new_id()
        assert uncast(cast({"id": identifier}))["id"] == identifier


def test_round_trip_normalizes_hex_case():
    identifier = new_id()
    assert uncast(cast({"id": identifier.upper()}))["id"] == identifier
