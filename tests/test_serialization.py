import base64
import json

import pytest

from flowstate import (
    ErrorKind,
    Workflow,
    WorkflowError,
    WorkflowSnapshot,
    get_config,
)
from flowstate.serialization import hash_value, serializer


def test_hash_value_sorts_keys():
    assert hash_value({"a": 1, "b": 2}) == hash_value({"b": 2, "a": 1})


def test_hash_value_none_is_empty_object():
    assert hash_value(None) == hash_value({})


def test_hash_value_unsorted(monkeypatch):
    monkeypatch.setenv("FLOWSTATE_JSON_SORT_KEYS", "false")
    get_config.cache_clear()

    assert hash_value({"a": 1, "b": 2}) != hash_value({"b": 2, "a": 1})


def test_hash_value_algorithm(monkeypatch):
    sha256 = hash_value({"a": 1})

    monkeypatch.setenv("FLOWSTATE_HASH_ALGORITHM", "blake2b")
    get_config.cache_clear()

    assert hash_value({"a": 1}) != sha256
    assert len(hash_value({"a": 1})) == 128


def test_serializer_round_trip():
    value = {"nested": [1, 2.5, "three", None, True]}

    encoded = serializer.dump(value)

    assert json.loads(base64.b64decode(encoded)) == value
    assert serializer.load(encoded) == value


def test_serializer_none_placeholder():
    assert serializer.load(serializer.dump(None)) == {}


def test_serializer_unserializable():
    with pytest.raises(WorkflowError) as exc_info:
        serializer.dump(object())

    assert exc_info.value.kind is ErrorKind.FAILED_OPERATION_ACTION


@pytest.mark.anyio
async def test_marshal(chain):
    await chain.upto("b", {}, {})

    snapshot = chain.marshal()

    graph = json.loads(base64.b64decode(snapshot.graph))
    assert [node["id"] for node in graph["nodes"]] == ["a", "b", "c"]
    assert [(e["source"], e["target"]) for e in graph["edges"]] == [
        ("a", "b"),
        ("b", "c"),
    ]

    assert [op.id for op in snapshot.operations] == ["a", "b", "c"]
    assert [op.func.id for op in snapshot.operations] == ["a", "b", "c"]
    assert serializer.load(snapshot.operations[1].cache.value) == "xy"
    assert snapshot.operations[2].cache is None


@pytest.mark.anyio
async def test_unmarshal(chain, calls):
    await chain.run({}, {})

    restored = Workflow.unmarshal(chain.marshal(), chain.registry)

    assert restored.validate()
    assert all(operation.done for operation in restored.peer.operations)
    assert await restored.run({}, {}) == "xyz"
    assert (calls["a"], calls["b"], calls["c"]) == (1, 1, 1)


@pytest.mark.anyio
async def test_marshal_round_trip_is_identical(chain):
    await chain.upto("b", {}, {})
    snapshot = chain.marshal()

    restored = Workflow.unmarshal(snapshot, chain.registry)

    assert restored.marshal().model_dump_json() == snapshot.model_dump_json()


@pytest.mark.anyio
async def test_unmarshal_from_json_text(chain):
    await chain.run({}, {})
    text = chain.marshal().model_dump_json()

    restored = Workflow.unmarshal(json.loads(text), chain.registry)

    assert restored.marshal() == chain.marshal()
    assert WorkflowSnapshot.model_validate_json(text) == chain.marshal()


@pytest.mark.anyio
async def test_marshal_json_omits_missing_cache(chain):
    await chain.upto("b", {}, {})

    text = chain.marshal().model_dump_json()

    assert "null" not in text
    assert "cache" not in json.loads(text)["operations"][2]
    assert "cache" in json.loads(text)["operations"][1]


def test_unmarshal_invalid_shape(chain):
    with pytest.raises(WorkflowError, match="invalid workflow data") as exc_info:
        Workflow.unmarshal({"graph": 1}, chain.registry)

    assert exc_info.value.kind is ErrorKind.VALUE_VALIDATION_FAILED
    assert {err["loc"] for err in exc_info.value.errors} == {
        ("graph",),
        ("operations",),
    }


def test_unmarshal_malformed_graph(chain):
    snapshot = chain.marshal().dump()
    snapshot["graph"] = "definitely not base64!"

    with pytest.raises(WorkflowError, match="invalid workflow graph") as exc_info:
        Workflow.unmarshal(snapshot, chain.registry)

    assert exc_info.value.kind is ErrorKind.VALUE_VALIDATION_FAILED


def test_unmarshal_malformed_graph_json(chain):
    snapshot = chain.marshal().dump()
    snapshot["graph"] = base64.b64encode(b"[1, 2, 3]").decode()

    with pytest.raises(WorkflowError) as exc_info:
        Workflow.unmarshal(snapshot, chain.registry)

    assert exc_info.value.kind is ErrorKind.VALUE_VALIDATION_FAILED


def test_unmarshal_missing_function(chain):
    registry = dict(chain.registry)
    del registry["b"]

    with pytest.raises(WorkflowError, match="function not found in registry: b") as e:
        Workflow.unmarshal(chain.marshal(), registry)

    assert e.value.kind is ErrorKind.SERIALIZATION_FAILED


def test_registry(chain):
    registry = chain.registry

    assert set(registry) == {"a", "b", "c"}
    assert registry["a"] is chain.peer.lookup["a"].func.fn


@pytest.mark.anyio
async def test_clone_is_independent(chain):
    await chain.run({}, {})

    clone = chain.clone()
    clone.peer.lookup["c"].clear()

    assert chain.peer.lookup["c"].done
    assert not clone.peer.lookup["c"].done
    assert clone.peer.lookup["c"] is not chain.peer.lookup["c"]
    assert clone.peer.lookup["b"].value == "xy"
