"""Tests for the in-memory state store"""
import threading

import pytest

from stepflow.domain.enums import InstanceStatus
from stepflow.domain.errors import AlreadyExistsError, ConcurrencyConflictError, InstanceNotFoundError
from stepflow.domain.models import WorkflowInstance
from stepflow.repositories.state_store import InMemoryStateStore, StateStore
from stepflow.utils.time import utc_now


def _instance(instance_id="WFI-1"):
    now = utc_now()
    return WorkflowInstance(
        instance_id=instance_id,
        definition_key="wf",
        definition_version="1",
        current_step_id="a",
        created_at=now,
        updated_at=now,
    )


def test_create_and_load_round_trip():
    store = InMemoryStateStore()
    store.create(_instance())

    loaded = store.load("WFI-1")
    assert loaded.current_step_id == "a"
    assert loaded.status == InstanceStatus.RUNNING
    assert loaded.version == 0


def test_create_twice_raises():
    store = InMemoryStateStore()
    store.create(_instance())
    with pytest.raises(AlreadyExistsError):
        store.create(_instance())


def test_load_unknown_raises():
    with pytest.raises(InstanceNotFoundError):
        InMemoryStateStore().load("nope")


def test_save_increments_version():
    store = InMemoryStateStore()
    store.create(_instance())

    instance = store.load("WFI-1")
    instance.current_step_id = "b"
    saved = store.save(instance)

    assert saved.version == 1
    assert store.load("WFI-1").current_step_id == "b"
    assert store.load("WFI-1").version == 1


def test_save_with_stale_version_conflicts():
    store = InMemoryStateStore()
    store.create(_instance())
    first = store.load("WFI-1")
    second = store.load("WFI-1")

    store.save(first)
    with pytest.raises(ConcurrencyConflictError) as exc:
        store.save(second)
    assert exc.value.details["expected_version"] == 0
    assert exc.value.details["actual_version"] == 1


def test_save_unknown_raises_not_found():
    with pytest.raises(InstanceNotFoundError):
        InMemoryStateStore().save(_instance())


def test_loaded_copies_are_isolated():
    store = InMemoryStateStore()
    store.create(_instance())
    loaded = store.load("WFI-1")
    loaded.step_outputs["a"] = {"x": 1}
    assert store.load("WFI-1").step_outputs == {}


def test_concurrent_saves_with_same_version_exactly_one_wins():
    store = InMemoryStateStore()
    store.create(_instance())
    copies = [store.load("WFI-1") for _ in range(8)]
    barrier = threading.Barrier(len(copies))
    outcomes = []
    lock = threading.Lock()

    def save(instance):
        barrier.wait()
        try:
            store.save(instance)
            result = "ok"
        except ConcurrencyConflictError:
            result = "conflict"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=save, args=(c,)) for c in copies]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == len(copies) - 1
    assert store.load("WFI-1").version == 1


def test_list_instances_filters_by_status():
    store = InMemoryStateStore()
    store.create(_instance("WFI-1"))
    done = _instance("WFI-2")
    done.status = InstanceStatus.COMPLETED
    store.create(done)

    assert {i.instance_id for i in store.list_instances()} == {"WFI-1", "WFI-2"}
    assert [i.instance_id for i in store.list_instances(InstanceStatus.COMPLETED)] == ["WFI-2"]


def test_store_without_list_instances_cannot_be_instantiated():
    class PartialStore(StateStore):
        def create(self, instance):
            return instance

        def load(self, instance_id):
            raise InstanceNotFoundError(instance_id)

        def save(self, instance):
            return instance

    with pytest.raises(TypeError):
        PartialStore()
