"""Tests for the dedup store and the thread binding table."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.delivery.task import ThreadHandle
from src.errors import StoreError
from src.store.bindings import ThreadBindingTable
from src.store.dedup import DedupStore


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_accept_once_then_reject():
    store = DedupStore(retention_seconds=60)

    assert store.accept("a") is True
    assert store.accept("a") is False
    assert store.accept("a") is False
    assert store.accept("b") is True


def test_simultaneous_accepts_of_one_id_admit_exactly_one():
    store = DedupStore(retention_seconds=60)
    workers = 16
    start = threading.Barrier(workers)

    def deliver(_):
        start.wait()
        return store.accept("same-id")

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(deliver, range(workers)))

    assert results.count(True) == 1
    assert len(store) == 1


def test_repeat_inside_horizon_rejected():
    clock = FakeClock()
    store = DedupStore(retention_seconds=60, clock=clock)
    store.accept("a")

    clock.advance(59.9)

    assert store.accept("a") is False


def test_replay_after_horizon_accepted_as_new():
    clock = FakeClock()
    store = DedupStore(retention_seconds=60, clock=clock)
    store.accept("a")

    clock.advance(60)

    assert store.accept("a") is True
    assert store.accept("a") is False


def test_sweep_only_drops_expired_entries():
    clock = FakeClock()
    store = DedupStore(retention_seconds=60, clock=clock)
    store.accept("old")
    clock.advance(30)
    store.accept("young")
    clock.advance(31)

    assert "old" not in store
    assert "young" in store
    assert len(store) == 1


def test_full_store_raises_instead_of_evicting_live_ids():
    clock = FakeClock()
    store = DedupStore(retention_seconds=60, max_entries=2, clock=clock)
    store.accept("a")
    store.accept("b")

    with pytest.raises(StoreError):
        store.accept("c")
    assert store.accept("a") is False

    clock.advance(61)
    assert store.accept("c") is True


def test_forget_allows_reaccept():
    store = DedupStore(retention_seconds=60)
    store.accept("a")
    store.forget("a")

    assert store.accept("a") is True


def test_binding_lookup_and_single_handle():
    table = ThreadBindingTable(grace_seconds=10)
    handle = ThreadHandle("c1", "t1")
    table.bind("inc", handle)

    assert table.get("inc").handle == handle
    with pytest.raises(ValueError):
        table.bind("inc", ThreadHandle("c1", "t2"))


def test_closed_binding_kept_for_grace_then_evicted():
    clock = FakeClock()
    table = ThreadBindingTable(grace_seconds=10, clock=clock)
    table.bind("inc", ThreadHandle("c1", "t1"))
    assert table.close("inc") is True

    clock.advance(9)
    binding = table.get("inc")
    assert binding is not None and binding.closed

    clock.advance(1)
    assert table.get("inc") is None
    assert len(table) == 0


def test_sweep_evicts_expired_closed_bindings():
    clock = FakeClock()
    table = ThreadBindingTable(grace_seconds=10, clock=clock)
    table.bind("open", ThreadHandle("c1", "t1"))
    table.bind("closed", ThreadHandle("c1", "t2"))
    table.close("closed")
    clock.advance(11)

    assert table.sweep() == 1
    assert table.get("open") is not None
    assert table.close("missing") is False
