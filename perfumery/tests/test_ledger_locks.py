"""Tests for per-key ledger locks."""

import threading
import time

from perfumery.services.ledger_locks import KeyedLockRegistry


class TestKeyedLockRegistry:
    def test_ordered_deduplicates_and_sorts(self):
        assert KeyedLockRegistry.ordered([(2, 1), (1, 5), (2, 1), (1, 3)]) == [
            (1, 3),
            (1, 5),
            (2, 1),
        ]

    def test_hold_yields_acquisition_order(self):
        registry = KeyedLockRegistry()
        with registry.hold((2, 1), (1, 1)) as keys:
            assert keys == [(1, 1), (2, 1)]
        assert len(registry) == 2

    def test_reentrant(self):
        registry = KeyedLockRegistry()
        with registry.hold((1, 1), (1, 2)):
            with registry.hold((1, 1)):
                pass

    def test_released_on_error(self):
        registry = KeyedLockRegistry()
        try:
            with registry.hold((1, 1)):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        acquired = []
        thread = threading.Thread(target=lambda: acquired.append(registry._lock_for((1, 1)).acquire(timeout=1)))
        thread.start()
        thread.join()
        assert acquired == [True]

    def test_same_key_serialized(self):
        registry = KeyedLockRegistry()
        balance = {"value": 0}

        def writer():
            for _ in range(200):
                with registry.hold((1, 1)):
                    current = balance["value"]
                    time.sleep(0)
                    balance["value"] = current + 1

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert balance["value"] == 800

    def test_opposite_transfers_do_not_deadlock(self):
        registry = KeyedLockRegistry()
        finished = []

        def transfer(source, destination):
            for _ in range(200):
                with registry.hold((source, 1), (destination, 1)):
                    time.sleep(0)
            finished.append(source)

        threads = [
            threading.Thread(target=transfer, args=(1, 2)),
            threading.Thread(target=transfer, args=(2, 1)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sorted(finished) == [1, 2]

    def test_unrelated_keys_do_not_wait(self):
        registry = KeyedLockRegistry()
        entered = threading.Event()

        def other_key():
            with registry.hold((2, 2)):
                entered.set()

        with registry.hold((1, 1)):
            thread = threading.Thread(target=other_key)
            thread.start()
            assert entered.wait(timeout=2)
        thread.join()
