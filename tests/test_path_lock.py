"""
Tests for NUDGE PathLock

Covers:
- Serialization of concurrent read-modify-write on one key
- Independent keys do not block each other
- Release on exception
- Re-entrancy and entry cleanup
"""

import os
import sys
import threading
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from nudge.core.path_lock import PathLock


def test_serializes_same_key():
    """Unprotected read-modify-write loses updates; the lock prevents it"""
    print("\n" + "="*70)
    print("TEST: PathLock Serialization")
    print("="*70)

    lock = PathLock()
    counter = {"value": 0}

    def increment():
        current = counter["value"]
        time.sleep(0.001)
        counter["value"] = current + 1

    threads = [
        threading.Thread(target=lambda: [lock.with_lock("counter", increment) for _ in range(10)])
        for _ in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert counter["value"] == 80
    assert not lock.is_held("counter")
    print("✓ 80 increments, none lost")


def test_independent_keys():
    lock = PathLock()
    entered = threading.Event()

    with lock.hold("a"):
        t = threading.Thread(target=lambda: lock.with_lock("b", entered.set))
        t.start()
        assert entered.wait(2.0), "Key b should not wait for key a"
        t.join()
    print("✓ Different keys run concurrently")


def test_waiter_blocks_until_release():
    lock = PathLock()
    order = []

    with lock.hold("file"):
        t = threading.Thread(target=lambda: lock.with_lock("file", lambda: order.append("waiter")))
        t.start()
        time.sleep(0.05)
        order.append("holder")
    t.join()

    assert order == ["holder", "waiter"]
    print("✓ Waiter ran after holder released")


def test_release_on_exception():
    lock = PathLock()

    def boom():
        raise RuntimeError("operation failed")

    try:
        lock.with_lock("file", boom)
        assert False, "Should have raised RuntimeError"
    except RuntimeError as e:
        assert "operation failed" in str(e)

    assert not lock.is_held("file")
    assert lock.with_lock("file", lambda: 42) == 42
    print("✓ Lock released after exception")


def test_reentrant_and_path_keys():
    lock = PathLock()
    path = Path("data") / "reminders.json"

    with lock.hold(path):
        # Same file through a string key of the absolute path
        assert lock.is_held(os.path.abspath(path))
        assert lock.with_lock(path, lambda: "nested") == "nested"

    assert not lock.is_held(path)
    print("✓ Re-entrant; PathLike keys normalized")


if __name__ == "__main__":
    test_serializes_same_key()
    test_independent_keys()
    test_waiter_blocks_until_release()
    test_release_on_exception()
    test_reentrant_and_path_keys()
    print("\n✅ ALL PATH LOCK TESTS PASSED")
