import threading
import time

from library_loans.locks import KeyedLock


def test_entries_are_dropped_after_release():
    locks = KeyedLock()
    with locks.hold("a"):
        with locks.hold("b"):
            assert len(locks) == 2
    assert len(locks) == 0


def test_entries_are_dropped_when_the_body_raises():
    locks = KeyedLock()
    try:
        with locks.hold("a"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert len(locks) == 0


def test_same_key_is_serialized():
    locks = KeyedLock()
    entered = threading.Event()
    release = threading.Event()
    order = []

    def holder():
        with locks.hold("book"):
            entered.set()
            release.wait(5)
            order.append("holder")

    def waiter():
        with locks.hold("book"):
            order.append("waiter")

    first = threading.Thread(target=holder)
    first.start()
    assert entered.wait(5)
    second = threading.Thread(target=waiter)
    second.start()
    time.sleep(0.05)
    assert order == []
    assert len(locks) == 1

    release.set()
    first.join(5)
    second.join(5)
    assert order == ["holder", "waiter"]
    assert len(locks) == 0
