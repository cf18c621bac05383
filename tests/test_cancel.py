import threading

from mdnsr.cancel import CancelScope


def test_cancel_propagates_to_descendants():
    root = CancelScope()
    child = root.child("child")
    grandchild = child.child("grandchild")

    root.cancel()

    assert child.cancelled and grandchild.cancelled


def test_cancelling_child_leaves_parent_and_siblings():
    root = CancelScope()
    a = root.child("a")
    b = root.child("b")

    a.cancel()

    assert a.cancelled
    assert not root.cancelled
    assert not b.cancelled


def test_child_of_cancelled_parent_starts_cancelled():
    root = CancelScope()
    root.cancel()
    assert root.child("late").cancelled


def test_closed_child_is_not_cancelled_later():
    root = CancelScope()
    child = root.child("done")
    child.close()

    root.cancel()

    assert not child.cancelled


def test_wait_returns_when_cancelled_from_another_thread():
    scope = CancelScope()
    threading.Timer(0.05, scope.cancel).start()
    assert scope.wait(2) is True


def test_wait_times_out_when_active():
    assert CancelScope().wait(0.01) is False
