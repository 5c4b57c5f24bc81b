"""Unit tests for the runtime library: markers, marker statements, and the `Coroutine` adapter."""
import copy
import logging
import pickle

import pytest

import cort
from cort import Marker, Role


class Ticker(cort.Coroutine):
    def __init__(self, name: str) -> None:
        self.name = name
        self.ticks = 0


def test_initial_marker():
    marker = Marker()
    assert marker.step == cort.INITIAL_STEP
    assert marker.role is Role.PARENT
    assert not marker.is_finished()
    assert marker.is_parent() and not marker.is_child()
    assert marker.position == 0


@pytest.mark.parametrize("position, step, role", [
    (0, 0, Role.PARENT),
    (3, 3, Role.PARENT),
    (-1, -1, Role.PARENT),
    (-2, 1, Role.CHILD),
    (-5, 4, Role.CHILD),
])
def test_position_encoding(position: int, step: int, role: Role):
    marker = Marker.from_position(position)
    assert (marker.step, marker.role) == (step, role)
    assert marker.position == position
    assert marker.is_child() == (position < -1)


def test_negative_step_rejected():
    with pytest.raises(ValueError):
        Marker(-3)
    assert Marker.from_position(-3).is_child()


def test_position_setter_finishes():
    marker = Marker(2, Role.CHILD)
    marker.position = -1
    assert marker.is_finished()
    assert marker.is_parent()


def test_transitions():
    marker = Marker()
    marker.set_child(2)
    assert marker.is_child() and marker.step == 2

    marker.set_parent(2)
    assert marker.is_parent() and marker.step == 2

    marker.finish()
    assert marker.is_finished()
    marker.finish()  # Idempotent.
    assert marker == Marker(cort.FINISHED_STEP)


def test_reset():
    marker = Marker(3, Role.CHILD)
    marker.reset()
    assert marker == Marker()

    finished = Marker(cort.FINISHED_STEP)
    cort.reset(finished)
    assert not cort.is_finished(finished)


@pytest.mark.parametrize("step", [0, 1, 2])
def test_resume_step(step: int):
    assert Marker(step).resume_step(2) == step


@pytest.mark.parametrize("step", [3, -1])
def test_resume_step_out_of_range(step: int):
    with pytest.raises(cort.ResumeStepError) as exc_info:
        Marker(step).resume_step(2)
    assert isinstance(exc_info.value, ValueError)
    assert exc_info.value.marker.step == step


def test_copy_is_independent():
    marker = Marker(1, Role.CHILD)
    for clone in (marker.copy(), copy.copy(marker)):
        assert clone == marker and clone is not marker
        clone.finish()
        assert marker == Marker(1, Role.CHILD)


def test_pickle():
    marker = Marker(4, Role.CHILD)
    restored = pickle.loads(pickle.dumps(marker))
    assert restored == marker
    assert restored.role is Role.CHILD


def test_repr():
    assert repr(Marker(2, Role.CHILD)) == "Marker(step=2, role=CHILD)"


def test_to_marker():
    marker = Marker()
    assert cort.to_marker(marker) is marker

    ticker = Ticker("t")
    assert cort.to_marker(ticker) is cort.to_marker(ticker)
    assert cort.reenter(ticker) is cort.to_marker(ticker)

    with pytest.raises(TypeError):
        cort.to_marker(42)


def test_queries_accept_markers_and_coroutines():
    assert cort.is_child(Marker(1, Role.CHILD))
    assert cort.is_parent(Marker(1))
    assert not cort.is_finished(Ticker("t"))


def test_coroutine_lazy_marker():
    ticker = Ticker("t")
    assert ticker.is_parent()
    assert not ticker.is_finished() and not ticker.is_ready()

    cort.to_marker(ticker).finish()
    assert ticker.is_ready()
    ticker.restart()
    assert not ticker.is_finished()


def test_coroutine_clone():
    ticker = Ticker("t")
    cort.to_marker(ticker).set_child(1)

    clone = ticker.clone()
    assert type(clone) is Ticker
    assert clone.name == "t"
    assert clone.is_child()

    cort.to_marker(ticker).set_parent(1)
    assert clone.is_child()
    assert cort.to_marker(copy.copy(ticker)) is not cort.to_marker(ticker)


def test_uncompiled_statements():
    with pytest.raises(cort.NotCompiledError):
        cort.suspend()
    with pytest.raises(cort.NotCompiledError, match="TERMINATE"):
        cort.suspend(cort.TERMINATE)
    with pytest.raises(cort.NotCompiledError):
        cort.fork()
    with pytest.raises(cort.NotCompiledError):
        cort.is_child()
    with pytest.raises(cort.NotCompiledError):
        cort.is_parent()


def test_uncompiled_block():
    def body(marker):
        with cort.reenter(marker):
            cort.suspend()

    with pytest.raises(cort.NotCompiledError) as exc_info:
        body(Marker())
    assert isinstance(exc_info.value, RuntimeError)


def test_transition_logging(caplog):
    cort.set_logging_level(logging.DEBUG)
    try:
        assert logging.getLogger("cort").level == logging.DEBUG
        with caplog.at_level(logging.DEBUG, logger="cort.marker"):
            marker = Marker()
            marker.set_child(1)
            marker.finish()
            marker.finish()
    finally:
        cort.set_logging_level(logging.NOTSET)

    messages = [record.getMessage() for record in caplog.records]
    assert messages == ["fork at resume point 1", "resumable block finished at step 1"]
