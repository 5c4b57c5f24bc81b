"""
Runtime library for stackless resumable functions.

A resumable function keeps no frame between invocations; where it left off is recorded in a small `Marker`::

    @cort.resumable
    def body(marker, out):
        with cort.reenter(marker):
            out.append(1)
            cort.suspend()
            out.append(2)

This module is imported by compiled code, so it shouldn't drag in the compiler or external modules.
"""
import logging

from .consts import Step, INITIAL_STEP, FINISHED_STEP, Role, SuspendMode, TERMINATE, CONTINUE
from .coroutine import Coroutine
from .marker import Marker, NotCompiledError, ResumeStepError
from .resumable import resumable
from .statements import to_marker, reenter, suspend, fork, is_child, is_parent, reset, is_finished

__all__ = [
    "Step", "INITIAL_STEP", "FINISHED_STEP", "Role", "SuspendMode", "TERMINATE", "CONTINUE", "Coroutine", "Marker",
    "NotCompiledError", "ResumeStepError", "resumable", "to_marker", "reenter", "suspend", "fork", "is_child",
    "is_parent", "reset", "is_finished", "set_logging_level",
]


def set_logging_level(level) -> None:
    """Sets the logging level for the runtime's logger."""
    logging.getLogger(__name__).setLevel(level)
