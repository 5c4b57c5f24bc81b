"""
Source-level statements of resumable blocks.

Inside a function compiled with `cort.resumable` (or by `do_transform.py`), `reenter`, `suspend` and `fork` are
recognized by the compiler and never called as written.  Calling them anywhere else raises `NotCompiledError`, except
for `reenter` itself, which only fails once its `with` block is entered.
"""
from typing import Any, Optional

from .consts import SuspendMode
from .marker import Marker, NotCompiledError


def to_marker(obj: Any) -> Marker:
    """Returns the marker of a `Marker` or of an object implementing `__co_marker__()`, e.g., a `cort.Coroutine`."""
    if isinstance(obj, Marker):
        return obj

    get_marker = getattr(type(obj), "__co_marker__", None)
    if get_marker is None:
        raise TypeError(f"'{type(obj).__name__}' object cannot be used as a resumable-block marker")
    marker = get_marker(obj)
    if not isinstance(marker, Marker):
        raise TypeError(f"__co_marker__() returned non-Marker (type {type(marker).__name__})")
    return marker


def reenter(obj: Any) -> Marker:
    """`with cort.reenter(obj):` starts a resumable block whose position is kept in `obj`'s marker."""
    return to_marker(obj)


def suspend(arg: Any = None) -> None:
    """
    Suspend point: leaves the resumable block; the next invocation resumes right after this statement.

    `suspend(expr)` evaluates `expr` after the marker has been advanced and before leaving.  `suspend(cort.TERMINATE)`
    finishes the computation instead; `suspend(cort.CONTINUE)` is the same as `suspend()`.
    """
    what = f"suspend({arg})" if isinstance(arg, SuspendMode) else "suspend()"
    raise NotCompiledError(what)


def fork(expr: Any = None) -> None:
    """
    Fork point: evaluates `expr` with the marker in the child role, then continues as the parent.

    A copy of the marker taken while `expr` runs resumes right after the fork as the child.
    """
    raise NotCompiledError("fork()")


def is_child(obj: Optional[Any] = None) -> bool:
    """Returns True if `obj`'s marker is the child of a fork; in a resumable block, `obj` defaults to its marker."""
    if obj is None:
        raise NotCompiledError("is_child() without an argument")
    return to_marker(obj).is_child()


def is_parent(obj: Optional[Any] = None) -> bool:
    """Returns True if `obj`'s marker isn't the child of a fork; in a resumable block, `obj` defaults to its marker."""
    if obj is None:
        raise NotCompiledError("is_parent() without an argument")
    return to_marker(obj).is_parent()


def reset(obj: Any) -> None:
    to_marker(obj).reset()


def is_finished(obj: Any) -> bool:
    return to_marker(obj).is_finished()
