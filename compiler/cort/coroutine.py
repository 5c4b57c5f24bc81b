import copy
from typing import TypeVar

from .marker import Marker

CoroutineT = TypeVar("CoroutineT", bound="Coroutine")


class Coroutine(object):
    """
    Base class for objects that own a marker, so that resumable methods can keep their state in attributes::

        class Ticker(cort.Coroutine):
            @cort.resumable
            def __call__(self):
                with cort.reenter(self):
                    ...

    Copying an instance (`copy.copy` or `clone()`) gives an independent marker to the copy; this is how a fork
    duplicates a computation, e.g., `cort.fork(queue.append(self.clone()))`.
    """

    _co_marker: Marker

    def __co_marker__(self) -> Marker:
        # Created lazily so that subclasses need not call `super().__init__()`.
        try:
            return self._co_marker
        except AttributeError:
            self._co_marker = Marker()
            return self._co_marker

    def restart(self) -> None:
        """Makes the next invocation start from the beginning."""
        self.__co_marker__().reset()

    def is_finished(self) -> bool:
        return self.__co_marker__().is_finished()

    is_ready = is_finished

    def is_child(self) -> bool:
        return self.__co_marker__().is_child()

    def is_parent(self) -> bool:
        return self.__co_marker__().is_parent()

    def __copy__(self: CoroutineT) -> CoroutineT:
        cls = type(self)
        clone = cls.__new__(cls)
        clone.__dict__.update(self.__dict__)
        clone._co_marker = self.__co_marker__().copy()
        return clone

    def clone(self: CoroutineT) -> CoroutineT:
        """Returns a shallow copy with its own marker."""
        return copy.copy(self)
