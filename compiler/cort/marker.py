"""The position marker: the only state a resumable function keeps between invocations."""
import logging
from typing import Optional

from .consts import Step, Role, INITIAL_STEP, FINISHED_STEP

logger = logging.getLogger(__name__)


class NotCompiledError(RuntimeError):
    """Raised when a resumable-block statement runs in a function that wasn't compiled with `cort.resumable`."""

    DEFAULT_MESSAGE = "used outside of a compiled resumable block (is the function decorated with @cort.resumable?)"

    def __init__(self, what: str) -> None:
        super(NotCompiledError, self).__init__(f"{what} {self.DEFAULT_MESSAGE}")


class ResumeStepError(ValueError):
    """Raised when a marker is re-entered by a resumable block that has no resume point for its step."""

    def __init__(self, marker: "Marker", num_points: int) -> None:
        super(ResumeStepError, self).__init__(
            f"{marker!r} cannot be resumed by a block with {num_points} resume point(s); "
            "a marker must be used with a single resumable block")
        self.marker = marker


class Marker(object):
    """
    Records where a resumable block left off.

    The marker holds a resume step (0 to start at the top, `k > 0` to resume after the k-th suspend/fork point, -1 once
    the block has finished) and a role, which is `Role.CHILD` from the time a fork hands the marker to its child until
    the child's next suspend point.

    A marker belongs to whatever owns it (a local variable, an object attribute, ...) and must be used with one
    resumable block only.  It isn't thread-safe.
    """
    __slots__ = ("step", "role")

    def __init__(self, step: int = INITIAL_STEP, role: Role = Role.PARENT) -> None:
        if step < FINISHED_STEP:
            raise ValueError(f"invalid resume step {step}; use Marker.from_position() for encoded child positions")
        self.step = Step(step)
        self.role = role

    # Interoperability with the classic single-integer encoding.
    @property
    def position(self) -> int:
        """
        Returns the marker encoded as a single integer: 0 initially, the resume step while suspended, -1 when
        finished, and `-(step) - 1` while running as the child of the fork at `step`.
        """
        if self.role is Role.CHILD and self.step > 0:
            return -self.step - 1
        return self.step

    @position.setter
    def position(self, position: int) -> None:
        if position < FINISHED_STEP:
            self.step, self.role = Step(-position - 1), Role.CHILD
        else:
            self.step, self.role = Step(position), Role.PARENT

    @classmethod
    def from_position(cls, position: int) -> "Marker":
        """Creates a marker from its single-integer encoding; see `position`."""
        marker = cls()
        marker.position = position
        return marker

    # Queries and mutators.
    def reset(self) -> None:
        """Resets the marker so the next invocation starts at the beginning of the resumable block."""
        self.step = INITIAL_STEP
        self.role = Role.PARENT

    def is_finished(self) -> bool:
        """Returns True if the resumable block has finished."""
        return self.step == FINISHED_STEP

    def is_child(self) -> bool:
        """Returns True if the marker is the child of a fork."""
        return self.role is Role.CHILD

    def is_parent(self) -> bool:
        """Returns True if the marker isn't the child of a fork."""
        return not self.is_child()

    def copy(self) -> "Marker":
        """Returns an independent marker with the same step and role."""
        return type(self)(self.step, self.role)

    __copy__ = copy

    # Transitions made by compiled resumable blocks.
    def set_parent(self, step: int) -> None:
        """Resume after point `step` next time; also marks the end of a fork's child role."""
        self.step = Step(step)
        self.role = Role.PARENT

    def set_child(self, step: int) -> None:
        """Marks the marker as the child of the fork at point `step`; copies taken now resume as that child."""
        logger.debug("fork at resume point %d", step)
        self.step = Step(step)
        self.role = Role.CHILD

    def finish(self) -> None:
        """Marks the resumable block as finished."""
        if self.step != FINISHED_STEP:
            logger.debug("resumable block finished at step %d", self.step)
        self.step = FINISHED_STEP
        self.role = Role.PARENT

    def resume_step(self, num_points: int) -> Step:
        """Returns the step to resume at; raises `ResumeStepError` if a block with `num_points` points can't."""
        if not INITIAL_STEP <= self.step <= num_points:
            raise ResumeStepError(self, num_points)
        return self.step

    # Protocols.
    def __co_marker__(self) -> "Marker":
        return self

    def __enter__(self) -> "Marker":
        # Reached only if the enclosing function wasn't compiled.
        raise NotCompiledError("reenter()")

    def __exit__(self, *exc_info) -> Optional[bool]:
        return None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Marker):
            return NotImplemented
        return self.step == other.step and self.role is other.role

    def __hash__(self) -> int:
        return hash((self.step, self.role))

    def __getstate__(self):
        return self.step, self.role.name

    def __setstate__(self, state) -> None:
        step, role = state
        self.step = Step(step)
        self.role = Role[role]

    def __repr__(self) -> str:
        return f"Marker(step={self.step}, role={self.role})"
