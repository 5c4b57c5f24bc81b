"""Contains constants for the runtime module."""
from enum import Enum, auto
from typing import NewType

# Stronger typing for resume steps.
Step = NewType("Step", int)

INITIAL_STEP = Step(0)  # Start at the top of the resumable block.
FINISHED_STEP = Step(-1)  # The resumable block has run to completion; re-entering it does nothing.


class Role(Enum):
    """Whether a marker is running as the child of a fork (until its next suspend point) or not."""
    PARENT = auto()
    CHILD = auto()

    def __str__(self):
        """Returns a shorter string representation of enum values (e.g., "CHILD" instead of "Role.CHILD")."""
        return self.name


class SuspendMode(Enum):
    """Optional argument of `cort.suspend()` selecting what happens after the suspend point."""
    TERMINATE = auto()  # Finish the computation; it is never resumed.
    CONTINUE = auto()  # Same as a plain `suspend()`.

    def __str__(self):
        return self.name


TERMINATE = SuspendMode.TERMINATE
CONTINUE = SuspendMode.CONTINUE
