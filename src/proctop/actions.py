"""Operations on live OS processes (signals, priority)."""

from dataclasses import dataclass

import psutil

NICE_MIN = -20
NICE_MAX = 19


@dataclass(slots=True, frozen=True)
class ActionResult:
    """Outcome of one user action against one pid."""

    pid: int
    ok: bool
    message: str = ""


def clamp_nice(value: int) -> int:
    return min(max(value, NICE_MIN), NICE_MAX)


class PsutilActions:
    """
    Sends signals and changes nice values through psutil.

    Errors are raised as psutil exceptions (NoSuchProcess, AccessDenied);
    the caller decides how to report them.
    """

    def send_signal(self, pid: int, sig: int) -> None:
        psutil.Process(pid).send_signal(sig)

    def renice(self, pid: int, delta: int) -> int:
        """Shift the nice value of a process by ``delta`` and return the new value."""
        proc = psutil.Process(pid)
        new_nice = clamp_nice(proc.nice() + delta)
        proc.nice(new_nice)
        return new_nice
