"""Data models for proctop."""

from dataclasses import dataclass, field
from enum import Enum

# Clock ticks per second used for cpu_ticks counters.
CLOCK_TICKS = 100


class ProcessState(Enum):
    """Scheduler state of a process, keyed by its one-letter code."""

    RUNNING = "R"
    SLEEPING = "S"
    UNINTERRUPTIBLE = "D"
    STOPPED = "T"
    TRACED = "t"
    ZOMBIE = "Z"
    DEFUNCT = "X"
    IDLE = "I"
    PAGING = "W"
    UNKNOWN = "?"

    @classmethod
    def from_status(cls, status: str | None) -> "ProcessState":
        """Map a psutil status string (e.g. 'disk-sleep') to a state."""
        if not status:
            return cls.UNKNOWN
        return _STATUS_MAP.get(status, cls.UNKNOWN)

    @property
    def rank(self) -> int:
        """Position in declaration order, used for sorting."""
        return _STATE_RANK[self]


_STATUS_MAP = {
    "running": ProcessState.RUNNING,
    "sleeping": ProcessState.SLEEPING,
    "disk-sleep": ProcessState.UNINTERRUPTIBLE,
    "stopped": ProcessState.STOPPED,
    "tracing-stop": ProcessState.TRACED,
    "zombie": ProcessState.ZOMBIE,
    "dead": ProcessState.DEFUNCT,
    "idle": ProcessState.IDLE,
    "waking": ProcessState.RUNNING,
    "wake-kill": ProcessState.UNINTERRUPTIBLE,
    "parked": ProcessState.SLEEPING,
    "locked": ProcessState.UNINTERRUPTIBLE,
    "waiting": ProcessState.SLEEPING,
    "suspended": ProcessState.STOPPED,
    "paging": ProcessState.PAGING,
}

_STATE_RANK = {state: index for index, state in enumerate(ProcessState)}


class SortField(Enum):
    """Columns the process list can be ordered by."""

    PID = "pid"
    PPID = "ppid"
    USER = "user"
    STATE = "state"
    NICE = "nice"
    CPU = "cpu"
    MEM = "mem"
    RES = "res"
    VIRT = "virt"
    TIME = "time"
    THREADS = "threads"
    START = "start"
    COMMAND = "command"
    IO_READ_RATE = "io_read_rate"
    IO_WRITE_RATE = "io_write_rate"

    @property
    def default_descending(self) -> bool:
        """Whether this column sorts largest-first by default."""
        return self in _DESCENDING_BY_DEFAULT

    @property
    def is_text(self) -> bool:
        """Whether values of this column are compared as text."""
        return self in (SortField.USER, SortField.COMMAND)

    @classmethod
    def from_name(cls, name: str) -> "SortField":
        """Look up a field by its value, case-insensitively.

        Raises:
            ValueError: If the name does not match any field.
        """
        try:
            return cls(name.lower())
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise ValueError(f"Unknown sort key: {name!r}. Valid keys: {valid}") from None


_DESCENDING_BY_DEFAULT = frozenset(
    {
        SortField.CPU,
        SortField.MEM,
        SortField.RES,
        SortField.VIRT,
        SortField.TIME,
        SortField.IO_READ_RATE,
        SortField.IO_WRITE_RATE,
    }
)


@dataclass(slots=True, frozen=True)
class RawProcessSample:
    """One process as read from the OS during a scan.

    Any field other than ``pid`` may be None when it could not be read
    (permission denied, or the process exited mid-read).
    """

    pid: int
    parent_pid: int | None = None
    uid: int | None = None
    user: str | None = None
    name: str | None = None
    command: str | None = None
    state: ProcessState | None = None
    cpu_ticks: int | None = None
    rss: int | None = None  # Bytes
    vms: int | None = None  # Bytes
    io_read_bytes: int | None = None
    io_write_bytes: int | None = None
    start_time: float | None = None  # Epoch seconds
    nice: int | None = None
    threads: int | None = None


@dataclass(slots=True, frozen=True)
class CpuAggregate:
    """System-wide CPU usage for one sample."""

    per_core: list[float] = field(default_factory=list)
    total: float = 0.0


@dataclass(slots=True, frozen=True)
class MemoryAggregate:
    """System-wide memory usage for one sample, in bytes."""

    total: int = 0
    used: int = 0
    swap_total: int = 0
    swap_used: int = 0

    @property
    def percent(self) -> float:
        return self.used / self.total * 100.0 if self.total else 0.0

    @property
    def swap_percent(self) -> float:
        return self.swap_used / self.swap_total * 100.0 if self.swap_total else 0.0


@dataclass(slots=True, frozen=True)
class Snapshot:
    """A complete, immutable sample of all observable processes."""

    processes: list[RawProcessSample]
    timestamp: float  # Monotonic seconds
    cpu_aggregate: CpuAggregate = field(default_factory=CpuAggregate)
    mem_aggregate: MemoryAggregate = field(default_factory=MemoryAggregate)
    load_avg: tuple[float, float, float] = (0.0, 0.0, 0.0)
    uptime_seconds: float = 0.0


@dataclass(slots=True)
class ProcessRecord:
    """The merged, current view of one live process.

    Rate-based fields (cpu_percent, io_read_rate, io_write_rate) are None
    until two samples of the same counter have been seen.
    """

    pid: int
    parent_pid: int | None = None
    uid: int | None = None
    user: str | None = None
    name: str | None = None
    command: str | None = None
    state: ProcessState = ProcessState.UNKNOWN
    cpu_ticks: int | None = None
    rss: int | None = None
    vms: int | None = None
    io_read_bytes: int | None = None
    io_write_bytes: int | None = None
    start_time: float | None = None
    nice: int | None = None
    threads: int | None = None

    # Derived
    cpu_percent: float | None = None
    mem_percent: float | None = None
    io_read_rate: float | None = None
    io_write_rate: float | None = None

    # Timestamps of the last successful counter reads
    cpu_sampled_at: float | None = None
    io_sampled_at: float | None = None

    # UI state carried across merges
    tagged: bool = False
    tree_collapsed: bool = False

    @property
    def display_command(self) -> str:
        """Command line, falling back to the process name."""
        return self.command or self.name or ""

    @property
    def cpu_seconds(self) -> float | None:
        """Accumulated CPU time in seconds."""
        if self.cpu_ticks is None:
            return None
        return self.cpu_ticks / CLOCK_TICKS


@dataclass(slots=True, frozen=True)
class MergeReport:
    """What changed in the table during one merge."""

    generation: int
    added: list[int] = field(default_factory=list)
    updated: list[int] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    duplicates: list[int] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.added or self.updated or self.removed)


@dataclass(slots=True, frozen=True)
class DisplayNode:
    """One row of the derived display order."""

    pid: int
    depth: int = 0
    has_children: bool = False
    is_last: bool = False
    collapsed: bool = False


@dataclass(slots=True)
class ViewSettings:
    """How the process list should currently be shown."""

    sort_field: SortField = SortField.CPU
    sort_descending: bool = True
    tree_view: bool = False
    filter_text: str | None = None
    search_text: str | None = None
    follow_pid: int | None = None
    user_filter: str | None = None
    pid_filter: frozenset[int] | None = None
    tree_root_pid: int | None = None

    def fingerprint(self) -> tuple:
        """Key identifying every setting that affects row order or membership."""
        return (
            self.tree_view,
            self.sort_field,
            self.sort_descending,
            (self.filter_text or "").lower(),
            self.user_filter,
            self.pid_filter,
            self.tree_root_pid,
        )
