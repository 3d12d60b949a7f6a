"""Snapshot source for proctop, backed by psutil."""

import threading
import time
from queue import Queue

import psutil
import structlog

from proctop.models import (
    CLOCK_TICKS,
    CpuAggregate,
    MemoryAggregate,
    ProcessState,
    RawProcessSample,
    Snapshot,
)

log = structlog.get_logger(__name__)

# Attributes fetched per process. io_counters and uids are not available
# on every platform and asking psutil for an unknown one is an error.
_ATTRS = [
    "pid",
    "ppid",
    "name",
    "username",
    "status",
    "cpu_times",
    "memory_info",
    "create_time",
    "nice",
    "num_threads",
    "cmdline",
]
if hasattr(psutil.Process, "uids"):
    _ATTRS.append("uids")
if hasattr(psutil.Process, "io_counters"):
    _ATTRS.append("io_counters")


class SnapshotError(Exception):
    """The OS could not be sampled at all this cycle."""


def sample_from_info(info: dict) -> RawProcessSample:
    """
    Build a RawProcessSample from a psutil ``proc.info`` dict.

    psutil reports attributes it could not read as None; those stay None.
    """
    cmdline = info.get("cmdline")
    command = " ".join(cmdline) if cmdline else None

    cpu_times = info.get("cpu_times")
    cpu_ticks = None
    if cpu_times is not None:
        cpu_ticks = round((cpu_times.user + cpu_times.system) * CLOCK_TICKS)

    mem_info = info.get("memory_info")
    uids = info.get("uids")
    io = info.get("io_counters")
    status = info.get("status")

    return RawProcessSample(
        pid=info["pid"],
        parent_pid=info.get("ppid"),
        uid=uids.real if uids is not None else None,
        user=info.get("username"),
        name=info.get("name"),
        command=command,
        state=ProcessState.from_status(status) if status is not None else None,
        cpu_ticks=cpu_ticks,
        rss=mem_info.rss if mem_info is not None else None,
        vms=mem_info.vms if mem_info is not None else None,
        io_read_bytes=io.read_bytes if io is not None else None,
        io_write_bytes=io.write_bytes if io is not None else None,
        start_time=info.get("create_time"),
        nice=info.get("nice"),
        threads=info.get("num_threads"),
    )


class SystemMonitor:
    """
    Samples processes and system counters with psutil.

    ``scan()`` can be called directly once per refresh cycle. ``start()``
    instead runs scans in a daemon thread and pushes each complete snapshot
    (or the SnapshotError that replaced it) onto a thread-safe Queue.
    """

    def __init__(
        self,
        update_queue: "Queue[Snapshot | SnapshotError] | None" = None,
        poll_rate: float = 1.5,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            update_queue: Queue receiving snapshots from the background thread.
            poll_rate: Seconds between background scans.
        """
        self._queue = update_queue
        self._poll_rate = max(0.1, poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        # Prime the system-wide CPU counters (first call returns 0.0)
        psutil.cpu_percent(percpu=True)

    @property
    def poll_rate(self) -> float:
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the background thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start background scanning."""
        if self._queue is None:
            raise RuntimeError("SystemMonitor.start() needs an update_queue")
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop background scanning.

        Args:
            timeout: How long to wait for the thread to finish (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.scan())
            except SnapshotError as e:
                self._queue.put(e)
            self._stop_event.wait(timeout=self._poll_rate)

    def scan(self) -> Snapshot:
        """
        Take one complete snapshot.

        Raises:
            SnapshotError: If the process list or system counters cannot be read.
        """
        try:
            cpu_percents = psutil.cpu_percent(percpu=True)
            mem = psutil.virtual_memory()
            swap = psutil.swap_memory()
            load_avg = psutil.getloadavg()
            uptime = time.time() - psutil.boot_time()
            processes = self._collect_processes()
        except (OSError, psutil.Error) as e:
            log.warning("scan_failed", error=str(e))
            raise SnapshotError(str(e)) from e

        total = sum(cpu_percents) / len(cpu_percents) if cpu_percents else 0.0
        return Snapshot(
            processes=processes,
            timestamp=time.monotonic(),
            cpu_aggregate=CpuAggregate(per_core=cpu_percents, total=total),
            mem_aggregate=MemoryAggregate(
                total=mem.total,
                used=mem.used,
                swap_total=swap.total,
                swap_used=swap.used,
            ),
            load_avg=load_avg,
            uptime_seconds=uptime,
        )

    def _collect_processes(self) -> list[RawProcessSample]:
        """
        Read every visible process.

        Unreadable attributes come back as None and are kept as such; a
        process that vanished mid-iteration is left out of this snapshot.
        """
        samples: list[RawProcessSample] = []
        for proc in psutil.process_iter(attrs=_ATTRS, ad_value=None):
            try:
                samples.append(sample_from_info(proc.info))
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                continue
        return samples
