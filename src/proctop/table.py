"""Authoritative store of live processes, updated one snapshot at a time."""

from collections.abc import Iterator

import structlog

from proctop.models import CLOCK_TICKS, MergeReport, ProcessRecord, Snapshot
from proctop.tree import build_children

log = structlog.get_logger(__name__)

# Fields copied straight from a sample when readable
_PLAIN_FIELDS = (
    "parent_pid",
    "uid",
    "user",
    "name",
    "command",
    "state",
    "rss",
    "vms",
    "start_time",
    "nice",
    "threads",
)


def _rate(
    previous: int,
    current: int,
    previous_at: float,
    now: float,
    prior: float | None,
    scale: float = 1.0,
) -> float | None:
    """
    Compute a per-second rate between two counter readings.

    A counter that went backwards has been reset, so there is no rate for
    this cycle. An unchanged counter is an observed rate of zero. When no
    time has passed the prior rate is kept.
    """
    delta = current - previous
    if delta < 0:
        return None
    if delta == 0:
        return 0.0
    elapsed = now - previous_at
    if elapsed <= 0:
        return prior
    return delta * scale / elapsed


class ProcessTable:
    """
    Mapping of pid to ProcessRecord, mutated only by merge().

    Every successful merge bumps ``generation``. UI flags (tagged,
    tree_collapsed) live on the records and survive merges for as long as
    the pid stays in consecutive snapshots.
    """

    def __init__(self) -> None:
        """Initialize an empty table."""
        self._processes: dict[int, ProcessRecord] = {}
        self._generation = 0
        self.needs_sort = False

    @property
    def generation(self) -> int:
        """Number of merges applied so far."""
        return self._generation

    @property
    def processes(self) -> dict[int, ProcessRecord]:
        """The live records keyed by pid. Treat as read-only."""
        return self._processes

    def __len__(self) -> int:
        return len(self._processes)

    def __contains__(self, pid: object) -> bool:
        return pid in self._processes

    def __iter__(self) -> Iterator[ProcessRecord]:
        return iter(self._processes.values())

    def get(self, pid: int) -> ProcessRecord | None:
        """Return the record for a pid, or None if it is not live."""
        return self._processes.get(pid)

    def merge(self, snapshot: Snapshot) -> MergeReport:
        """
        Fold a snapshot into the table.

        Known pids are updated in place and get their rates recomputed; new
        pids are inserted with rates not yet computed; pids missing from the
        snapshot are dropped immediately. Within one snapshot the first
        occurrence of a pid wins and later ones are reported as duplicates.

        Args:
            snapshot: A complete sample from the snapshot source.

        Returns:
            MergeReport listing added, updated, removed and duplicate pids.
        """
        now = snapshot.timestamp
        samples = {}
        duplicates: list[int] = []
        for sample in snapshot.processes:
            if sample.pid in samples:
                duplicates.append(sample.pid)
                continue
            samples[sample.pid] = sample

        if duplicates:
            log.warning(
                "duplicate_pids_in_snapshot",
                pids=sorted(set(duplicates)),
                count=len(duplicates),
            )

        mem_total = snapshot.mem_aggregate.total
        added: list[int] = []
        updated: list[int] = []

        for pid, sample in samples.items():
            record = self._processes.get(pid)
            if record is None:
                record = ProcessRecord(pid=pid)
                self._processes[pid] = record
                added.append(pid)
            else:
                updated.append(pid)

            for name in _PLAIN_FIELDS:
                value = getattr(sample, name)
                if value is not None:
                    setattr(record, name, value)

            if sample.cpu_ticks is not None:
                if record.cpu_ticks is not None and record.cpu_sampled_at is not None:
                    record.cpu_percent = _rate(
                        record.cpu_ticks,
                        sample.cpu_ticks,
                        record.cpu_sampled_at,
                        now,
                        record.cpu_percent,
                        scale=100.0 / CLOCK_TICKS,
                    )
                record.cpu_ticks = sample.cpu_ticks
                record.cpu_sampled_at = now

            if sample.io_read_bytes is not None and sample.io_write_bytes is not None:
                if (
                    record.io_read_bytes is not None
                    and record.io_write_bytes is not None
                    and record.io_sampled_at is not None
                ):
                    record.io_read_rate = _rate(
                        record.io_read_bytes,
                        sample.io_read_bytes,
                        record.io_sampled_at,
                        now,
                        record.io_read_rate,
                    )
                    record.io_write_rate = _rate(
                        record.io_write_bytes,
                        sample.io_write_bytes,
                        record.io_sampled_at,
                        now,
                        record.io_write_rate,
                    )
                record.io_read_bytes = sample.io_read_bytes
                record.io_write_bytes = sample.io_write_bytes
                record.io_sampled_at = now

            if record.rss is not None and mem_total > 0:
                record.mem_percent = record.rss / mem_total * 100.0

        removed = sorted(pid for pid in self._processes if pid not in samples)
        for pid in removed:
            del self._processes[pid]

        self._generation += 1
        return MergeReport(
            generation=self._generation,
            added=sorted(added),
            updated=sorted(updated),
            removed=removed,
            duplicates=duplicates,
        )

    def clear(self) -> None:
        """Drop every record. Used at shutdown."""
        self._processes.clear()

    # Tagging

    def toggle_tag(self, pid: int) -> bool:
        """Flip the tag on a process. Returns False if the pid is not live."""
        record = self._processes.get(pid)
        if record is None:
            return False
        record.tagged = not record.tagged
        return True

    def tag_with_children(self, pid: int) -> bool:
        """Tag a process and all of its descendants."""
        record = self._processes.get(pid)
        if record is None:
            return False
        record.tagged = True
        for child in self.descendants(pid):
            self._processes[child].tagged = True
        return True

    def untag_all(self) -> None:
        for record in self._processes.values():
            record.tagged = False

    def tagged(self) -> list[int]:
        """Pids of all tagged processes, ascending."""
        return sorted(pid for pid, record in self._processes.items() if record.tagged)

    def descendants(self, pid: int) -> list[int]:
        """All pids below a process in the tree, safe against parent cycles."""
        _, children = build_children(self._processes)
        found: list[int] = []
        seen = {pid}
        stack = list(children.get(pid, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            found.append(current)
            stack.extend(children.get(current, ()))
        return found

    # Tree collapse state

    def expand(self, pid: int) -> bool:
        return self._set_collapsed(pid, False)

    def collapse(self, pid: int) -> bool:
        return self._set_collapsed(pid, True)

    def toggle_collapsed(self, pid: int) -> bool:
        record = self._processes.get(pid)
        if record is None:
            return False
        record.tree_collapsed = not record.tree_collapsed
        return True

    def expand_all(self) -> None:
        for record in self._processes.values():
            record.tree_collapsed = False

    def collapse_all(self) -> None:
        """Collapse every non-root process that has children."""
        roots, children = build_children(self._processes)
        root_set = set(roots)
        for pid in children:
            if pid not in root_set:
                self._processes[pid].tree_collapsed = True

    def toggle_all(self) -> None:
        """Expand everything if anything is collapsed, otherwise collapse all."""
        if any(record.tree_collapsed for record in self._processes.values()):
            self.expand_all()
        else:
            self.collapse_all()

    def _set_collapsed(self, pid: int, collapsed: bool) -> bool:
        record = self._processes.get(pid)
        if record is None:
            return False
        record.tree_collapsed = collapsed
        return True
