"""Shared builders for proctop tests."""

import pytest

from proctop.models import MemoryAggregate, ProcessState, RawProcessSample, Snapshot

MEM_TOTAL = 1000 * 1024


def make_sample(pid: int, parent_pid: int | None = 0, **kwargs) -> RawProcessSample:
    """Build a sample with readable defaults for the fields tests rarely care about."""
    fields = {
        "user": "alice",
        "name": f"proc{pid}",
        "command": f"/usr/bin/proc{pid}",
        "state": ProcessState.SLEEPING,
        "cpu_ticks": 0,
        "rss": 1024,
        "vms": 4096,
        "nice": 0,
        "threads": 1,
    }
    fields.update(kwargs)
    return RawProcessSample(pid=pid, parent_pid=parent_pid, **fields)


def make_snapshot(samples, timestamp: float = 0.0, mem_total: int = MEM_TOTAL) -> Snapshot:
    return Snapshot(
        processes=list(samples),
        timestamp=timestamp,
        mem_aggregate=MemoryAggregate(total=mem_total, used=mem_total // 2),
    )


class FakeActions:
    """Records signal and renice calls instead of touching real processes."""

    def __init__(self, fail: dict[int, Exception] | None = None) -> None:
        self.fail = fail or {}
        self.signals: list[tuple[int, int]] = []
        self.renices: list[tuple[int, int]] = []

    def send_signal(self, pid: int, sig: int) -> None:
        if pid in self.fail:
            raise self.fail[pid]
        self.signals.append((pid, sig))

    def renice(self, pid: int, delta: int) -> int:
        if pid in self.fail:
            raise self.fail[pid]
        self.renices.append((pid, delta))
        return delta


@pytest.fixture
def fake_actions() -> FakeActions:
    return FakeActions()
