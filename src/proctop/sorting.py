"""Ordering of process records by a selected column."""

from collections.abc import Callable, Iterable, Mapping
from functools import cmp_to_key

from proctop.models import ProcessRecord, SortField

Comparator = Callable[[ProcessRecord, ProcessRecord], int]

_FIELD_VALUES: dict[SortField, Callable[[ProcessRecord], object]] = {
    SortField.PID: lambda p: p.pid,
    SortField.PPID: lambda p: p.parent_pid,
    SortField.USER: lambda p: p.user,
    SortField.STATE: lambda p: p.state.rank,
    SortField.NICE: lambda p: p.nice,
    SortField.CPU: lambda p: p.cpu_percent,
    SortField.MEM: lambda p: p.mem_percent,
    SortField.RES: lambda p: p.rss,
    SortField.VIRT: lambda p: p.vms,
    SortField.TIME: lambda p: p.cpu_ticks,
    SortField.THREADS: lambda p: p.threads,
    SortField.START: lambda p: p.start_time,
    SortField.COMMAND: lambda p: p.display_command,
    SortField.IO_READ_RATE: lambda p: p.io_read_rate,
    SortField.IO_WRITE_RATE: lambda p: p.io_write_rate,
}


def field_value(record: ProcessRecord, field: SortField) -> object:
    """Return the comparable value of a column, None when unknown.

    Text columns are returned as UTF-8 bytes so they compare byte-wise.
    """
    value = _FIELD_VALUES[field](record)
    if value is not None and field.is_text:
        return str(value).encode("utf-8", "surrogateescape")
    return value


def _cmp(a: object, b: object) -> int:
    # Unknown values order before every known value
    if a is None or b is None:
        return (a is not None) - (b is not None)
    return (a > b) - (a < b)


def compare(a: ProcessRecord, b: ProcessRecord, field: SortField, descending: bool) -> int:
    """
    Compare two records by a column.

    ``descending`` reverses only the column comparison; equal values fall
    back to ascending pid so distinct processes never compare equal.

    Returns:
        A negative number, zero or a positive number, like a classic cmp().
    """
    result = _cmp(field_value(a, field), field_value(b, field))
    if descending:
        result = -result
    if result == 0:
        result = _cmp(a.pid, b.pid)
    return result


def make_comparator(field: SortField, descending: bool) -> Comparator:
    """Bind a column and direction into a two-argument comparator."""

    def comparator(a: ProcessRecord, b: ProcessRecord) -> int:
        return compare(a, b, field, descending)

    return comparator


def sort_records(
    records: Iterable[ProcessRecord],
    field: SortField,
    descending: bool,
) -> list[ProcessRecord]:
    """Return the records ordered by a column."""
    return sorted(records, key=cmp_to_key(make_comparator(field, descending)))


def sort_pids(
    pids: Iterable[int],
    processes: Mapping[int, ProcessRecord],
    field: SortField,
    descending: bool,
) -> list[int]:
    """Order pids by a column of their records."""
    records = [processes[pid] for pid in pids]
    return [record.pid for record in sort_records(records, field, descending)]
