"""Tests for ProcessTable merging and UI state."""

import pytest

from conftest import MEM_TOTAL, make_sample, make_snapshot
from proctop.models import ProcessState
from proctop.table import ProcessTable


@pytest.fixture
def table() -> ProcessTable:
    return ProcessTable()


class TestMerge:
    """Tests for ProcessTable.merge()."""

    def test_first_merge_adds_everything(self, table):
        """Test an empty table reports every pid as added."""
        report = table.merge(make_snapshot([make_sample(1), make_sample(2)]))
        assert report.added == [1, 2]
        assert report.updated == []
        assert report.removed == []
        assert report.generation == 1
        assert len(table) == 2

    def test_cpu_rate_needs_two_samples(self, table):
        """Test CPU% is uncomputed after one sample and a rate after two."""
        table.merge(make_snapshot([make_sample(10, cpu_ticks=100)], timestamp=0.0))
        assert table.get(10).cpu_percent is None

        table.merge(make_snapshot([make_sample(10, cpu_ticks=150)], timestamp=1.0))
        assert table.get(10).cpu_percent == pytest.approx(50.0)

    def test_cpu_rate_over_longer_interval(self, table):
        """Test the rate divides by elapsed time."""
        table.merge(make_snapshot([make_sample(10, cpu_ticks=0)], timestamp=0.0))
        table.merge(make_snapshot([make_sample(10, cpu_ticks=300)], timestamp=2.0))
        assert table.get(10).cpu_percent == pytest.approx(150.0)

    def test_counter_reset_gives_no_rate(self, table):
        """Test a counter going backwards yields no rate, then recovers."""
        table.merge(make_snapshot([make_sample(10, cpu_ticks=500)], timestamp=0.0))
        table.merge(make_snapshot([make_sample(10, cpu_ticks=100)], timestamp=1.0))
        assert table.get(10).cpu_percent is None

        table.merge(make_snapshot([make_sample(10, cpu_ticks=120)], timestamp=2.0))
        assert table.get(10).cpu_percent == pytest.approx(20.0)

    def test_no_elapsed_time_keeps_prior_rate(self, table):
        """Test a grown counter with no time passed keeps the previous rates."""
        table.merge(make_snapshot([make_sample(10, cpu_ticks=0, io_read_bytes=0, io_write_bytes=0)], timestamp=0.0))
        table.merge(
            make_snapshot([make_sample(10, cpu_ticks=50, io_read_bytes=1000, io_write_bytes=200)], timestamp=1.0)
        )
        assert table.get(10).cpu_percent == pytest.approx(50.0)

        table.merge(
            make_snapshot([make_sample(10, cpu_ticks=90, io_read_bytes=5000, io_write_bytes=900)], timestamp=1.0)
        )
        record = table.get(10)
        assert record.cpu_percent == pytest.approx(50.0)
        assert record.io_read_rate == pytest.approx(1000.0)
        assert record.io_write_rate == pytest.approx(200.0)

    def test_remerging_same_snapshot_reports_zero_rate(self, table):
        """Test merging an identical snapshot again reports 0%, not first-seen."""
        snapshot = make_snapshot([make_sample(1, cpu_ticks=10), make_sample(2, cpu_ticks=20)], timestamp=5.0)
        table.merge(make_snapshot([make_sample(1, cpu_ticks=0), make_sample(2, cpu_ticks=0)], timestamp=4.0))
        table.merge(snapshot)
        before = {pid: table.get(pid).cpu_percent for pid in (1, 2)}

        report = table.merge(snapshot)
        assert report.added == [] and report.removed == []
        assert {pid: table.get(pid).cpu_percent for pid in (1, 2)} == {1: 0.0, 2: 0.0}
        assert before == {1: pytest.approx(10.0), 2: pytest.approx(20.0)}

    def test_removed_pid_is_gone(self, table):
        """Test a pid missing from a snapshot is dropped at once."""
        table.merge(make_snapshot([make_sample(5), make_sample(6), make_sample(7)]))
        report = table.merge(make_snapshot([make_sample(5), make_sample(7)], timestamp=1.0))

        assert report.removed == [6]
        assert 6 not in table
        assert table.get(6) is None

    def test_returning_pid_starts_fresh(self, table):
        """Test a pid that comes back is a new record without old state."""
        table.merge(make_snapshot([make_sample(6, cpu_ticks=100)], timestamp=0.0))
        table.toggle_tag(6)
        table.merge(make_snapshot([], timestamp=1.0))
        report = table.merge(make_snapshot([make_sample(6, cpu_ticks=200)], timestamp=2.0))

        assert report.added == [6]
        assert not table.get(6).tagged
        assert table.get(6).cpu_percent is None

    def test_duplicate_pid_keeps_first(self, table):
        """Test the first occurrence of a duplicated pid wins."""
        report = table.merge(
            make_snapshot([make_sample(3, name="first"), make_sample(3, name="second"), make_sample(4)])
        )
        assert report.duplicates == [3]
        assert table.get(3).name == "first"
        assert len(table) == 2

    def test_unreadable_fields_keep_previous_values(self, table):
        """Test None fields in a sample do not wipe known values."""
        table.merge(make_snapshot([make_sample(8, user="bob", rss=2048)]))
        table.merge(make_snapshot([make_sample(8, user=None, rss=None, state=ProcessState.RUNNING)], timestamp=1.0))

        record = table.get(8)
        assert record.user == "bob"
        assert record.rss == 2048
        assert record.state is ProcessState.RUNNING

    def test_partially_readable_process_is_kept(self, table):
        """Test a process with only a pid readable is still listed."""
        table.merge(make_snapshot([make_sample(9, user=None, name=None, command=None, cpu_ticks=None, rss=None)]))
        record = table.get(9)
        assert record is not None
        assert record.state is ProcessState.SLEEPING
        assert record.cpu_percent is None
        assert record.mem_percent is None

    def test_memory_percent(self, table):
        """Test MEM% is RSS against total memory."""
        table.merge(make_snapshot([make_sample(1, rss=MEM_TOTAL // 4)]))
        assert table.get(1).mem_percent == pytest.approx(25.0)

    def test_io_rates(self, table):
        """Test I/O rates are bytes per second between samples."""
        table.merge(make_snapshot([make_sample(1, io_read_bytes=1000, io_write_bytes=0)], timestamp=0.0))
        assert table.get(1).io_read_rate is None
        table.merge(make_snapshot([make_sample(1, io_read_bytes=3000, io_write_bytes=500)], timestamp=2.0))
        assert table.get(1).io_read_rate == pytest.approx(1000.0)
        assert table.get(1).io_write_rate == pytest.approx(250.0)

    def test_generation_increments(self, table):
        """Test every merge bumps the generation."""
        table.merge(make_snapshot([]))
        table.merge(make_snapshot([]))
        assert table.generation == 2

    def test_clear(self, table):
        """Test clear() empties the table."""
        table.merge(make_snapshot([make_sample(1)]))
        table.clear()
        assert len(table) == 0


class TestTagging:
    """Tests for tag state on the table."""

    def test_tag_survives_merges(self, table):
        """Test a tag stays while the pid stays."""
        table.merge(make_snapshot([make_sample(1)]))
        assert table.toggle_tag(1)
        table.merge(make_snapshot([make_sample(1)], timestamp=1.0))
        assert table.tagged() == [1]

    def test_toggle_unknown_pid(self, table):
        """Test tagging a missing pid reports failure."""
        assert not table.toggle_tag(42)

    def test_tag_with_children(self, table):
        """Test tagging a branch tags every descendant."""
        table.merge(
            make_snapshot(
                [make_sample(1), make_sample(2, parent_pid=1), make_sample(3, parent_pid=2), make_sample(4)]
            )
        )
        table.tag_with_children(1)
        assert table.tagged() == [1, 2, 3]
        table.untag_all()
        assert table.tagged() == []

    def test_descendants_with_parent_cycle(self, table):
        """Test descendants() terminates on a parent cycle."""
        table.merge(make_snapshot([make_sample(1, parent_pid=2), make_sample(2, parent_pid=1)]))
        assert table.descendants(1) == [2]


class TestCollapse:
    """Tests for tree collapse state."""

    @pytest.fixture
    def tree_table(self, table):
        table.merge(
            make_snapshot([make_sample(1), make_sample(2, parent_pid=1), make_sample(3, parent_pid=2)])
        )
        return table

    def test_collapse_and_expand(self, tree_table):
        """Test a single branch can be collapsed and expanded."""
        tree_table.collapse(2)
        assert tree_table.get(2).tree_collapsed
        tree_table.expand(2)
        assert not tree_table.get(2).tree_collapsed

    def test_collapse_all_leaves_roots_open(self, tree_table):
        """Test collapse_all() skips roots and leaves."""
        tree_table.collapse_all()
        assert not tree_table.get(1).tree_collapsed
        assert tree_table.get(2).tree_collapsed
        assert not tree_table.get(3).tree_collapsed

    def test_toggle_all(self, tree_table):
        """Test toggle_all() alternates between collapsed and expanded."""
        tree_table.toggle_all()
        assert tree_table.get(2).tree_collapsed
        tree_table.toggle_all()
        assert not any(record.tree_collapsed for record in tree_table)
