"""Verification Test: Chaos Monkey - processes dying while being sampled.

Processes are terminated at random while the monitor runs and the engine
merges every snapshot. Neither may crash, and removed processes must be
gone from the rows after the next merge.
"""

import multiprocessing
import random
import time
from queue import Empty, Queue

import pytest

from proctop.engine import Engine
from proctop.models import Snapshot
from proctop.monitor import SystemMonitor


def dummy_worker(duration: float = 60.0) -> None:
    """A dummy worker process that sleeps for a given duration."""
    try:
        time.sleep(duration)
    except (KeyboardInterrupt, SystemExit):
        pass


class TestChaosMonkey:
    """Chaos Monkey verification suite tests."""

    def test_engine_survives_process_termination(self):
        """
        Test that monitor and engine keep going while processes die mid-poll.
        """
        processes = []
        for _ in range(30):
            p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
            p.start()
            processes.append(p)

        queue: Queue[Snapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.3)
        engine = Engine()

        try:
            monitor.start()
            engine.tick(queue.get(timeout=5.0))
            assert all(p.pid in engine.table for p in processes)

            killed = random.sample(processes, 15)
            for p in killed:
                p.terminate()
                time.sleep(0.02)
            for p in killed:
                p.join(timeout=1.0)

            merged = 0
            start_time = time.time()
            while time.time() - start_time < 5.0 and merged < 3:
                try:
                    snapshot = queue.get(timeout=1.0)
                except Empty:
                    continue
                try:
                    engine.tick(snapshot)
                except Exception as e:
                    pytest.fail(f"Engine crashed with exception: {e}")
                merged += 1

            assert merged >= 3, f"Expected at least 3 snapshots after chaos, got {merged}"
            assert monitor.is_running, "Monitor should still be running after chaos"

            # Reaped children are gone once a later scan is merged
            engine.tick(monitor.scan())
            for p in killed:
                assert p.pid not in engine.table
                assert p.pid not in engine.rows
        finally:
            monitor.stop()
            for p in processes:
                if p.is_alive():
                    p.terminate()
            for p in processes:
                p.join(timeout=1.0)

    def test_rapid_process_creation_and_termination(self):
        """Test monitor stability during rapid process churn."""
        queue: Queue[Snapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.2)
        processes = []

        try:
            monitor.start()
            start_time = time.time()
            while time.time() - start_time < 3.0:
                for _ in range(5):
                    p = multiprocessing.Process(target=dummy_worker, args=(10.0,))
                    p.start()
                    processes.append(p)

                alive = [p for p in processes if p.is_alive()]
                if len(alive) > 10:
                    for p in random.sample(alive, 3):
                        p.terminate()
                time.sleep(0.1)

            assert monitor.is_running, "Monitor crashed during rapid churn"
            assert queue.get(timeout=3.0) is not None
        finally:
            monitor.stop()
            for p in processes:
                if p.is_alive():
                    p.terminate()
            for p in processes:
                p.join(timeout=0.5)

    def test_scan_handles_terminated_process(self):
        """Test scan() does not raise for a process that already exited."""
        p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
        p.start()
        time.sleep(0.1)
        p.terminate()
        p.join(timeout=1.0)

        snapshot = SystemMonitor().scan()
        assert p.pid not in {sample.pid for sample in snapshot.processes}
