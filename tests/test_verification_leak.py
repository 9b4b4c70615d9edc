"""Verification Test: resource leak check.

Starting and stopping the sampler repeatedly must not leave timer threads
behind, and a long-running sampler must keep its history bounded.
"""

import gc
import threading
import time

from conftest import make_collectors
from menustat.config import SamplerConfig
from menustat.sampler import Sampler


def sampler_threads() -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name.startswith("menustat-")]


class TestLeakCheck:
    """Leak verification suite tests."""

    def test_start_stop_cycles_do_not_leak_timers(self):
        """Test repeated start/stop leaves no timer threads running."""
        gc.collect()
        sampler = Sampler(SamplerConfig(fast_interval=0.1, slow_interval=0.1), make_collectors())

        try:
            for _ in range(20):
                sampler.start()
                time.sleep(0.02)
                sampler.stop()

            timers = [t for t in sampler_threads() if t.name in ("menustat-fast", "menustat-slow")]
            assert not any(t.is_alive() for t in timers), f"Timers still alive: {timers}"
        finally:
            sampler.close()

    def test_interval_changes_do_not_leak_timers(self):
        """Test re-arming the slow timer retires the previous one."""
        sampler = Sampler(SamplerConfig(fast_interval=0.1, slow_interval=0.1), make_collectors())

        try:
            sampler.start()
            for interval in (0.2, 0.3, 0.4, 0.5):
                sampler.set_slow_interval(interval)
            time.sleep(0.6)

            slow_timers = [t for t in sampler_threads() if t.name == "menustat-slow" and t.is_alive()]
            assert len(slow_timers) == 1
        finally:
            sampler.close()

    def test_history_stays_bounded(self):
        """Test a sampler running for a while never grows its series past capacity."""
        sampler = Sampler(SamplerConfig(fast_interval=0.1, slow_interval=1.0), make_collectors())

        try:
            sampler.start()
            time.sleep(4.0)
            snapshot = sampler.latest

            assert snapshot.data_loaded
            assert len(snapshot.cpu_history) <= 30
            assert len(snapshot.download_history) <= 30
        finally:
            sampler.close()
