import pytest

from discount_sync.config import SyncConfig
from discount_sync.services.batch import BatchExecutor, IntervalGate


def _ids(n):
    return [f"gid://shopify/Product/{i}" for i in range(1, n + 1)]


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestIntervalGate:
    def test_zero_interval_never_sleeps(self):
        clock = FakeClock()
        gate = IntervalGate(0, sleep=clock.sleep, clock=clock.clock)
        for _ in range(5):
            gate.wait()
        assert clock.sleeps == []

    def test_waits_out_the_remaining_interval(self):
        clock = FakeClock()
        gate = IntervalGate(0.5, sleep=clock.sleep, clock=clock.clock)
        gate.wait()
        clock.now += 0.2
        gate.wait()
        gate.wait()
        assert clock.sleeps == pytest.approx([0.3, 0.5])

    def test_first_call_does_not_sleep(self):
        clock = FakeClock()
        IntervalGate(1.0, sleep=clock.sleep, clock=clock.clock).wait()
        assert clock.sleeps == []


class TestBatchExecutor:
    def test_failing_item_does_not_stop_the_loop(self):
        executor = BatchExecutor(SyncConfig(rate_limit_delay=0))
        seen = []

        def op(pid):
            seen.append(pid)
            if pid.endswith("/3"):
                raise RuntimeError("kaboom")
            return True

        ids = _ids(6)
        result = executor.run(ids, op)
        assert seen == ids
        assert result.total_processed == 6
        assert result.failure_count == 1
        assert result.success_count == 5
        assert result.errors == [{"productId": "gid://shopify/Product/3", "error": "kaboom"}]

    def test_false_counts_as_failure(self):
        executor = BatchExecutor(SyncConfig(rate_limit_delay=0))
        result = executor.run(_ids(3), lambda pid: not pid.endswith("/2"))
        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.succeeded == ["gid://shopify/Product/1", "gid://shopify/Product/3"]

    def test_truncates_to_batch_size(self):
        executor = BatchExecutor(SyncConfig(rate_limit_delay=0, max_products_per_batch=4))
        calls = []
        result = executor.run(_ids(9), lambda pid: calls.append(pid) or True)
        assert len(calls) == 4
        assert result.total_processed == 4

    def test_invalid_list_makes_no_calls(self):
        executor = BatchExecutor(SyncConfig(rate_limit_delay=0))
        calls = []
        result = executor.run(["gid://shopify/Product/1", "bogus"], lambda pid: calls.append(pid) or True)
        assert calls == []
        assert result.success_count == 0
        assert result.failure_count == 2
        assert result.total_processed == 2

    def test_empty_list_is_a_no_op(self):
        result = BatchExecutor(SyncConfig(rate_limit_delay=0)).run([], lambda pid: True)
        assert result.total_processed == 0

    def test_paces_between_items(self):
        clock = FakeClock()
        gate = IntervalGate(0.5, sleep=clock.sleep, clock=clock.clock)
        executor = BatchExecutor(SyncConfig(), gate=gate)
        executor.run(_ids(3), lambda pid: True)
        assert clock.sleeps == [0.5, 0.5]
