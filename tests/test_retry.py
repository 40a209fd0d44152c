from __future__ import annotations

from hypothesis import given, strategies as st

from hugstatus.config import RuntimeConfig
from hugstatus.retry import RetryPolicy


def test_delay_doubles_and_caps() -> None:
    policy = RetryPolicy(base_seconds=5, max_seconds=60)

    assert [policy.delay(n) for n in range(0, 7)] == [0.0, 5, 10, 20, 40, 60, 60]


def test_from_runtime_reads_retry_settings() -> None:
    policy = RetryPolicy.from_runtime(RuntimeConfig(retry_base_seconds=2, retry_max_seconds=9))

    assert policy == RetryPolicy(base_seconds=2, max_seconds=9)


@given(failures=st.integers(min_value=1, max_value=10_000))
def test_delay_is_bounded_and_monotonic(failures: int) -> None:
    policy = RetryPolicy(base_seconds=1, max_seconds=300)

    assert 1 <= policy.delay(failures) <= 300
    assert policy.delay(failures) <= policy.delay(failures + 1)
