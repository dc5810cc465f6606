"""Property tests for per-identity QoS accounting.

Validates counter consistency, the dysfunction predicate and bounded
tracker growth for arbitrary outcome sequences.
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from anonfetch.resilience.quality import DYSFUNCTIONAL_MIN_SAMPLES, QualityTracker


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

# True = success, False = failure
outcome_sequences = st.lists(st.booleans(), min_size=0, max_size=30)
error_labels = st.sampled_from(["FetchTimeoutError", "TlsError", "EmptyResponseError", "http_403"])
identities = st.lists(
    st.from_regex(r"10\.0\.[0-9]{1,2}\.[0-9]{1,2}", fullmatch=True), min_size=1, max_size=40
)


def _replay(outcomes: list[bool], label: str = "TlsError") -> QualityTracker:
    tracker = QualityTracker()
    tracker.set_identity("198.51.100.7")
    for ok in outcomes:
        if ok:
            tracker.add_success(0.5, 100)
        else:
            tracker.add_failure(label)
    return tracker


@settings(max_examples=200)
@given(outcomes=outcome_sequences, label=error_labels)
def test_counters_are_consistent(outcomes: list[bool], label: str) -> None:
    stats = _replay(outcomes, label).get_stats()

    assert stats.total == len(outcomes)
    assert stats.success_count == sum(outcomes)
    assert stats.success_count + stats.failure_count == stats.total
    assert sum(stats.errors.values()) == stats.failure_count
    assert 0.0 <= stats.success_ratio <= 1.0


@settings(max_examples=200)
@given(outcomes=outcome_sequences)
def test_dysfunction_predicate(outcomes: list[bool]) -> None:
    tracker = _replay(outcomes)
    expected = len(outcomes) >= DYSFUNCTIONAL_MIN_SAMPLES and not any(outcomes)
    assert tracker.is_dysfunctional() is expected


@settings(max_examples=200)
@given(outcomes=st.lists(st.booleans(), min_size=1, max_size=30))
def test_streak_matches_tail(outcomes: list[bool]) -> None:
    stats = _replay(outcomes).get_stats()

    tail = 0
    for ok in reversed(outcomes):
        if ok != outcomes[-1]:
            break
        tail += 1
    assert stats.last_outcome_streak == tail
    assert stats.last_outcome == ("success" if outcomes[-1] else "failure")


@settings(max_examples=100)
@given(names=identities, bound=st.integers(min_value=1, max_value=10))
def test_tracker_growth_is_bounded(names: list[str], bound: int) -> None:
    tracker = QualityTracker(max_identities=bound)
    for name in names:
        tracker.set_identity(name)
        tracker.add_failure("TlsError")

    assert len(tracker.identities()) <= bound
    assert tracker.active_identity in tracker.identities()
    assert tracker.get_stats().total >= 1
