"""Property tests for the per-host sliding window throttler.

Validates that no window ever admits more than ``max_requests`` requests in
any ``max_seconds`` span, that hosts are isolated, and that subdomains share
their parent's window.
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from anonfetch.config.throttle_rules import ThrottleRule
from anonfetch.resilience.rate_limiter import Throttler


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

domain_names = st.from_regex(r"[a-z]{3,10}\.(com|org|net|io)", fullmatch=True)
domain_pairs = st.tuples(domain_names, domain_names).filter(lambda pair: pair[0] != pair[1])
subdomains = st.from_regex(r"[a-z]{1,8}", fullmatch=True)

# Throttle rule: max_seconds (1-30), max_requests (1-5)
rules = st.tuples(
    st.integers(min_value=1, max_value=30),
    st.integers(min_value=1, max_value=5),
)

# Gaps between request attempts, in quarter seconds (exact in binary)
gaps = st.lists(
    st.integers(min_value=0, max_value=80).map(lambda q: q / 4),
    min_size=1,
    max_size=25,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


def _throttler(host: str, rule: tuple[int, int], clock: FakeClock) -> Throttler:
    seconds, requests = rule
    return Throttler(
        {host: ThrottleRule(max_seconds=seconds, max_requests=requests)},
        clock=clock,
        sleep=clock.sleep,
    )


# ---------------------------------------------------------------------------
# Window bound
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(rule=rules, domain=domain_names, waits=gaps)
async def test_admissions_never_exceed_window(
    rule: tuple[int, int],
    domain: str,
    waits: list[float],
) -> None:
    seconds, requests = rule
    clock = FakeClock()
    throttler = _throttler(domain, rule, clock)

    admitted: list[float] = []
    for gap in waits:
        clock.now += gap
        await throttler.acquire(f"https://{domain}/")
        admitted.append(clock.now)

    # Any max_requests + 1 consecutive admissions span at least max_seconds.
    for i in range(len(admitted) - requests):
        assert admitted[i + requests] - admitted[i] >= seconds - 1e-9


@settings(max_examples=100)
@given(rule=rules, domain=domain_names)
async def test_first_requests_are_free(rule: tuple[int, int], domain: str) -> None:
    _, requests = rule
    clock = FakeClock()
    throttler = _throttler(domain, rule, clock)

    for _ in range(requests):
        await throttler.acquire(f"https://{domain}/")

    assert clock.now == 0.0
    assert throttler.is_over_limit(f"https://{domain}/")


# ---------------------------------------------------------------------------
# Host isolation and subdomain sharing
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(rule=rules, domains=domain_pairs)
async def test_host_isolation(rule: tuple[int, int], domains: tuple[str, str]) -> None:
    domain_a, domain_b = domains
    _, requests = rule
    clock = FakeClock()
    throttler = _throttler(domain_a, rule, clock)

    for _ in range(requests):
        await throttler.acquire(f"https://{domain_a}/")

    assert throttler.remaining_wait_seconds(f"https://{domain_b}/") == 0.0


@settings(max_examples=100)
@given(rule=rules, domain=domain_names, sub=subdomains)
async def test_subdomains_share_window(rule: tuple[int, int], domain: str, sub: str) -> None:
    seconds, requests = rule
    clock = FakeClock()
    throttler = _throttler(domain, rule, clock)

    for _ in range(requests):
        await throttler.acquire(f"https://{sub}.{domain}/")

    assert throttler.window_for(f"https://{domain}/") is throttler.window_for(
        f"https://{sub}.{domain}/"
    )
    assert throttler.remaining_wait_seconds(f"https://{domain}/") == seconds
