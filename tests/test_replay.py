# tests/test_replay.py
from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from hlchat.services.replay import NonceGuard, RateLimiter, ReplaySweeper

from tests.conftest import FakeClock


def test_nonce_claim_is_single_use() -> None:
    guard = NonceGuard(clock=FakeClock(0))

    assert not guard.is_used("n1")
    assert guard.claim("n1")
    assert guard.is_used("n1")
    assert not guard.claim("n1")


def test_concurrent_claims_have_one_winner() -> None:
    guard = NonceGuard(clock=FakeClock(0))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: guard.claim("contested"), range(64)))

    assert results.count(True) == 1


def test_sweep_evicts_only_expired_nonces() -> None:
    clock = FakeClock(0)
    guard = NonceGuard(ttl_ms=10 * 60 * 1000, clock=clock)
    guard.claim("old")
    clock.advance(5 * 60 * 1000)
    guard.claim("young")

    clock.advance(5 * 60 * 1000 + 1)
    removed = guard.sweep()

    assert removed == 1
    assert not guard.is_used("old")
    assert guard.is_used("young")
    assert len(guard) == 1


def test_rate_window_allows_thirty_then_blocks() -> None:
    clock = FakeClock(0)
    limiter = RateLimiter(window_ms=60_000, max_events=30, clock=clock)

    results = [limiter.hit("0xAbC") for _ in range(31)]

    assert results[:30] == [True] * 30
    assert results[30] is False
    assert limiter.remaining("0xabc") == 0


def test_rate_window_is_per_address_and_case_insensitive() -> None:
    limiter = RateLimiter(window_ms=60_000, max_events=1, clock=FakeClock(0))

    assert limiter.hit("0xAAA")
    assert not limiter.hit("0xaaa")
    assert limiter.hit("0xBBB")


def test_rate_window_resets_after_window_elapses() -> None:
    clock = FakeClock(0)
    limiter = RateLimiter(window_ms=60_000, max_events=2, clock=clock)
    limiter.hit("0xaaa")
    limiter.hit("0xaaa")
    assert not limiter.hit("0xaaa")

    clock.advance(60_000)
    assert not limiter.hit("0xaaa")

    clock.advance(1)
    assert limiter.hit("0xaaa")
    assert limiter.remaining("0xaaa") == 1


def test_rate_sweep_drops_closed_windows() -> None:
    clock = FakeClock(0)
    limiter = RateLimiter(window_ms=60_000, max_events=30, clock=clock)
    limiter.hit("0xaaa")
    clock.advance(60_001)

    assert limiter.sweep() == 1
    assert limiter.remaining("0xaaa") == 30


def test_sweep_once_sums_targets() -> None:
    clock = FakeClock(0)
    guard = NonceGuard(ttl_ms=1, clock=clock)
    limiter = RateLimiter(window_ms=1, max_events=1, clock=clock)
    guard.claim("n")
    limiter.hit("0xaaa")
    clock.advance(2)

    assert ReplaySweeper([guard, limiter], interval_seconds=60).sweep_once() == 2


@pytest.mark.asyncio
async def test_sweeper_runs_in_background_and_stops() -> None:
    clock = FakeClock(0)
    guard = NonceGuard(ttl_ms=1, clock=clock)
    guard.claim("n")
    clock.advance(2)
    sweeper = ReplaySweeper([guard], interval_seconds=0.1)

    await sweeper.start()
    assert sweeper.running
    for _ in range(50):
        if len(guard) == 0:
            break
        await asyncio.sleep(0.05)
    await sweeper.stop()

    assert len(guard) == 0
    assert not sweeper.running
