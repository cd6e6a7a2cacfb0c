import asyncio

import pytest

from fakes import ScriptedDigits
from pairing.pin import PinGate, PinOutcome, PinResult


def _gate(clock, digits="4821", **kwargs) -> PinGate:
    return PinGate(timeout=30, max_attempts=3, rng=ScriptedDigits(digits), time_fn=clock, **kwargs)


@pytest.mark.asyncio
async def test_generate_issues_four_digits(clock):
    gate = _gate(clock)
    code = gate.generate()
    assert code == "4821"
    assert gate.code == "4821"
    assert gate.is_active
    gate.cancel()


@pytest.mark.asyncio
async def test_default_generator_is_numeric():
    gate = PinGate()
    code = gate.generate()
    assert len(code) == 4 and code.isdigit()
    gate.cancel()
    assert gate.code is None


@pytest.mark.asyncio
async def test_correct_code_succeeds_exactly_once(clock):
    gate = _gate(clock)
    gate.generate()
    assert gate.verify("4821") == PinResult(PinOutcome.SUCCESS)
    assert gate.verify("4821").outcome == PinOutcome.EXPIRED
    assert not gate.is_active


@pytest.mark.asyncio
async def test_three_wrong_codes_lock_out(clock):
    gate = _gate(clock)
    gate.generate()
    assert gate.verify("0000") == PinResult(PinOutcome.WRONG_CODE, 2)
    assert gate.code == "4821"
    assert gate.verify("1111") == PinResult(PinOutcome.WRONG_CODE, 1)
    assert gate.failed_attempts == 2
    assert gate.verify("2222") == PinResult(PinOutcome.LOCKED_OUT)
    assert gate.verify("4821").outcome == PinOutcome.EXPIRED


@pytest.mark.asyncio
async def test_code_expires_after_timeout(clock):
    gate = _gate(clock)
    gate.generate()
    clock.advance(30.5)
    assert not gate.is_active
    assert gate.verify("4821").outcome == PinOutcome.EXPIRED


@pytest.mark.asyncio
async def test_superseded_code_reports_expired(clock):
    gate = _gate(clock, digits="48215555")
    assert gate.generate() == "4821"
    assert gate.generate() == "5555"
    assert gate.verify("4821").outcome == PinOutcome.EXPIRED
    assert gate.failed_attempts == 0
    assert gate.verify("5555").outcome == PinOutcome.SUCCESS


@pytest.mark.asyncio
async def test_seconds_remaining_rounds_up(clock):
    gate = _gate(clock)
    gate.generate()
    assert gate.seconds_remaining == 30
    clock.advance(10.5)
    assert gate.seconds_remaining == 20
    gate.cancel()
    assert gate.seconds_remaining == 0


@pytest.mark.asyncio
async def test_tick_reports_full_countdown_on_generate(clock):
    ticks = []
    gate = _gate(clock, on_tick=ticks.append)
    gate.generate()
    assert ticks == [30]
    gate.cancel()


@pytest.mark.asyncio
async def test_expiry_callback_fires_on_the_loop():
    expired = asyncio.Event()
    ticks = []
    gate = PinGate(
        timeout=0.05,
        rng=ScriptedDigits("1234"),
        on_expired=expired.set,
        on_tick=ticks.append,
    )
    gate.generate()
    await asyncio.wait_for(expired.wait(), 1)
    assert gate.code is None
    assert ticks[-1] == 0
    # The timed-out code stays recognizable as expired, not wrong.
    assert gate.verify("1234").outcome == PinOutcome.EXPIRED


@pytest.mark.asyncio
async def test_cancel_stops_the_expiry_timer():
    expired = asyncio.Event()
    gate = PinGate(timeout=0.05, on_expired=expired.set)
    gate.generate()
    gate.cancel()
    await asyncio.sleep(0.1)
    assert not expired.is_set()
