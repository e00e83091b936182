import httpx
import pytest

from shopbot.common.circuit_breaker import CircuitBreaker
from shopbot.common.exceptions import GatewayError, GatewayUnavailable
from shopbot.common.retries import is_recoverable_exception, run_with_retry


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Flaky:
    """Raises the queued errors in order, then returns "ok"."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def server_error():
    return GatewayError("bad gateway", status_code=502, method="sendMessage")


@pytest.mark.parametrize("exc, expected", [
    (httpx.ConnectError("refused"), True),
    (httpx.ReadTimeout("slow"), True),
    (GatewayError("flood", status_code=429), True),
    (GatewayError("down", status_code=503), True),
    (GatewayError("bad request", status_code=400), False),
    (GatewayError("no status"), False),
    (ValueError("bug"), False),
])
def test_recoverable_exceptions(exc, expected):
    assert is_recoverable_exception(exc) is expected


@pytest.mark.asyncio
async def test_transient_failures_are_retried():
    call = Flaky(httpx.ConnectError("refused"), server_error())
    assert await run_with_retry(call, attempts=3, base_delay=0) == "ok"
    assert call.calls == 3


@pytest.mark.asyncio
async def test_last_error_surfaces_when_attempts_run_out():
    call = Flaky(server_error(), server_error(), server_error())
    with pytest.raises(GatewayError):
        await run_with_retry(call, attempts=2, base_delay=0)
    assert call.calls == 2


@pytest.mark.asyncio
async def test_client_errors_fail_on_the_first_attempt():
    circuit = CircuitBreaker(name="test", failure_threshold=1)
    call = Flaky(GatewayError("chat not found", status_code=400))

    with pytest.raises(GatewayError):
        await run_with_retry(call, circuit=circuit, attempts=3, base_delay=0)
    assert call.calls == 1
    # a rejected request says nothing about the gateway's health
    assert circuit.state == "CLOSED"


@pytest.mark.asyncio
async def test_circuit_opens_then_recovers_after_the_timeout():
    clock = FakeClock()
    circuit = CircuitBreaker(name="test", failure_threshold=2, recovery_timeout=10, clock=clock)

    with pytest.raises(GatewayError):
        await run_with_retry(Flaky(server_error(), server_error()), circuit=circuit, attempts=2, base_delay=0)
    assert circuit.state == "OPEN"

    untouched = Flaky()
    with pytest.raises(GatewayUnavailable):
        await run_with_retry(untouched, circuit=circuit, operation="gateway.sendMessage")
    assert untouched.calls == 0

    clock.now = 10.5
    assert await run_with_retry(Flaky(), circuit=circuit) == "ok"
    assert circuit.state == "CLOSED"


@pytest.mark.asyncio
async def test_failed_probe_reopens_the_circuit():
    clock = FakeClock()
    circuit = CircuitBreaker(name="test", failure_threshold=1, recovery_timeout=5, clock=clock)

    with pytest.raises(GatewayError):
        await run_with_retry(Flaky(server_error()), circuit=circuit, attempts=1)
    clock.now = 6

    with pytest.raises(GatewayError):
        await run_with_retry(Flaky(server_error()), circuit=circuit, attempts=1)
    assert circuit.state == "OPEN"

    with pytest.raises(GatewayUnavailable):
        await run_with_retry(Flaky(), circuit=circuit)
