import asyncio
import random
from typing import Any, Awaitable, Callable, Optional
import httpx
from shopbot import logger
from shopbot.common.circuit_breaker import CircuitBreaker, CircuitOpenError
from shopbot.common.exceptions import GatewayError, GatewayUnavailable


def is_recoverable_exception(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError):
        return False
    # connect/read/write timeouts and dropped connections
    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, GatewayError) and exc.status_code is not None:
        return exc.status_code == 429 or exc.status_code >= 500
    return False


async def _sleep_with_jitter(delay: float, jitter: float) -> None:
    jitter_val = random.uniform(-jitter * delay, jitter * delay)
    await asyncio.sleep(max(0.0, delay + jitter_val))


async def run_with_retry(
    call: Callable[[], Awaitable[Any]],
    *,
    circuit: Optional[CircuitBreaker] = None,
    attempts: int = 3,
    base_delay: float = 0.2,
    factor: float = 2.0,
    max_delay: float = 2.0,
    jitter: float = 0.15,
    operation: str = "gateway.call",
):
    """Run `call` with exponential backoff + jitter, guarded by an optional circuit breaker.

    Non-retryable errors propagate on the first attempt. When the circuit is open the call
    fails fast with GatewayUnavailable.
    """
    last_exc: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        acquired_probe = False
        if circuit is not None:
            try:
                await circuit.before_call()
            except CircuitOpenError as exc:
                raise GatewayUnavailable(str(exc), method=operation) from exc

            if circuit.state == "HALF_OPEN":
                acquired_probe = await circuit.acquire_half_open_probe(timeout=0.1)
                if not acquired_probe:
                    raise GatewayUnavailable(f"circuit {circuit.name} probe busy", method=operation)

        try:
            result = await call()

            if acquired_probe:
                circuit.release_half_open_probe()
            if circuit is not None:
                await circuit.record_success()
            return result

        except asyncio.CancelledError:
            if acquired_probe:
                circuit.release_half_open_probe()
            raise
        except Exception as exc:
            last_exc = exc
            if acquired_probe:
                circuit.release_half_open_probe()

            retryable = is_recoverable_exception(exc)

            # only transport-level trouble counts against the circuit
            if retryable and circuit is not None:
                await circuit.record_failure()

            if not retryable or attempt == attempts:
                raise

            delay = min(max_delay, base_delay * (factor ** (attempt - 1)))
            logger.debug("%s attempt %d failed; retrying in %.2fs: %s", operation, attempt, delay, exc)
            await _sleep_with_jitter(delay, jitter)

    raise last_exc
