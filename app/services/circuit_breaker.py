"""
Circuit breakers for outbound dependencies (currently the e-mail provider).

State lives in Redis via pybreaker's CircuitRedisStorage, so the API process and every
Celery worker see the same open/closed state for a dependency.
"""
import logging

import pybreaker
import redis

from app.core.config import settings
from app.utils.metrics import circuit_breaker_state

logger = logging.getLogger(__name__)

EMAIL_BREAKER = "email"


class BreakerListener(pybreaker.CircuitBreakerListener):
    """Logs transitions and failures, mirrors the state into the Prometheus gauge."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb, old_state, new_state) -> None:
        new_name = getattr(new_state, "name", new_state)
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", old_state),
                "new_state": new_name,
            },
        )

    def failure(self, cb, exc: BaseException) -> None:
        logger.warning(
            "circuit_breaker_failure",
            extra={"breaker_name": self.name, "error": type(exc).__name__},
        )


def _storage(name: str) -> pybreaker.CircuitRedisStorage:
    # CircuitRedisStorage decodes bytes itself
    client = redis.Redis.from_url(settings.redis_url)
    return pybreaker.CircuitRedisStorage(pybreaker.STATE_CLOSED, client, namespace=f"settlement:{name}")


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(name: str) -> pybreaker.CircuitBreaker:
    """Breaker for a dependency, created on first use (construction talks to Redis)."""
    breaker = _breakers.get(name)
    if breaker is None:
        breaker = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            state_storage=_storage(name),
            listeners=[BreakerListener(name)],
            name=name,
        )
        _breakers[name] = breaker
    return breaker
