import asyncio
from enum import Enum
from typing import Callable, Any, Dict, Optional, Tuple, Type
from datetime import datetime, timedelta
import structlog

from donation_ledger.core.config import get_settings

logger = structlog.get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised instead of calling through while the circuit is open"""
    pass


class CircuitBreaker:
    """Circuit breaker guarding calls to one payment provider"""

    def __init__(self,
                 name: str,
                 failure_threshold: int = 5,
                 recovery_timeout: timedelta = timedelta(seconds=30),
                 expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,)):
        """
        Initialize circuit breaker

        Args:
            name: Provider the breaker protects, used in logs
            failure_threshold: Number of consecutive failures before opening
            recovery_timeout: Time to wait before letting a trial call through
            expected_exceptions: Exception types counted as provider failures
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitState.CLOSED

    def _should_attempt_reset(self) -> bool:
        if self.state != CircuitState.OPEN or not self.last_failure_time:
            return False
        return datetime.now() - self.last_failure_time >= self.recovery_timeout

    def _on_success(self):
        self.failure_count = 0
        self.last_failure_time = None

        if self.state != CircuitState.CLOSED:
            logger.info("Circuit breaker closed after successful call", provider=self.name)
            self.state = CircuitState.CLOSED

    def _on_failure(self, exception: BaseException):
        self.failure_count += 1
        self.last_failure_time = datetime.now()

        # A failed trial call re-opens immediately
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning("Circuit breaker opened due to provider failures",
                               provider=self.name,
                               failure_count=self.failure_count,
                               threshold=self.failure_threshold,
                               error=str(exception))
            self.state = CircuitState.OPEN

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute func with circuit breaker protection"""
        if self._should_attempt_reset():
            logger.info("Circuit breaker attempting half-open state", provider=self.name)
            self.state = CircuitState.HALF_OPEN

        if self.state == CircuitState.OPEN:
            raise CircuitBreakerError(f"Circuit breaker for {self.name} is OPEN - provider temporarily unavailable")

        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)

            self._on_success()
            return result

        except self.expected_exceptions as e:
            self._on_failure(e)
            raise

    def get_state(self) -> dict:
        """Get current circuit breaker state"""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "recovery_timeout_seconds": self.recovery_timeout.total_seconds()
        }


_provider_breakers: Dict[str, CircuitBreaker] = {}


def get_provider_breaker(provider: str, expected_exceptions: Tuple[Type[BaseException], ...] = (Exception,)) -> CircuitBreaker:
    """Get (or lazily create) the circuit breaker for a provider"""
    breaker = _provider_breakers.get(provider)
    if breaker is None:
        settings = get_settings()
        breaker = CircuitBreaker(
            name=provider,
            failure_threshold=settings.provider_failure_threshold,
            recovery_timeout=timedelta(seconds=settings.provider_recovery_seconds),
            expected_exceptions=expected_exceptions,
        )
        _provider_breakers[provider] = breaker
    return breaker


def get_all_breaker_states() -> Dict[str, dict]:
    return {name: breaker.get_state() for name, breaker in _provider_breakers.items()}


def reset_provider_breakers():
    _provider_breakers.clear()
