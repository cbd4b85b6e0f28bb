"""
Retry policy built on the tenacity library.
Used by the connection supervisor to re-establish the munin-node session.
"""
from tenacity import (
    Retrying,
    stop_after_attempt,
    stop_never,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log
)
import logging
import time
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Fixed-delay retry policy with an optional attempt limit.

    The default policy retries forever, one second apart. Tests inject a
    bounded policy and a fake ``sleep`` so nothing actually waits.

    Example:
        policy = RetryPolicy(interval=1.0)
        policy.call(client.connect, retry_on=(MuninConnectionError,))
    """

    def __init__(
        self,
        interval: float = 1.0,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            interval: Seconds to wait between attempts
            max_attempts: Give up after this many attempts (None = never)
            sleep: Sleep function, injectable for tests
        """
        if interval < 0:
            raise ValueError("interval must be >= 0")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.interval = interval
        self.max_attempts = max_attempts
        self.sleep = sleep

    @property
    def is_bounded(self) -> bool:
        return self.max_attempts is not None

    def retrying(
        self,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    ) -> Retrying:
        """
        Build a tenacity ``Retrying`` controller for this policy.

        Args:
            retry_on: Exception types that trigger another attempt

        Returns:
            Configured Retrying instance
        """
        stop = stop_after_attempt(self.max_attempts) if self.is_bounded else stop_never
        return Retrying(
            stop=stop,
            wait=wait_fixed(self.interval),
            retry=retry_if_exception_type(retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True
        )

    def call(
        self,
        fn: Callable[..., Any],
        *args,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        **kwargs
    ) -> Any:
        """Invoke *fn* under this policy, re-raising the last error if exhausted."""
        return self.retrying(retry_on)(fn, *args, **kwargs)

    def __repr__(self) -> str:
        return f"RetryPolicy(interval={self.interval}, max_attempts={self.max_attempts})"


def create_retry_policy_from_config(config) -> RetryPolicy:
    """
    Create RetryPolicy from configuration.

    Args:
        config: Settings object with a ``reconnect`` section

    Returns:
        Configured RetryPolicy
    """
    return RetryPolicy(
        interval=config.reconnect.interval_seconds,
        max_attempts=config.reconnect.max_attempts
    )
