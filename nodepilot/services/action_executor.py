"""
NodePilot - Machine Action Executor
===================================

Calls a machine's start or stop endpoint and classifies what happened.

The remote control surface uses HTTP status codes in a specific way:
- 2xx: the action was accepted
- 4xx: the machine is already in the requested state ("already running",
  "already stopped"); this is reported as success and never retried
- 5xx, network errors and timeouts: transient, retried a bounded number
  of times with a fixed delay between attempts

Failures are returned as values, never raised, so one unreachable machine
cannot abort the evaluation of the rest of the fleet.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import aiohttp

from ..config import get_settings


# =============================================================================
# LOGGER SETUP
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# OUTCOME TYPES
# =============================================================================

class OutcomeKind(str, enum.Enum):
    SUCCESS = "success"
    ALREADY_IN_STATE = "already_in_state"
    PERMANENT_FAILURE = "permanent_failure"
    RETRIES_EXHAUSTED = "retries_exhausted"


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one `execute()` call."""
    kind: OutcomeKind
    attempts: int
    status_code: Optional[int] = None
    message: str = ""

    @property
    def is_success(self) -> bool:
        return self.kind in (OutcomeKind.SUCCESS, OutcomeKind.ALREADY_IN_STATE)

    @property
    def already_in_state(self) -> bool:
        return self.kind == OutcomeKind.ALREADY_IN_STATE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'outcome': self.kind.value,
            'success': self.is_success,
            'already_in_state': self.already_in_state,
            'attempts': self.attempts,
            'status_code': self.status_code,
            'message': self.message,
        }

    def __str__(self) -> str:
        detail = f" ({self.message})" if self.message else ""
        return f"{self.kind.value} after {self.attempts} attempt(s){detail}"


# =============================================================================
# EXECUTOR
# =============================================================================

class ActionExecutor:
    """
    Issues start/stop calls with bounded retry.

    Each attempt is a parameterless GET with its own timeout. The retry
    delay is an `asyncio.sleep`, so a caller cancelling the surrounding
    task also cancels a pending retry.
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None
    ):
        settings = get_settings()
        self.max_retries = max_retries if max_retries is not None else settings.action_max_retries
        self.retry_delay_seconds = (
            retry_delay_seconds if retry_delay_seconds is not None
            else settings.action_retry_delay_seconds
        )
        self.timeout = aiohttp.ClientTimeout(
            total=timeout_seconds if timeout_seconds is not None else settings.action_timeout_seconds
        )

        self.total_calls = 0
        self.failed_calls = 0

    async def execute(self, url: str, max_retries: Optional[int] = None) -> ActionOutcome:
        """
        Invoke `url` until it succeeds, signals already-in-state, or the
        attempt budget runs out.

        Args:
            url: The machine's start or stop endpoint
            max_retries: Total number of attempts (defaults to the configured value)

        Returns:
            ActionOutcome describing the terminal result
        """
        max_retries = self.max_retries if max_retries is None else max_retries
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        self.total_calls += 1

        if not _is_valid_url(url):
            self.failed_calls += 1
            logger.error(f"Refusing to call invalid action URL: {url!r}")
            return ActionOutcome(OutcomeKind.PERMANENT_FAILURE, attempts=0, message=f"Invalid URL: {url!r}")

        last_error = ""
        last_status: Optional[int] = None

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            for attempt in range(1, max_retries + 1):
                try:
                    status = await self._issue_call(session, url)
                except aiohttp.InvalidURL as e:
                    self.failed_calls += 1
                    logger.error(f"Invalid action URL {url}: {e}")
                    return ActionOutcome(OutcomeKind.PERMANENT_FAILURE, attempts=attempt, message=f"Invalid URL: {e}")
                except _TransientError as e:
                    last_error, last_status = str(e), e.status_code
                else:
                    outcome = self._classify(status, attempt)
                    if outcome is not None:
                        if not outcome.is_success:
                            self.failed_calls += 1
                        logger.info(f"Action call {url} -> {outcome}")
                        return outcome
                    last_error, last_status = f"HTTP {status}", status

                if attempt < max_retries:
                    logger.warning(
                        f"Action call {url} failed (attempt {attempt}/{max_retries}): {last_error}; "
                        f"retrying in {self.retry_delay_seconds}s"
                    )
                    await asyncio.sleep(self.retry_delay_seconds)

        self.failed_calls += 1
        logger.error(f"Action call {url} gave up after {max_retries} attempts: {last_error}")
        return ActionOutcome(
            OutcomeKind.RETRIES_EXHAUSTED,
            attempts=max_retries,
            status_code=last_status,
            message=last_error
        )

    @staticmethod
    def _classify(status: int, attempt: int) -> Optional[ActionOutcome]:
        """Map a status code to a terminal outcome, or None when it should be retried."""
        if 200 <= status < 300:
            return ActionOutcome(OutcomeKind.SUCCESS, attempts=attempt, status_code=status)
        if 400 <= status < 500:
            return ActionOutcome(
                OutcomeKind.ALREADY_IN_STATE,
                attempts=attempt,
                status_code=status,
                message="Machine already in requested state"
            )
        if status >= 500:
            return None
        return ActionOutcome(
            OutcomeKind.PERMANENT_FAILURE,
            attempts=attempt,
            status_code=status,
            message=f"Unexpected HTTP status {status}"
        )

    async def _issue_call(self, session: aiohttp.ClientSession, url: str) -> int:
        """
        Perform one GET and return its status code.

        Network failures and timeouts are raised as _TransientError.
        """
        try:
            async with session.get(url) as response:
                return response.status
        except aiohttp.InvalidURL:
            raise
        except aiohttp.ClientError as e:
            raise _TransientError(f"Network error: {e}") from e
        except asyncio.TimeoutError:
            raise _TransientError("Request timed out") from None

    def get_usage_stats(self) -> Dict[str, Any]:
        return {
            'total_calls': self.total_calls,
            'failed_calls': self.failed_calls,
            'success_rate': (self.total_calls - self.failed_calls) / max(self.total_calls, 1),
            'max_retries': self.max_retries,
            'retry_delay_seconds': self.retry_delay_seconds,
        }


def _is_valid_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


# =============================================================================
# SERVICE FACTORY FUNCTION
# =============================================================================

_action_executor_instance = None

def get_action_executor() -> ActionExecutor:
    """Get singleton instance of the action executor."""
    global _action_executor_instance

    if _action_executor_instance is None:
        _action_executor_instance = ActionExecutor()

    return _action_executor_instance


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class _TransientError(Exception):
    """An attempt failed in a way worth retrying."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
