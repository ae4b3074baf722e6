"""
Error taxonomy for call dispatch and job processing.

Every failure is one of a closed set of variants, tagged where it is raised:

  Throttled         — busy voice service or outside call window; converted to a
                      delayed re-enqueue by the dispatch processor, never a failure
  TransientFailure  — network / rate limit / 5xx; the queue retries with backoff
  PermanentFailure  — anything else from the call attempt; dead immediately
  ConfigError       — bad tenant, credentials or contact; rejected at enqueue
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from job_queue.message_queue import UnrecoverableError


class DialQueueError(Exception):
    retryable = False

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason or message


class Throttled(DialQueueError):
    """Capacity or call window is unavailable; try again after ``delay_ms``.

    ``next_slot`` is set when the wait is for the next call window rather
    than for capacity.
    """

    def __init__(
        self,
        message: str,
        delay_ms: int = 0,
        reason: Optional[str] = None,
        next_slot: Optional[datetime] = None,
    ):
        super().__init__(message, reason)
        self.delay_ms = delay_ms
        self.next_slot = next_slot


class TransientFailure(DialQueueError):
    retryable = True


class PermanentFailure(DialQueueError, UnrecoverableError):
    pass


class ConfigError(DialQueueError, UnrecoverableError):
    pass


class TenantNotFound(ConfigError):
    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant not found: {tenant_id}")
        self.tenant_id = tenant_id


def classify(exc: BaseException) -> DialQueueError:
    """Map any exception onto the closed taxonomy."""
    if isinstance(exc, DialQueueError):
        return exc
    return PermanentFailure(str(exc) or type(exc).__name__)
