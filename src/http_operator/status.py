"""Status tracking.

The status tracker is the only component that produces Status values. It
is called once per reconcile call with the call's outcome and returns a new
Status; the input is never mutated.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from .models import Cache, HttpResponse, RequestDetails, Status


def format_timestamp(moment: datetime) -> str:
    """Format as RFC3339 in UTC with second precision."""
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(text: str) -> datetime | None:
    """Parse an RFC3339 timestamp; empty or malformed text gives None."""
    if not text:
        return None
    try:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


@dataclass(frozen=True)
class CallOutcome:
    """What happened during one reconcile call.

    Attributes:
        request: The request actually dispatched, or None if nothing was sent.
        response: The response received, or None.
        error: The failure that terminated the call, or None.
        synced: Whether the call completed in the desired state.
    """

    request: RequestDetails | None = None
    response: HttpResponse | None = None
    error: BaseException | None = None
    synced: bool = False


class StatusTracker:
    """Produces the next Status from the previous one and a call outcome."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))

    def record(self, status: Status, outcome: CallOutcome) -> Status:
        """Apply one call outcome.

        - requestDetails follows the dispatched request; without a dispatch
          the previous echo is kept.
        - An error increments ``failed`` and sets ``error``.
        - A synced outcome resets ``failed`` and clears ``error``; the reset
          wins over an error in the same call.
        - Any received response refreshes ``response`` and ``cache``.
        """
        now = format_timestamp(self._clock())
        update: dict = {"synced": outcome.synced, "last_reconcile_time": now}

        if outcome.request is not None:
            update["request_details"] = outcome.request

        if outcome.error is not None:
            update["failed"] = status.failed + 1
            update["error"] = str(outcome.error) or type(outcome.error).__name__

        if outcome.synced:
            update["failed"] = 0
            update["error"] = ""

        if outcome.response is not None:
            update["response"] = outcome.response
            update["cache"] = Cache(last_updated=now, response=outcome.response)

        return status.model_copy(update=update)
