"""Collaborator interfaces for review staging and submitter notifications.

The promotion pipeline only talks to these protocols. Delivery (e-mail, chat,
hosted review) lives outside this package; the bundled implementations record
structured log events so a batch run leaves an audit trail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Protocol, runtime_checkable

from paymap.observability import Observability, get_observability

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class NotificationRequest:
    """Message for the submitter of a processed submission."""

    ref: str
    kind: str
    fields: Dict[str, str] = field(default_factory=dict)


@runtime_checkable
class Notifier(Protocol):
    def notify(self, request: NotificationRequest) -> None: ...


@runtime_checkable
class ReviewSink(Protocol):
    def stage(self, ref: str, record_id: str | None, status: str, detail: Dict[str, str]) -> None: ...


class LoggingNotifier:
    """Notifier that emits a ``notification.requested`` event per request."""

    def __init__(self, observability: Observability | None = None) -> None:
        self.observability = observability or get_observability(component="notifications")

    def notify(self, request: NotificationRequest) -> None:
        self.observability.emit_event(
            "notification.requested", ref=request.ref, kind=request.kind, fields=dict(request.fields)
        )
        self.observability.increment("notifications.requested", tags={"kind": request.kind})


class LoggingReviewSink:
    """Review sink that emits a ``review.staged`` event per outcome."""

    def __init__(self, observability: Observability | None = None) -> None:
        self.observability = observability or get_observability(component="review")

    def stage(self, ref: str, record_id: str | None, status: str, detail: Dict[str, str]) -> None:
        self.observability.emit_event("review.staged", ref=ref, record_id=record_id, status=status, **detail)


class RecordingNotifier:
    """In-memory notifier, handy for dry runs and tests."""

    def __init__(self) -> None:
        self.requests: List[NotificationRequest] = []

    def notify(self, request: NotificationRequest) -> None:
        LOGGER.debug("Recorded notification %s for %s", request.kind, request.ref)
        self.requests.append(request)


__all__ = [
    "LoggingNotifier",
    "LoggingReviewSink",
    "NotificationRequest",
    "Notifier",
    "RecordingNotifier",
    "ReviewSink",
]
