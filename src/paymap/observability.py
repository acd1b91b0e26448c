"""Structured run events and StatsD counters for the batch commands.

Events go to the ``paymap.observability`` logger, as one JSON object per line
when structured logging is on and as ``"<event> | <payload>"`` otherwise.
Counters and timings are sent over UDP to a StatsD agent when
``observability.statsd_host`` is configured; without a host they are dropped.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

from paymap.settings import Settings, get_settings

_LOGGER = logging.getLogger("paymap.observability")
_BACKEND_LOCK = threading.Lock()
_SHARED_BACKEND: "StatsdBackend | None" = None


class MetricsBackend(Protocol):
    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None: ...

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None: ...


class Observability:
    """Per-component handle used by the promotion, migration, and review services."""

    def __init__(
        self,
        *,
        settings: Settings,
        component: str | None = None,
        metrics_backend: MetricsBackend | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.component = component or "core"
        self.service = settings.observability.service_name
        self._structured = bool(settings.observability.structured_logging)
        self._metrics = metrics_backend
        self._logger = logger or _LOGGER

    def emit_event(self, event: str, **fields: Any) -> None:
        payload = {
            "event": event,
            "service": self.service,
            "component": self.component,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        if self._structured:
            self._logger.info(json.dumps(payload, ensure_ascii=False, default=str))
        else:
            self._logger.info("%s | %s", event, payload)

    def increment(self, metric: str, *, value: float = 1.0, tags: Mapping[str, str] | None = None) -> None:
        if self._metrics:
            self._metrics.increment(metric, value=value, tags=_clean_tags(tags))

    def record_timing(self, metric: str, value_ms: float, *, tags: Mapping[str, str] | None = None) -> None:
        if self._metrics:
            self._metrics.record_timing(metric, value_ms=value_ms, tags=_clean_tags(tags))


class StatsdBackend:
    """Fire-and-forget StatsD client (DogStatsD tag syntax)."""

    def __init__(self, host: str, port: int, prefix: str = "") -> None:
        self.prefix = prefix
        self._address = (host, port)
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def increment(self, metric: str, *, value: float, tags: Mapping[str, str] | None) -> None:
        self._send(statsd_line(metric, value, "c", tags=tags, prefix=self.prefix))

    def record_timing(self, metric: str, *, value_ms: float, tags: Mapping[str, str] | None) -> None:
        self._send(statsd_line(metric, value_ms, "ms", tags=tags, prefix=self.prefix))

    def _send(self, line: str) -> None:
        try:
            self._socket.sendto(line.encode("utf-8"), self._address)
        except OSError:  # pragma: no cover - UDP send failures are not actionable
            _LOGGER.debug("StatsD send failed: %s", line, exc_info=True)


def statsd_line(
    metric: str,
    value: float,
    metric_type: str,
    *,
    tags: Mapping[str, str] | None = None,
    prefix: str = "",
) -> str:
    """Render one StatsD datagram, e.g. ``paymap.promotion.outcomes:1|c|#status:created``."""

    name = f"{prefix}.{metric}" if prefix else metric
    number = f"{value:.6f}".rstrip("0").rstrip(".") or "0"
    line = f"{name}:{number}|{metric_type}"
    if tags:
        line += "|#" + ",".join(f"{key}:{val}" for key, val in sorted(tags.items()))
    return line


def get_observability(*, component: str | None = None, settings: Settings | None = None) -> Observability:
    resolved = settings or get_settings()
    return Observability(settings=resolved, component=component, metrics_backend=_shared_backend(resolved))


def reset_observability_cache() -> None:
    """Forget the shared StatsD backend (tests switch settings between cases)."""

    global _SHARED_BACKEND
    with _BACKEND_LOCK:
        _SHARED_BACKEND = None


def _shared_backend(settings: Settings) -> StatsdBackend | None:
    global _SHARED_BACKEND
    with _BACKEND_LOCK:
        if _SHARED_BACKEND is None and settings.observability.statsd_host:
            _SHARED_BACKEND = StatsdBackend(
                settings.observability.statsd_host,
                settings.observability.statsd_port,
                settings.observability.statsd_prefix,
            )
        return _SHARED_BACKEND


def _clean_tags(tags: Mapping[str, str] | None) -> Mapping[str, str] | None:
    cleaned = {str(key): str(value) for key, value in (tags or {}).items() if value is not None}
    return cleaned or None


__all__ = [
    "MetricsBackend",
    "Observability",
    "StatsdBackend",
    "get_observability",
    "reset_observability_cache",
    "statsd_line",
]
