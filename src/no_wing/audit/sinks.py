"""Audit sinks: the durable local log, the CloudWatch mirror, CloudTrail checks.

All methods here block; the pipeline runs them in worker threads.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from no_wing.audit.models import AuditEvent
from no_wing.errors import AuditWriteFailed, NoWingError
from no_wing.utils.time import ensure_aware, epoch_millis, utc_now

if TYPE_CHECKING:
    from no_wing.aws.client_factory import ServiceClientFactory

logger = logging.getLogger(__name__)

_LOG_FILE_MODE = 0o600


class LocalAuditLog:
    """Append-only JSON-lines file.

    Each entry goes out in a single ``os.write`` on an ``O_APPEND``
    descriptor, so concurrent processes may interleave entries but never
    the bytes of one entry.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, events: Sequence[AuditEvent]) -> int:
        if not events:
            return 0
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, _LOG_FILE_MODE)
        except OSError as exc:
            raise AuditWriteFailed(f"Cannot open audit log {self._path}: {exc}") from exc
        try:
            for event in events:
                data = event.to_json_line().encode("utf-8")
                written = os.write(fd, data)
                if written != len(data):
                    raise AuditWriteFailed(
                        f"Short write to audit log {self._path}: {written}/{len(data)} bytes"
                    )
        except OSError as exc:
            raise AuditWriteFailed(f"Cannot write audit log {self._path}: {exc}") from exc
        finally:
            os.close(fd)
        return len(events)

    def read_events(self) -> Iterator[AuditEvent]:
        """Yield every parseable entry; malformed lines are skipped."""
        if not self._path.exists():
            return
        with self._path.open("r", encoding="utf-8") as handle:
            for lineno, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield AuditEvent.model_validate_json(line)
                except ValidationError as exc:
                    logger.warning(
                        "Skipping malformed audit log line %d in %s (%d errors)",
                        lineno,
                        self._path,
                        exc.error_count(),
                    )


class CloudWatchAuditSink:
    """Mirror of the local log in a CloudWatch Logs stream.

    Failures are logged and never propagated; the local log stays the
    record of truth.
    """

    def __init__(
        self,
        clients: "ServiceClientFactory",
        log_group: str,
        log_stream: str | None = None,
    ) -> None:
        self._clients = clients
        self.log_group = log_group
        self.log_stream = log_stream or f"no-wing-{epoch_millis()}"
        self._stream_ready = False

    def _ensure_stream(self, client: Any) -> None:
        if self._stream_ready:
            return
        try:
            client.create_log_stream(logGroupName=self.log_group, logStreamName=self.log_stream)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "ResourceAlreadyExistsException":
                raise
        self._stream_ready = True

    def put_events(self, events: Sequence[AuditEvent]) -> bool:
        if not events:
            return True
        log_events = [
            {"timestamp": epoch_millis(event.timestamp), "message": event.model_dump_json()}
            for event in events
        ]
        log_events.sort(key=lambda item: item["timestamp"])
        try:
            client = self._clients.get_client("logs")
            self._ensure_stream(client)
            client.put_log_events(
                logGroupName=self.log_group,
                logStreamName=self.log_stream,
                logEvents=log_events,
            )
        except (ClientError, BotoCoreError, NoWingError) as exc:
            logger.error("Failed to write audit events to CloudWatch: %s", exc)
            return False
        return True

    def fetch_events(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int = 1000,
    ) -> list[AuditEvent]:
        params: dict[str, Any] = {"logGroupName": self.log_group}
        if start_time is not None:
            params["startTime"] = epoch_millis(start_time)
        if end_time is not None:
            params["endTime"] = epoch_millis(end_time)

        events: list[AuditEvent] = []
        try:
            client = self._clients.get_client("logs")
            paginator = client.get_paginator("filter_log_events")
            for page in paginator.paginate(**params):
                for item in page.get("events", []):
                    event = _parse_remote(item.get("message", ""))
                    if event is not None:
                        events.append(event)
                if len(events) >= limit:
                    break
        except (ClientError, BotoCoreError, NoWingError) as exc:
            logger.error("Failed to query CloudWatch audit events: %s", exc)
            return []
        return events[:limit]


def _parse_remote(message: str) -> AuditEvent | None:
    try:
        return AuditEvent.model_validate_json(message)
    except ValidationError:
        logger.debug("Ignoring non-audit CloudWatch message")
        return None


class CloudTrailVerifier:
    def __init__(self, clients: "ServiceClientFactory", lookback_hours: int = 24) -> None:
        self._clients = clients
        self._lookback = timedelta(hours=lookback_hours)

    def verify(self) -> dict[str, object]:
        end = utc_now()
        start = end - self._lookback
        try:
            client = self._clients.get_client("cloudtrail")
            response = client.lookup_events(StartTime=start, EndTime=end, MaxResults=50)
        except (ClientError, BotoCoreError, NoWingError) as exc:
            logger.warning("CloudTrail verification failed: %s", exc)
            return {
                "is_configured": False,
                "recent_event_count": 0,
                "last_event_time": None,
                "errors": [f"CloudTrail verification failed: {exc}"],
            }

        events = response.get("Events", [])
        times = [ensure_aware(e["EventTime"]) for e in events if e.get("EventTime")]
        return {
            "is_configured": True,
            "recent_event_count": len(events),
            "last_event_time": max(times).isoformat() if times else None,
            "errors": [],
        }
