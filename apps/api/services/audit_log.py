"""Best-effort audit event recording with correlation ids and duplicate suppression."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import string
import threading
import time
import uuid
from collections import OrderedDict
from contextvars import ContextVar
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.audit_log import AuditLog
from services.errors import AuditError

logger = logging.getLogger(__name__)

# Acting identity for audit events emitted while serving a request.
current_user_id: ContextVar[Optional[str]] = ContextVar("audit_current_user_id", default=None)

AUDIT_SOURCES = {"client", "server"}
_BASE36 = string.digits + string.ascii_lowercase


class AuditEventType(str, Enum):
    SIGN_IN = "sign_in"
    SIGN_OUT = "sign_out"
    SIGN_UP = "sign_up"
    AUTH_ERROR = "auth_error"
    CALIBRATION_STARTED = "calibration_started"
    CALIBRATION_COMPLETED = "calibration_completed"
    CALIBRATION_FAILED = "calibration_failed"
    CALIBRATION_DELETED = "calibration_deleted"
    EXPERIMENT_CREATED = "experiment_created"
    EXPERIMENT_UPDATED = "experiment_updated"
    EXPERIMENT_DELETED = "experiment_deleted"
    EXPERIMENT_GENERATED = "experiment_generated"
    EXPERIMENT_INSERTED = "experiment_inserted"
    DATA_EXPORTED = "data_exported"
    SETTINGS_CHANGED = "settings_changed"
    SESSION_RESTORED = "session_restored"
    REALTIME_CONNECTED = "realtime_connected"
    REALTIME_DISCONNECTED = "realtime_disconnected"
    REALTIME_ERROR = "realtime_error"
    ANALYTICS_UPDATED = "analytics_updated"
    ANALYTICS_COMPUTED = "analytics_computed"
    LLM_STREAM_STARTED = "llm_stream_started"
    LLM_STREAM_COMPLETED = "llm_stream_completed"
    LLM_REQUEST_ERROR = "llm_request_error"


def generate_correlation_id(prefix: Optional[str] = None) -> str:
    """`<epoch ms>-<8 base36 chars>`, optionally prefixed (e.g. with a user id)."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(8))
    token = f"{int(time.time() * 1000)}-{suffix}"
    return f"{prefix}-{token}" if prefix else token


class DedupCache:
    """Bounded key -> last-seen timestamp map; oldest keys are evicted first."""

    def __init__(self, max_entries: int = 1024) -> None:
        self.max_entries = max(int(max_entries), 1)
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[float]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, seen_at: float) -> None:
        with self._lock:
            self._entries[key] = seen_at
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def seen_within(self, key: str, now: float, window_seconds: float) -> bool:
        """Return True when `key` was recorded less than `window_seconds` before `now`."""
        with self._lock:
            last_seen = self._entries.get(key)
            return last_seen is not None and now - last_seen < window_seconds

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class InFlightFlag:
    """Single shared flag set while an audit write is in progress.

    Coarse guard: concurrent writers from other requests can also be turned away.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active = False

    def try_acquire(self) -> bool:
        with self._lock:
            if self._active:
                return False
            self._active = True
            return True

    def release(self) -> None:
        with self._lock:
            self._active = False

    @property
    def active(self) -> bool:
        return self._active


async def _context_identity() -> Optional[str]:
    return current_user_id.get()


def _json_safe(data: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(data, default=str))


class AuditLogger:
    """Records audit events. Never raises into the caller."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        dedup_window_seconds: float = 2.0,
        dedup_cache: Optional[DedupCache] = None,
        in_flight: Optional[InFlightFlag] = None,
        identity_resolver: Optional[Callable[[], Awaitable[Optional[str]]]] = None,
        identity_retry_delay: float = 0.25,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.session_maker = session_maker
        self.dedup_window_seconds = max(float(dedup_window_seconds), 0.0)
        self.dedup_cache = dedup_cache if dedup_cache is not None else DedupCache()
        self.in_flight = in_flight if in_flight is not None else InFlightFlag()
        self.identity_resolver = identity_resolver or _context_identity
        self.identity_retry_delay = identity_retry_delay
        self.clock = clock
        self.sleep = sleep

    async def _resolve_identity(self, user_id: Optional[str]) -> Optional[str]:
        if user_id:
            return user_id
        resolved = await self.identity_resolver()
        if resolved:
            return resolved
        # Identity can lag right after startup/sign-in; one retry covers it.
        await self.sleep(self.identity_retry_delay)
        return await self.identity_resolver()

    async def log_event(
        self,
        event_type: Union[AuditEventType, str],
        event_data: Optional[Dict[str, Any]] = None,
        source: str = "server",
        user_id: Optional[str] = None,
    ) -> bool:
        """Record one event. Returns True when a row was written."""
        try:
            return await self._log_event(event_type, dict(event_data or {}), source, user_id)
        except Exception as exc:
            logger.error("Error logging audit event %s: %s", event_type, exc)
            return False

    async def _log_event(
        self,
        event_type: Union[AuditEventType, str],
        event_data: Dict[str, Any],
        source: str,
        user_id: Optional[str],
    ) -> bool:
        try:
            kind = AuditEventType(event_type)
        except ValueError:
            logger.warning("Unknown audit event type skipped: %s", event_type)
            return False
        if source not in AUDIT_SOURCES:
            source = "server"

        actor = await self._resolve_identity(user_id)
        if not actor:
            logger.warning("No authenticated user for audit event: %s", kind.value)
            return False

        payload = _json_safe(event_data)
        dedup_key: Optional[str] = None
        seen_at = self.clock()
        if self.dedup_window_seconds > 0:
            dedup_key = f"{actor}:{kind.value}:{json.dumps(payload, sort_keys=True)}"
            if self.dedup_cache.seen_within(dedup_key, seen_at, self.dedup_window_seconds):
                logger.debug("Skipped duplicate audit event: %s", kind.value)
                return False

        if not self.in_flight.try_acquire():
            logger.warning("Audit write already in flight; dropping nested event %s", kind.value)
            return False
        try:
            await self._write(actor, kind, payload, source)
        except AuditError as exc:
            logger.error("Failed to log audit event %s: %s", kind.value, exc)
            return False
        finally:
            self.in_flight.release()

        # Only written events count as duplicates; dropped or failed ones may be retried.
        if dedup_key is not None:
            self.dedup_cache.set(dedup_key, seen_at)
        return True

    async def _write(self, actor: str, kind: AuditEventType, payload: Dict[str, Any], source: str) -> None:
        correlation_id = str(payload.get("correlation_id") or generate_correlation_id())
        try:
            async with self.session_maker() as db:
                db.add(
                    AuditLog(
                        id=str(uuid.uuid4()),
                        user_id=actor,
                        event_type=kind.value,
                        event_data=payload,
                        correlation_id=correlation_id,
                        source=source,
                    )
                )
                await db.commit()
        except Exception as exc:
            raise AuditError(str(exc)) from exc

    async def log_batch(self, events: Iterable[Dict[str, Any]], source: str = "server") -> int:
        """Log `{type, data}` events in order; returns how many were written."""
        written = 0
        for event in events:
            if await self.log_event(event.get("type", ""), event.get("data") or {}, source=source):
                written += 1
        return written

    def clear_dedup_cache(self) -> None:
        self.dedup_cache.clear()
