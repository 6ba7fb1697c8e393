"""
Background persistence for session snapshots.

SessionSyncer watches a SessionStore and, once a session has been quiet
for the debounce window, POSTs its full snapshot to

    {endpoint}/{session_id}

Persistence is best-effort. The in-memory store stays authoritative:
failed requests are logged and not retried, and nothing is raised to the
caller.

Rules:
    - Changes that only move the prompt index do not trigger a sync.
    - The snapshot is read when the flush runs, not when the change happened.
    - A change made while a flush for the same session is in flight is not
      lost: the session is rescheduled once the flush finishes.
    - Store notifications raised on the flushing thread itself are ignored,
      so a flush can never re-trigger itself.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Set

import requests

from interview_core.config import Settings
from interview_core.serialization import session_to_dict
from interview_core.session import Action, SessionMap, SessionState, SessionStore

logger = logging.getLogger(__name__)

TimerFactory = Callable[..., Any]


def only_prompt_changed(before: SessionState, after: SessionState) -> bool:
    """True when two snapshots differ in prompt_index alone."""
    return before != after and replace(before, prompt_index=after.prompt_index) == after


def _json_payload(session: SessionState) -> Dict[str, Any]:
    """Snapshot as plain JSON types; dates and other values fall back to str()."""
    return json.loads(json.dumps(session_to_dict(session), ensure_ascii=True, default=str))


class SessionSyncer:
    """
    Debounced HTTP sync of session snapshots.

    Args:
        store: SessionStore to watch
        endpoint: Base URL; the session id is appended as a path segment
        http_session: requests.Session (or compatible) used for POSTs
        debounce_seconds: Quiescence window before a flush
        timeout: Per-request timeout in seconds
        timer_factory: threading.Timer-compatible factory
            (interval, function, args=...)
    """

    def __init__(
        self,
        store: SessionStore,
        endpoint: str,
        http_session: Optional[requests.Session] = None,
        debounce_seconds: float = 3.0,
        timeout: float = 10.0,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.store = store
        self.endpoint = endpoint.rstrip("/")
        self.debounce_seconds = debounce_seconds
        self.timeout = timeout
        self._http = http_session or requests.Session()
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._timers: Dict[str, Any] = {}
        self._in_flight: Set[str] = set()
        self._dirty: Set[str] = set()
        self._local = threading.local()

        self._unsubscribe = store.subscribe(self._on_change)

    @classmethod
    def from_settings(
        cls,
        store: SessionStore,
        settings: Settings,
        http_session: Optional[requests.Session] = None,
    ) -> Optional["SessionSyncer"]:
        """Build a syncer from settings; None when no endpoint is configured."""
        if not settings.sync_endpoint:
            return None
        return cls(
            store,
            settings.sync_endpoint,
            http_session=http_session,
            debounce_seconds=settings.sync_debounce_seconds,
            timeout=settings.sync_timeout_seconds,
        )

    # -------------------------------------------------------------------------
    # Change tracking
    # -------------------------------------------------------------------------

    def _on_change(self, previous: SessionMap, current: SessionMap, action: Action) -> None:
        if getattr(self._local, "flushing", False):
            return

        session_id = action.session_id
        after = current.get(session_id)
        if after is None:
            self.cancel(session_id)
            return

        before = previous.get(session_id)
        if before is not None and only_prompt_changed(before, after):
            return

        self.schedule(session_id)

    def schedule(self, session_id: str) -> None:
        """(Re)start the debounce window for a session."""
        with self._lock:
            if session_id in self._in_flight:
                self._dirty.add(session_id)
                return
            previous = self._timers.pop(session_id, None)
            if previous is not None:
                previous.cancel()
            timer = self._timer_factory(self.debounce_seconds, self.flush, args=(session_id,))
            timer.daemon = True
            self._timers[session_id] = timer
        timer.start()

    def cancel(self, session_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(session_id, None)
            self._dirty.discard(session_id)
        if timer is not None:
            timer.cancel()

    @property
    def pending(self) -> Set[str]:
        with self._lock:
            return set(self._timers)

    # -------------------------------------------------------------------------
    # Flushing
    # -------------------------------------------------------------------------

    def flush(self, session_id: str) -> bool:
        """
        POST the current snapshot of a session.

        Returns:
            True on a 2xx response; False on failure, a missing session, or
            when a flush for the session is already running
        """
        with self._lock:
            timer = self._timers.pop(session_id, None)
            if session_id in self._in_flight:
                self._dirty.add(session_id)
                return False
            self._in_flight.add(session_id)
        # A direct flush supersedes the pending window
        if timer is not None:
            timer.cancel()

        self._local.flushing = True
        try:
            return self._post(session_id)
        finally:
            self._local.flushing = False
            with self._lock:
                self._in_flight.discard(session_id)
                rerun = session_id in self._dirty
                self._dirty.discard(session_id)
            if rerun:
                self.schedule(session_id)

    def _post(self, session_id: str) -> bool:
        session = self.store.get_session(session_id)
        if session is None:
            logger.debug("Session %s no longer exists; nothing to sync", session_id)
            return False

        try:
            payload = _json_payload(session)
        except (TypeError, ValueError) as exc:
            logger.error("Sync of session %s failed: snapshot is not serializable: %s", session_id, exc)
            return False

        url = f"{self.endpoint}/{session_id}"
        try:
            response = self._http.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Sync of session %s failed: %s", session_id, exc)
            return False

        if not 200 <= response.status_code < 300:
            logger.error("Sync of session %s rejected: HTTP %s", session_id, response.status_code)
            return False

        logger.debug("Synced session %s", session_id)
        return True

    def close(self) -> None:
        """Stop watching the store and cancel pending flushes."""
        self._unsubscribe()
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._dirty.clear()
        for timer in timers:
            timer.cancel()
