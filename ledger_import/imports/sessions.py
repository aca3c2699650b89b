"""Background import jobs and their pollable sessions.

A job runs on a daemon thread as soon as it is submitted; the caller gets a
session id back immediately and polls ``get_progress`` until the session is
``completed`` or ``failed``. Sessions live in memory only.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import datetime
from typing import Callable

from ledger_import.imports.models import ImportSession

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Import session {session_id} not found")
        self.session_id = session_id


class SessionStore:
    """Storage for import sessions. Swap in a fresh instance per test."""

    def create(self, session: ImportSession):
        raise NotImplementedError

    def get(self, session_id: str) -> ImportSession:
        raise NotImplementedError

    def update(self, session_id: str, **changes):
        raise NotImplementedError

    def finish(self, session_id: str, status: str, result=None, errors=None):
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: dict[str, ImportSession] = {}
        self._lock = threading.Lock()

    def create(self, session: ImportSession):
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> ImportSession:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            snapshot = copy.copy(session)
            snapshot.errors = list(session.errors)
            return snapshot

    def update(self, session_id: str, **changes):
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if session.done:
                logger.warning(f"Ignoring update to finished session {session_id}: {sorted(changes)}")
                return
            for name, value in changes.items():
                setattr(session, name, value)

    def finish(self, session_id: str, status: str, result=None, errors=None):
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            if session.done:
                logger.warning(f"Session {session_id} already {session.status}, not marking {status}")
                return
            session.status = status
            session.result = result
            session.errors = list(errors or [])
            session.current_step = "done"
            session.finished_at = datetime.now()

    def __len__(self):
        with self._lock:
            return len(self._sessions)


class ProgressReporter:
    """Handed to a running job so it can report how far it got."""

    def __init__(self, store: SessionStore, session_id: str):
        self.store = store
        self.session_id = session_id
        self.processed = 0
        self.errors: list[dict] = []

    def step(self, name: str, total: int | None = None):
        changes = {"current_step": name}
        if total is not None:
            changes["total_transactions"] = total
        self.store.update(self.session_id, **changes)

    def advance(self, count: int = 1):
        self.processed += count
        self.store.update(self.session_id, processed_count=self.processed)

    def add_error(self, description: str, error: str):
        """Record a per-item failure; it does not fail the session."""
        self.errors.append({"description": description, "error": error})


class JobRunner:
    def __init__(self, store: SessionStore | None = None):
        self.store = store if store is not None else InMemorySessionStore()
        self._finished: dict[str, threading.Event] = {}

    def start_job(self, kind: str, total: int, job: Callable[[ProgressReporter], object]) -> str:
        """Create a ``processing`` session and run ``job`` on a background thread."""
        session_id = str(uuid.uuid4())
        self.store.create(ImportSession(session_id=session_id, kind=kind, total_transactions=total))
        finished = threading.Event()
        self._finished[session_id] = finished

        def run():
            progress = ProgressReporter(self.store, session_id)
            try:
                result = job(progress)
            except Exception as e:
                logger.exception(f"Import job {session_id} ({kind}) failed")
                self.store.finish(
                    session_id, "failed",
                    errors=progress.errors + [{"description": "System", "error": str(e) or type(e).__name__}],
                )
            else:
                self.store.finish(session_id, "completed", result=result, errors=progress.errors)
                logger.info(f"Import job {session_id} ({kind}) completed")
            finally:
                finished.set()

        thread = threading.Thread(target=run, name=f"import-{kind}-{session_id[:8]}", daemon=True)
        thread.start()
        logger.info(f"Started {kind} job {session_id} for {total} transactions")
        return session_id

    def get_progress(self, session_id: str) -> ImportSession:
        return self.store.get(session_id)

    def wait(self, session_id: str, timeout: float | None = None) -> ImportSession:
        """Block until the session is finished. Raises TimeoutError."""
        finished = self._finished.get(session_id)
        if finished is None:
            session = self.store.get(session_id)
            if session.done:
                return session
            raise SessionNotFoundError(session_id)
        if not finished.wait(timeout):
            raise TimeoutError(f"Import session {session_id} still running after {timeout}s")
        return self.store.get(session_id)
