"""
Server-side session store.

The browser only holds an opaque session id in a cookie; the payload
(a plain dict, e.g. {'user_id': 1}) lives here, the way Flask's
`session` is used in the lessons.
"""

import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SessionManager:
    """In-memory session store with absolute expiry."""

    def __init__(self, expiry_seconds: int = 86400):
        self.expiry_seconds = expiry_seconds
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _expired(self, record: Dict[str, Any], now: datetime) -> bool:
        return now - record['created_at'] > timedelta(seconds=self.expiry_seconds)

    def create_session(self, data: Optional[Dict[str, Any]] = None) -> str:
        """Create a new session holding `data`, return its id."""
        session_id = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        with self._lock:
            self._sessions[session_id] = {
                'data': dict(data or {}),
                'created_at': now,
                'last_activity': now,
            }
        logger.debug("Session created: %s...", session_id[:8])
        return session_id

    def get_session(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the session payload, or None if unknown or expired."""
        if not session_id:
            return None
        now = datetime.now(timezone.utc)
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                return None
            if self._expired(record, now):
                del self._sessions[session_id]
                logger.debug("Session expired: %s...", session_id[:8])
                return None
            record['last_activity'] = now
            return record['data']

    def update_session(self, session_id: str, **values: Any) -> bool:
        """Merge `values` into the payload. Values of None are removed."""
        data = self.get_session(session_id)
        if data is None:
            return False
        with self._lock:
            for key, value in values.items():
                if value is None:
                    data.pop(key, None)
                else:
                    data[key] = value
        return True

    def revoke_session(self, session_id: Optional[str]) -> bool:
        """Revoke (delete) a session."""
        with self._lock:
            if session_id and session_id in self._sessions:
                del self._sessions[session_id]
                logger.debug("Session revoked: %s...", session_id[:8])
                return True
        return False

    def cleanup_expired(self) -> int:
        """Remove all expired sessions. Returns how many were removed."""
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [sid for sid, record in self._sessions.items() if self._expired(record, now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.debug("Cleaned up %d expired sessions", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)
