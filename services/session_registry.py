#!/usr/bin/env python3
"""
Session registry mapping canonical stream paths to live recording sessions.

Stream paths are canonicalized once on the way in (``/app/stream``). Lookups
also accept a bounded set of legacy spellings: the path with a known
application prefix added or removed.
"""

import re
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config import LEGACY_APP_PREFIXES
from exceptions import DuplicateSessionError, SessionNotFoundError

_SLASHES = re.compile(r'/+')


def canonicalize(stream_path: str) -> str:
    """Return the canonical form of a stream path.

    Strips whitespace, collapses repeated slashes, drops trailing slashes and
    guarantees a single leading slash: ``'live//cam1/'`` -> ``'/live/cam1'``.

    Raises:
        ValueError: If the path is empty after normalization
    """
    if stream_path is None:
        raise ValueError("stream_path cannot be empty")
    path = _SLASHES.sub('/', str(stream_path).strip()).strip('/')
    if not path:
        raise ValueError("stream_path cannot be empty")
    return f"/{path}"


def _is_terminal(session: Any) -> bool:
    return bool(getattr(session, 'is_terminal', False))


class SessionRegistry:
    """Thread-safe index of live recording sessions."""

    def __init__(self, legacy_prefixes: Iterable[str] = LEGACY_APP_PREFIXES):
        self.legacy_prefixes = tuple(p.strip('/') for p in legacy_prefixes if p.strip('/'))
        self._sessions: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def candidate_keys(self, stream_path: str) -> List[str]:
        """Keys tried by lookup, in order: canonical, then prefix removed or added."""
        key = canonicalize(stream_path)
        candidates = [key]
        for prefix in self.legacy_prefixes:
            marker = f"/{prefix}/"
            if key.startswith(marker):
                candidates.append(key[len(marker) - 1:])
            else:
                candidates.append(f"/{prefix}{key}")
        return [k for i, k in enumerate(candidates) if k not in candidates[:i] and k != '/']

    def register(self, stream_path: str, session: Any) -> str:
        """Index a session under its canonical stream path.

        Returns:
            The canonical key

        Raises:
            DuplicateSessionError: If a non-terminal session already holds the key
        """
        key = canonicalize(stream_path)
        with self._lock:
            existing = self._sessions.get(key)
            if existing is not None and existing is not session and not _is_terminal(existing):
                raise DuplicateSessionError(key)
            self._sessions[key] = session
        self.logger.info(f"Registered session: {key}")
        return key

    def lookup(self, stream_path: str) -> Optional[Any]:
        """Find the session for a stream path, tolerating legacy spellings. Never mutates."""
        try:
            candidates = self.candidate_keys(stream_path)
        except ValueError:
            return None
        with self._lock:
            for candidate in candidates:
                session = self._sessions.get(candidate)
                if session is not None:
                    if candidate != candidates[0]:
                        self.logger.debug(f"Found session using alternative path: {candidate}")
                    return session
        return None

    def get(self, stream_path: str) -> Any:
        """Like lookup, but raises SessionNotFoundError listing the available streams."""
        session = self.lookup(stream_path)
        if session is None:
            raise SessionNotFoundError(stream_path, self.keys())
        return session

    def remove(self, stream_path: str, session: Any = None) -> bool:
        """Remove an entry. Idempotent.

        Args:
            stream_path: Stream path of the entry
            session: When given, only remove the entry if it is this exact session

        Returns:
            True if an entry was removed
        """
        try:
            key = canonicalize(stream_path)
        except ValueError:
            return False
        with self._lock:
            existing = self._sessions.get(key)
            if existing is None or (session is not None and existing is not session):
                return False
            del self._sessions[key]
        self.logger.info(f"Removed session: {key}")
        return True

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._sessions.keys())

    def sessions(self) -> List[Tuple[str, Any]]:
        """Snapshot of (stream_path, session) pairs."""
        with self._lock:
            return list(self._sessions.items())

    def list(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Fresh (stream_path, status snapshot) pairs, recomputed on every call."""
        return [(key, session.status()) for key, session in self.sessions()]

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, stream_path: str) -> bool:
        return self.lookup(stream_path) is not None
