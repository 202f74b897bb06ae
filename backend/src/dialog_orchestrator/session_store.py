"""Session load/save to db/memory/sessions/*.json."""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from .config import SESSIONS_DIR
from .models import DialogSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


def is_valid_session_id(session_id: str) -> bool:
    """Session ids double as file names: no separators, no dot-only names."""
    return bool(_SESSION_ID_RE.match(session_id)) and session_id not in (".", "..")


class SessionStore(ABC):
    """
    Keyed store of dialog sessions. One active session per key; creating a
    session replaces whatever was stored under the same key.

    Sessions handed out are copies: mutate them, then call update_session.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    @abstractmethod
    def create_or_reset_session(
        self,
        system_prompt: str | None,
        model: str,
        max_tokens: int,
        disable_search: bool,
        max_rounds: int,
        initial_user_message: str,
        session_id: str = DEFAULT_SESSION_ID,
    ) -> DialogSession:
        ...

    @abstractmethod
    def get_session(self, session_id: str = DEFAULT_SESSION_ID) -> DialogSession | None:
        ...

    @abstractmethod
    def update_session(self, session: DialogSession) -> None:
        ...

    @abstractmethod
    def clear_session(self, session_id: str = DEFAULT_SESSION_ID) -> bool:
        """Drop the session; returns whether one existed."""
        ...

    @abstractmethod
    def cleanup_expired(self, ttl_seconds: float) -> int:
        """Drop sessions idle for longer than ttl_seconds; returns how many."""
        ...

    def lock(self, session_id: str = DEFAULT_SESSION_ID) -> asyncio.Lock:
        """Per-key lock held across a read-modify-persist cycle."""
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def _release_lock(self, session_id: str) -> None:
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]


class JsonFileSessionStore(SessionStore):
    """One JSON document per session under sessions_dir."""

    def __init__(self, sessions_dir: Path | str | None = None) -> None:
        super().__init__()
        self.sessions_dir = Path(sessions_dir) if sessions_dir is not None else SESSIONS_DIR

    def _session_path(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        return self.sessions_dir / f"{session_id}.json"

    def _write(self, session: DialogSession) -> None:
        path = self._session_path(session.session_id)
        with open(path, "w", encoding="utf-8") as f:
            f.write(session.model_dump_json(indent=2))

    def create_or_reset_session(
        self,
        system_prompt: str | None,
        model: str,
        max_tokens: int,
        disable_search: bool,
        max_rounds: int,
        initial_user_message: str,
        session_id: str = DEFAULT_SESSION_ID,
    ) -> DialogSession:
        session = DialogSession(
            session_id=session_id,
            system_prompt=system_prompt,
            model=model,
            max_tokens=max_tokens,
            disable_search=disable_search,
            max_rounds=max_rounds,
            initial_user_message=initial_user_message,
        )
        self._write(session)
        logger.info("Created session %s (max_rounds=%d, model=%s)", session_id, max_rounds, model)
        return session.model_copy(deep=True)

    def get_session(self, session_id: str = DEFAULT_SESSION_ID) -> DialogSession | None:
        """Load session by id; returns None if file does not exist or is unreadable."""
        path = self._session_path(session_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return DialogSession.model_validate_json(f.read())
        except (OSError, ValidationError) as exc:
            logger.warning("Discarding unreadable session %s: %s", session_id, exc)
            path.unlink(missing_ok=True)
            return None

    def update_session(self, session: DialogSession) -> None:
        self._write(session)

    def clear_session(self, session_id: str = DEFAULT_SESSION_ID) -> bool:
        path = self._session_path(session_id)
        self._release_lock(session_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Cleared session %s", session_id)
        return True

    def cleanup_expired(self, ttl_seconds: float) -> int:
        if not self.sessions_dir.exists():
            return 0
        removed = 0
        for path in self.sessions_dir.glob("*.json"):
            if not is_valid_session_id(path.stem):
                continue
            session = self.get_session(path.stem)
            if session is not None and session.is_expired(ttl_seconds):
                path.unlink()
                self._release_lock(path.stem)
                removed += 1
        if removed:
            logger.info("Removed %d expired session(s)", removed)
        return removed
