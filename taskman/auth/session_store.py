"""Pluggable session storage backends.

Provides the SessionStore ABC, the owner-only JSON file store used by
the CLI and an in-memory store for embedding and tests.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from ..exceptions import PersistenceError
from .types import AuthSession


logger = logging.getLogger("taskman.auth")

SESSION_FILE_MODE = 0o600


def resolve_session_path(path: str | os.PathLike[str]) -> Path:
    """Expand a leading ``~`` in a session file path.

    The home directory comes from ``HOME``, then ``USERPROFILE``, then
    falls back to ``/tmp``.

    Parameters
    ----------
    path : str or PathLike
        Configured path.

    Returns
    -------
    Path
    """
    raw = os.fspath(path)
    if raw == "~" or raw.startswith(("~/", "~\\")):
        home = os.environ.get("HOME") or os.environ.get("USERPROFILE") or "/tmp"  # noqa: S108
        return Path(home) / raw[2:] if len(raw) > 1 else Path(home)
    return Path(raw)


class SessionStore(ABC):
    """Abstract base class for the single local session record.

    All methods are async; file I/O runs in the default executor.
    """

    @abstractmethod
    async def persist(self, session: AuthSession) -> bool:
        """Save ``session``, replacing any previous record.

        Returns
        -------
        bool
            False if the session could not be written. Never raises.
        """

    @abstractmethod
    async def load(self) -> AuthSession | None:
        """Load the stored session.

        Returns
        -------
        AuthSession or None
            None when nothing is stored or the record is unreadable.
        """

    @abstractmethod
    async def clear(self) -> None:
        """Remove the stored session. Absence is not an error."""


class MemorySessionStore(SessionStore):
    """In-memory session store for embedding and single-process use."""

    def __init__(self, session: AuthSession | None = None) -> None:
        """Initialize the memory session store."""
        self._data: str | None = None
        self._lock = asyncio.Lock()
        if session is not None:
            self._data = json.dumps(session.to_json_dict())

    async def persist(self, session: AuthSession) -> bool:
        """Save the session in memory."""
        async with self._lock:
            self._data = json.dumps(session.to_json_dict())
        return True

    async def load(self) -> AuthSession | None:
        """Load the session from memory."""
        async with self._lock:
            if self._data is None:
                return None
            return AuthSession.model_validate_json(self._data)

    async def clear(self) -> None:
        """Forget the session."""
        async with self._lock:
            self._data = None


class FileSessionStore(SessionStore):
    """JSON file session store readable by the owner only.

    Parameters
    ----------
    path : str or PathLike
        Session file location; a leading ``~`` is expanded with
        :func:`resolve_session_path`.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        """Initialize the file session store."""
        self.path = resolve_session_path(path)

    def _write(self, data: str) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SESSION_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
            # O_CREAT's mode does not apply to a pre-existing file.
            os.chmod(self.path, SESSION_FILE_MODE)
        except OSError as exc:
            msg = f"Could not write session file: {exc}"
            raise PersistenceError(msg, path=str(self.path)) from exc

    def _read(self) -> AuthSession | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Could not read session file %s: %s", self.path, exc)
            return None
        except UnicodeDecodeError as exc:
            logger.warning("Ignoring undecodable session file %s: %s", self.path, exc)
            return None
        try:
            return AuthSession.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning(
                "Ignoring invalid session file %s (%d error(s))",
                self.path,
                exc.error_count(),
            )
            return None

    def _remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove session file %s: %s", self.path, exc)

    async def persist(self, session: AuthSession) -> bool:
        """Write the session file with mode 0600."""
        data = json.dumps(session.to_json_dict(), indent=2)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write, data)
        except PersistenceError as exc:
            logger.warning("%s", exc)
            return False
        logger.debug("Session persisted to %s", self.path)
        return True

    async def load(self) -> AuthSession | None:
        """Read the session file; unreadable or invalid files count as no session."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read)

    async def clear(self) -> None:
        """Delete the session file if it exists."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._remove)
