"""
Configuration reloading.

This module provides:
- ConfigWatcher: Polls the config file and reports validated changes
- SessionSupervisor: Applies a configuration by replacing the session

A session's subscription parameters never change in place. Applying a new
configuration builds a new StreamSession, stops the old one fully, and only
then starts the new one, so two subscriptions never overlap.
"""

import asyncio
import contextlib
import hashlib
import logging
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path

from corecast.exceptions import ConfigurationError
from corecast.session.manager import StreamSession
from corecast.session.state import SessionState
from corecast.settings import ClientSettings, load_settings

logger = logging.getLogger(__name__)

SettingsCallback = Callable[[ClientSettings], Awaitable[None]]
"""Invoked with freshly validated settings after the file changed."""

SessionFactory = Callable[[ClientSettings], StreamSession]
"""Builds an unstarted session for a configuration."""

SessionCallback = Callable[[StreamSession], Awaitable[None]]
"""Invoked after a replacement session has been started."""


class ConfigWatcher:
    """
    Watches a YAML config file for changes.

    The file's modification time and SHA-256 digest are polled every
    `interval` seconds. When either changes, the file is loaded and
    validated; valid settings are passed to the callback, invalid ones are
    logged and ignored until the file changes again.

    Example:
        >>> watcher = ConfigWatcher("config.yaml", supervisor.apply)
        >>> await watcher.start()
    """

    def __init__(
        self,
        path: str | Path,
        on_change: SettingsCallback,
        interval: float = 5.0,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}.")

        self.path = Path(path)
        self.interval = interval
        self._on_change = on_change
        self._environ = environ
        self._fingerprint: tuple[float, str] | None = None
        self._task: asyncio.Task[None] | None = None
        self.reload_count = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _read_fingerprint(self) -> tuple[float, str] | None:
        try:
            mtime = self.path.stat().st_mtime
            digest = hashlib.sha256(self.path.read_bytes()).hexdigest()
        except OSError as e:
            logger.warning(
                "Config file unreadable",
                extra={"path": str(self.path), "error": str(e)},
            )
            return None
        return mtime, digest

    def prime(self) -> None:
        """Record the file's current state as already applied."""
        self._fingerprint = self._read_fingerprint()

    async def check(self) -> bool:
        """
        Check the file once.

        Returns:
            True if changed, valid settings were handed to the callback
        """
        fingerprint = self._read_fingerprint()
        if fingerprint is None or fingerprint == self._fingerprint:
            return False

        previous_digest = self._fingerprint[1] if self._fingerprint else None
        self._fingerprint = fingerprint
        if fingerprint[1] == previous_digest:
            # Touched but not edited
            return False

        logger.info("Config file changed, reloading", extra={"path": str(self.path)})
        try:
            settings = load_settings(self.path, self._environ)
        except ConfigurationError as e:
            logger.error(
                "Ignoring invalid configuration",
                extra={"path": str(self.path), "error": str(e)},
            )
            return False

        try:
            await self._on_change(settings)
        except Exception as e:
            logger.error(
                "Config reload callback failed",
                extra={"path": str(self.path), "error": str(e)},
                exc_info=True,
            )
            return False

        self.reload_count += 1
        return True

    async def start(self) -> None:
        """Start polling. The current file content counts as applied."""
        if self.is_running:
            logger.warning("Config watcher already running", extra={"path": str(self.path)})
            return
        self.prime()
        self._task = asyncio.create_task(self._watch_loop(), name="corecast-config-watcher")
        logger.info("Watching config file", extra={"path": str(self.path)})

    async def stop(self) -> None:
        """Stop polling."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _watch_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.check()


class SessionSupervisor:
    """
    Owns the current StreamSession and replaces it on configuration change.

    Example:
        >>> supervisor = SessionSupervisor(build_session, settings)
        >>> await supervisor.start()
        >>> await supervisor.apply(new_settings)  # old session stopped first
        >>> final_state = await supervisor.wait()
    """

    def __init__(
        self,
        factory: SessionFactory,
        settings: ClientSettings,
        on_session: SessionCallback | None = None,
    ) -> None:
        self._factory = factory
        self._settings = settings
        self._on_session = on_session
        self._session: StreamSession | None = None
        self._lock = asyncio.Lock()
        self.replacements = 0

    @property
    def settings(self) -> ClientSettings:
        """Configuration of the current session."""
        return self._settings

    @property
    def session(self) -> StreamSession | None:
        """The current session, once started."""
        return self._session

    async def start(self) -> StreamSession:
        """Build and start the first session."""
        async with self._lock:
            if self._session is not None:
                return self._session
            self._session = self._factory(self._settings)
            await self._session.start()
            await self._notify(self._session)
            return self._session

    async def apply(self, settings: ClientSettings) -> bool:
        """
        Apply a configuration.

        Returns:
            True if the session was replaced, False if the settings are
            unchanged
        """
        async with self._lock:
            if settings == self._settings and self._session is not None:
                logger.info("Configuration unchanged, keeping session")
                return False

            new_session = self._factory(settings)
            old_session = self._session
            self._session = new_session
            self._settings = settings

            if old_session is not None:
                logger.info(
                    "Replacing session after configuration change",
                    extra={"old_session": old_session.name, "new_session": new_session.name},
                )
                await old_session.stop()

            await new_session.start()
            self.replacements += 1
            await self._notify(new_session)
            return True

    async def stop(self) -> None:
        """Stop the current session."""
        async with self._lock:
            if self._session is not None:
                await self._session.stop()

    async def wait(self) -> SessionState:
        """
        Wait until the current session finishes without being replaced.

        Returns:
            The final state of the last session
        """
        while True:
            session = self._session
            if session is None:
                return SessionState.IDLE
            state = await session.wait()
            async with self._lock:
                if self._session is session:
                    return state

    async def _notify(self, session: StreamSession) -> None:
        if self._on_session is None:
            return
        try:
            await self._on_session(session)
        except Exception as e:
            logger.error(
                "Session callback failed",
                extra={"session": session.name, "error": str(e)},
                exc_info=True,
            )


__all__ = [
    "ConfigWatcher",
    "SessionSupervisor",
    "SettingsCallback",
    "SessionFactory",
    "SessionCallback",
]
