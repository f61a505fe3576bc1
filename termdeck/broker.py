"""Session event broker: wires pty sessions to the agent parser and an observer.

attach() is the only way a session's events reach the outside world. It is
a rebind: every subscription previously installed for the id is disposed
synchronously before fresh ones are installed, so a UI that re-attaches the
same terminal (remount, tab move) never sees duplicated output.

Agent snapshots from the parser are coalesced: any number of updates inside
one event loop iteration result in a single on_agents() push.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from .agent_parser import AgentParser
from .errors import SpawnError
from .logging_config import get_logger
from .pty_registry import PtyRegistry, Subscription
from .types import Agent

logger = get_logger(__name__)


class SessionObserver(Protocol):
    """External observer channel (UI, CLI host)."""

    def on_output(self, session_id: str, chunk: str) -> None: ...

    def on_exit(self, session_id: str, exit_code: int) -> None: ...

    def on_agents(self, agents: list[Agent]) -> None: ...

    def on_error(self, session_id: str, message: str) -> None: ...


class SessionBroker:
    """Binds sessions from a PtyRegistry to an AgentParser and one observer."""

    def __init__(self, registry: PtyRegistry, parser: AgentParser, observer: SessionObserver):
        self.registry = registry
        self.parser = parser
        self.observer = observer
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._flush_pending = False
        parser.on_update(self._schedule_snapshot)

    def attach(self, session_id: str, cwd: str | None) -> dict[str, int] | None:
        """Create (or reuse) a session and bind its events. Returns {"pid": ...}.

        Returns None if the shell could not be spawned; the failure is
        reported once via observer.on_error().
        """
        self.detach(session_id)

        try:
            session = self.registry.create(session_id, cwd)
        except SpawnError as e:
            self.observer.on_error(session_id, e.failure.message)
            return None

        def forward_output(chunk: str) -> None:
            self.observer.on_output(session_id, chunk)
            self.parser.feed(session_id, chunk)

        def forward_exit(exit_code: int) -> None:
            self._subscriptions.pop(session_id, None)
            self.observer.on_exit(session_id, exit_code)
            self.parser.clear_terminal(session_id)

        self._subscriptions[session_id] = [
            session.on_data(forward_output),
            session.on_exit(forward_exit),
        ]
        logger.info("Session %s: bound (pid %d)", session_id, session.pid)
        return {"pid": session.pid}

    def detach(self, session_id: str) -> int:
        """Dispose every subscription for an id. Returns how many were disposed."""
        subscriptions = self._subscriptions.pop(session_id, [])
        for subscription in subscriptions:
            try:
                subscription.dispose()
            except Exception as e:
                logger.debug("Session %s: dispose failed: %s", session_id, e)
        if subscriptions:
            logger.debug("Session %s: disposed %d subscription(s)", session_id, len(subscriptions))
        return len(subscriptions)

    def is_attached(self, session_id: str) -> bool:
        return session_id in self._subscriptions

    def write(self, session_id: str, data: str) -> None:
        self.registry.write(session_id, data)

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        self.registry.resize(session_id, cols, rows)

    def kill(self, session_id: str) -> None:
        """Unbind, forget the session's agents, then terminate the process."""
        self.detach(session_id)
        self.parser.clear_terminal(session_id)
        self.registry.kill(session_id)

    def shutdown(self) -> None:
        """Unbind and kill every session (process exit)."""
        for session_id in list(self._subscriptions.keys()):
            self.detach(session_id)
        for session in self.registry.list_sessions():
            self.parser.clear_terminal(session.id)
        self.registry.kill_all()

    def get_all(self) -> list[Agent]:
        return self.parser.get_all()

    def get_active(self) -> list[Agent]:
        return self.parser.get_active()

    # --- Snapshot coalescing ---

    def _schedule_snapshot(self, _agents: list[Agent]) -> None:
        if self._flush_pending:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop left to coalesce on (e.g. shutdown after the loop stopped)
            self._flush_snapshot()
            return
        self._flush_pending = True
        loop.call_soon(self._flush_snapshot)

    def _flush_snapshot(self) -> None:
        self._flush_pending = False
        try:
            self.observer.on_agents(self.parser.get_all())
        except Exception:
            logger.exception("Agent snapshot observer failed")
