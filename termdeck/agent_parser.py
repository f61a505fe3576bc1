"""Sub-agent detection from the coding CLI's terminal output.

The CLI renders running sub-agents as a tree:

  • Running 2 Task agents… (ctrl+o to expand)
  ├─ Design review · 8 tool uses · 30.9k tokens
  │   └ Searching for 1 pattern, reading 7 files…
  ├─ Security audit · 9 tool uses · 31.2k tokens
  │   └ Searching for 2 patterns, reading 7 files…

Each chunk of pty output is stripped of escape sequences, split into lines,
and every line is tried against an ordered list of matchers (header, status,
completion). The first matcher that recognizes a line wins.

Agents are scoped to a session. They go inactive when the CLI prints its
end-of-turn phrase, or when a session produces no matching output for the
idle window. Only clear_terminal() removes them.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from .ansi import strip_ansi
from .config import get_setting
from .logging_config import get_logger
from .types import Agent, agent_key

logger = get_logger(__name__)

# Tree-drawing glyphs, as rendered by the upstream CLI. If its tree style
# changes, these are the only things to update.
BRANCH_CONNECTORS = "├┣┠"
BRANCH_LINE = "─"
LEAF_CONNECTORS = "└"

HEADER_RE = re.compile(
    rf"[{BRANCH_CONNECTORS}][{BRANCH_LINE}\s]+(.+?)\s+·\s+(\d+)\s+tool uses?\s+·\s+([\d.]+k?\s*tokens)"
)
STATUS_RE = re.compile(rf"[{LEAF_CONNECTORS}]\s+(.+)")
COMPLETION_RE = re.compile(r"vibing|thought for \d", re.IGNORECASE)

UpdateCallback = Callable[[list[Agent]], None]


@dataclass(frozen=True)
class HeaderMatch:
    name: str
    tool_uses: int
    tokens: str


@dataclass(frozen=True)
class StatusMatch:
    status: str


@dataclass(frozen=True)
class CompletionMatch:
    pass


LineMatch = HeaderMatch | StatusMatch | CompletionMatch


def match_header(line: str) -> HeaderMatch | None:
    m = HEADER_RE.search(line)
    if not m:
        return None
    name, tool_uses, tokens = m.groups()
    return HeaderMatch(name=name.strip(), tool_uses=int(tool_uses), tokens=tokens.strip())


def match_status(line: str) -> StatusMatch | None:
    m = STATUS_RE.search(line)
    if not m:
        return None
    return StatusMatch(status=m.group(1).strip())


def match_completion(line: str) -> CompletionMatch | None:
    if COMPLETION_RE.search(line):
        return CompletionMatch()
    return None


# Priority order
MATCHERS: list[Callable[[str], LineMatch | None]] = [match_header, match_status, match_completion]


def match_line(line: str) -> LineMatch | None:
    """Try each matcher in priority order; first hit wins."""
    for matcher in MATCHERS:
        result = matcher(line)
        if result is not None:
            return result
    return None


def _now_millis() -> int:
    return int(time.time() * 1000)


class AgentParser:
    """Per-session agent tree built from streamed terminal output.

    Single-threaded: feed() and the inactivity timers run on one event
    loop, so the agent and timer maps need no locking. feed() must be
    called from inside a running loop (timers use loop.call_later).
    """

    def __init__(
        self,
        idle_window: float | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        if idle_window is None:
            idle_window = float(get_setting("idle_window"))
        self.idle_window = idle_window
        self._loop = loop
        self._agents: dict[str, Agent] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._callback: UpdateCallback | None = None

    def on_update(self, callback: UpdateCallback | None) -> None:
        """Register the single snapshot observer (replaces any previous one)."""
        self._callback = callback

    def feed(self, session_id: str, raw: str) -> None:
        """Parse one chunk of raw pty output for a session.

        A line split across two chunks is seen as two partial lines and
        matched by neither.
        """
        text = strip_ansi(raw)
        cursor: str | None = None  # Key of the last header seen in this chunk
        matched = False
        changed = False

        for line in text.split("\n"):
            trimmed = line.strip()
            if not trimmed:
                continue

            result = match_line(trimmed)
            if result is None:
                continue

            if isinstance(result, HeaderMatch):
                cursor, header_changed = self._upsert(session_id, result)
                changed = changed or header_changed
                matched = True
            elif isinstance(result, StatusMatch):
                # Status lines only mean something under a header
                agent = self._agents.get(cursor) if cursor else None
                if agent is None:
                    continue
                if agent.status != result.status:
                    agent.status = result.status
                    changed = True
                matched = True
            else:
                if self._mark_inactive(session_id):
                    changed = True
                matched = True

        if matched:
            self._reschedule_timer(session_id)
        if changed:
            self._emit()

    def _upsert(self, session_id: str, header: HeaderMatch) -> tuple[str, bool]:
        """Insert or refresh an agent from a header line. Returns (key, changed)."""
        key = agent_key(session_id, header.name)
        agent = self._agents.get(key)
        if agent is None:
            self._agents[key] = Agent(
                session_id=session_id,
                name=header.name,
                tool_uses=header.tool_uses,
                tokens=header.tokens,
                active=True,
                detected_at=_now_millis(),
            )
            logger.info("Agent detected: %s", key)
            return key, True

        changed = agent.tool_uses != header.tool_uses or agent.tokens != header.tokens or not agent.active
        if not agent.active:
            logger.debug("Agent re-activated: %s", key)
        agent.tool_uses = header.tool_uses
        agent.tokens = header.tokens
        agent.active = True
        return key, changed

    def _mark_inactive(self, session_id: str) -> bool:
        """Flip every active agent in a session to inactive. Returns True if any flipped."""
        changed = False
        for agent in self._agents.values():
            if agent.session_id == session_id and agent.active:
                agent.active = False
                changed = True
        return changed

    def _reschedule_timer(self, session_id: str) -> None:
        self._cancel_timer(session_id)
        loop = self._loop or asyncio.get_running_loop()
        self._timers[session_id] = loop.call_later(self.idle_window, self._on_idle, session_id)

    def _cancel_timer(self, session_id: str) -> None:
        timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()

    def _on_idle(self, session_id: str) -> None:
        """Idle window elapsed with no matching output: treat as completion."""
        self._timers.pop(session_id, None)
        if self._mark_inactive(session_id):
            logger.debug("Session %s idle for %.1fs, agents marked inactive", session_id, self.idle_window)
            self._emit()

    def clear_terminal(self, session_id: str) -> None:
        """Drop a session's timer and every agent keyed to it.

        Pushes a snapshot if any agents were removed.
        """
        self._cancel_timer(session_id)
        stale = [key for key, agent in self._agents.items() if agent.session_id == session_id]
        for key in stale:
            del self._agents[key]
        if stale:
            logger.info("Cleared %d agent(s) for session %s", len(stale), session_id)
            self._emit()

    def has_timer(self, session_id: str) -> bool:
        """Whether an inactivity timer is pending for a session."""
        return session_id in self._timers

    def get_all(self) -> list[Agent]:
        """All known agents, in detection order (copies)."""
        return [agent.copy() for agent in self._agents.values()]

    def get_active(self) -> list[Agent]:
        return [agent.copy() for agent in self._agents.values() if agent.active]

    def _emit(self) -> None:
        if self._callback is not None:
            self._callback(self.get_all())
