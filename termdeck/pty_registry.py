"""Pty session registry: one live shell process per session id.

Sessions are pseudo-terminals spawned with ptyprocess. Output is read on
the event loop (loop.add_reader on the pty master fd), decoded
incrementally as UTF-8 and pushed to per-session listeners. When the
child exits, the session is dropped from the registry and its exit
listeners get the exit code.

Nothing here blocks the loop: input the pty cannot take yet is queued and
flushed with loop.add_writer, and closing a process (which sleeps between
signals inside ptyprocess) runs on a worker thread.

create() is idempotent while a session is alive: asking for an id that
already has a live process returns that process. Only kill() or process
exit make the next create() spawn a fresh shell.

Everything except spawning is best-effort: writes, resizes and kills
against dead or unknown sessions are no-ops.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from ptyprocess import PtyProcess

from .config import get_setting
from .errors import SpawnError, classify_spawn_error
from .logging_config import get_logger

logger = get_logger(__name__)

READ_SIZE = 65536

# Looks like a URL rather than a local path: "https://...", "ssh://...", "git@host:org/repo"
_URL_RE = re.compile(r"^(?:[A-Za-z][A-Za-z0-9+.-]*://|[\w.-]+@[\w.-]+:)")


def _tool_path_entries() -> list[str]:
    """Common install locations for CLI tools a login shell would normally pick up."""
    home = Path.home()
    entries = [
        str(home / ".local" / "bin"),
        "/opt/homebrew/bin",
        "/opt/homebrew/sbin",
        str(home / ".npm-global" / "bin"),
        str(home / ".cargo" / "bin"),
        str(home / ".bun" / "bin"),
    ]
    nvm_versions = home / ".nvm" / "versions" / "node"
    if nvm_versions.is_dir():
        # Newest first, so the latest node wins
        entries.extend(str(p / "bin") for p in sorted(nvm_versions.iterdir(), reverse=True) if p.is_dir())
    entries.extend(["/usr/local/bin", "/usr/bin", "/bin", "/usr/sbin", "/sbin"])
    return entries


def build_search_path(inherited: str | None = None, extra: list[str] | None = None) -> str:
    """PATH with tool locations prepended, de-duplicated in order."""
    if inherited is None:
        inherited = os.environ.get("PATH", "")
    candidates = _tool_path_entries() + list(extra or []) + inherited.split(os.pathsep)
    seen: set[str] = set()
    entries = []
    for entry in candidates:
        if entry and entry not in seen:
            seen.add(entry)
            entries.append(entry)
    return os.pathsep.join(entries)


def _write_nonblocking(fd: int, data: bytes | bytearray) -> int:
    """Write what the pty will take right now. Raises BlockingIOError if nothing fits."""
    os.set_blocking(fd, False)
    try:
        return os.write(fd, data)
    finally:
        os.set_blocking(fd, True)


def resolve_cwd(cwd: str | None) -> str:
    """Working directory for a new shell: cwd if it is a local directory, else $HOME."""
    home = str(Path.home())
    if not cwd or _URL_RE.match(cwd):
        return home
    path = Path(cwd).expanduser()
    if not path.is_dir():
        return home
    return str(path)


class Subscription:
    """Handle for a registered listener. dispose() is idempotent."""

    def __init__(self, listeners: list, callback: Callable):
        self._listeners = listeners
        self._callback = callback
        self.disposed = False

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        try:
            self._listeners.remove(self._callback)
        except ValueError:
            pass


class PtySession:
    """A shell process on a pseudo-terminal, identified by a caller-assigned id."""

    def __init__(self, session_id: str, process: PtyProcess, cwd: str):
        self.id = session_id
        self.process = process
        self.pid: int = process.pid
        self.fd: int = process.fd
        self.cwd = cwd
        self.created = datetime.now().isoformat()
        self.exit_code: int | None = None
        self.closed = False

        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._data_listeners: list[Callable[[str], None]] = []
        self._exit_listeners: list[Callable[[int], None]] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reap_task: asyncio.Task | None = None
        self._pending = bytearray()
        self._writing = False

    @property
    def alive(self) -> bool:
        return not self.closed and self.exit_code is None

    def on_data(self, callback: Callable[[str], None]) -> Subscription:
        """Receive decoded output chunks, in the order the pty delivers them."""
        self._data_listeners.append(callback)
        return Subscription(self._data_listeners, callback)

    def on_exit(self, callback: Callable[[int], None]) -> Subscription:
        """Receive the exit code once the process has exited on its own."""
        self._exit_listeners.append(callback)
        return Subscription(self._exit_listeners, callback)

    def listener_count(self) -> int:
        return len(self._data_listeners) + len(self._exit_listeners)

    @property
    def pending_input(self) -> int:
        """Bytes of input still waiting for room in the pty."""
        return len(self._pending)

    def _dispatch_data(self, text: str) -> None:
        for callback in list(self._data_listeners):
            try:
                callback(text)
            except Exception:
                logger.exception("Session %s: output listener failed", self.id)

    def _dispatch_exit(self, code: int) -> None:
        for callback in list(self._exit_listeners):
            try:
                callback(code)
            except Exception:
                logger.exception("Session %s: exit listener failed", self.id)

    def write(self, data: str) -> None:
        """Send input to the shell. Whatever the pty can't take yet is queued
        and flushed from the event loop as room frees up.
        """
        if self.closed:
            return
        self._pending += data.encode("utf-8")
        self._flush_input()

    def _flush_input(self) -> None:
        while self._pending:
            try:
                written = _write_nonblocking(self.fd, self._pending)
            except BlockingIOError:
                break
            if not written:
                break
            del self._pending[:written]
        if self._pending and not self._writing:
            self._loop.add_writer(self.fd, self._on_writable)
            self._writing = True
        elif not self._pending:
            self._stop_writing()

    def _on_writable(self) -> None:
        try:
            self._flush_input()
        except OSError as e:
            logger.debug("Session %s: dropping %d queued input byte(s): %s", self.id, len(self._pending), e)
            self._pending.clear()
            self._stop_writing()

    def _stop_writing(self) -> None:
        if not self._writing:
            return
        self._writing = False
        try:
            self._loop.remove_writer(self.fd)
        except (OSError, ValueError) as e:
            logger.debug("Session %s: remove_writer failed: %s", self.id, e)

    def resize(self, cols: int, rows: int) -> None:
        self.process.setwinsize(rows, cols)


class PtyRegistry:
    """Owns every live pty session, keyed by session id.

    Must be used from inside a running event loop: output is read with
    loop.add_reader() and exits are reaped on a background task.
    """

    def __init__(
        self,
        shell: str | None = None,
        cols: int | None = None,
        rows: int | None = None,
        term: str | None = None,
        extra_path: list[str] | None = None,
        session_env_var: str | None = None,
    ):
        if shell is None:
            shell = os.environ.get("SHELL") or get_setting("shell")
        if cols is None:
            cols = int(get_setting("cols"))
        if rows is None:
            rows = int(get_setting("rows"))
        if term is None:
            term = get_setting("term")
        if extra_path is None:
            extra_path = list(get_setting("extra_path") or [])
        if session_env_var is None:
            session_env_var = get_setting("session_env_var")
        self.shell = shell
        self.cols = cols
        self.rows = rows
        self.term = term
        self.extra_path = extra_path
        self.session_env_var = session_env_var
        self.sessions: dict[str, PtySession] = {}
        self._closing: set[asyncio.Future] = set()

    def build_env(self, session_id: str) -> dict[str, str]:
        """Inherited environment plus search path, session id and terminal capabilities."""
        env = dict(os.environ)
        env.update(
            {
                "PATH": build_search_path(os.environ.get("PATH", ""), self.extra_path),
                self.session_env_var: session_id,
                "TERM": self.term,
                "COLORTERM": "truecolor",
                "HOME": str(Path.home()),
                "LANG": os.environ.get("LANG") or "en_US.UTF-8",
            }
        )
        return env

    def create(self, session_id: str, cwd: str | None) -> PtySession:
        """Get the live session for an id, or spawn a new shell for it.

        Raises SpawnError if the shell cannot be started.
        """
        existing = self.sessions.get(session_id)
        if existing is not None and existing.alive:
            return existing

        safe_cwd = resolve_cwd(cwd)
        if cwd and safe_cwd != str(Path(cwd).expanduser()):
            logger.info("Session %s: cwd %r unusable, using %s", session_id, cwd, safe_cwd)

        try:
            process = PtyProcess.spawn(
                [self.shell],
                cwd=safe_cwd,
                env=self.build_env(session_id),
                dimensions=(self.rows, self.cols),
            )
        except Exception as e:
            failure = classify_spawn_error(e, session_id=session_id)
            logger.error("Session %s: spawn failed [%s]: %s", session_id, failure.category, e)
            raise SpawnError(failure) from e

        session = PtySession(session_id, process, safe_cwd)
        self._start_reading(session)
        self.sessions[session_id] = session
        logger.info("Session %s: spawned %s (pid %d) in %s", session_id, self.shell, session.pid, safe_cwd)
        return session

    def get(self, session_id: str) -> PtySession | None:
        return self.sessions.get(session_id)

    def list_sessions(self) -> list[PtySession]:
        return list(self.sessions.values())

    def write(self, session_id: str, data: str) -> None:
        """Send input to a session. Unknown or dead sessions are ignored."""
        session = self.sessions.get(session_id)
        if session is None:
            return
        try:
            session.write(data)
        except (OSError, ValueError) as e:
            logger.debug("Session %s: write failed: %s", session_id, e)

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        """Resize a session's pty. Failures (e.g. already exited) are ignored."""
        session = self.sessions.get(session_id)
        if session is None:
            return
        try:
            session.resize(cols, rows)
        except Exception as e:
            logger.debug("Session %s: resize failed: %s", session_id, e)

    def kill(self, session_id: str) -> None:
        """Terminate a session's process and forget it. Safe to call twice."""
        session = self.sessions.pop(session_id, None)
        if session is None:
            return
        logger.info("Session %s: killing pid %d", session_id, session.pid)
        self._close(session)

    def kill_all(self) -> None:
        """Kill every registered session (process shutdown)."""
        for session_id in list(self.sessions.keys()):
            self.kill(session_id)

    # --- Output and exit ---

    def _start_reading(self, session: PtySession) -> None:
        loop = asyncio.get_running_loop()
        session._loop = loop
        loop.add_reader(session.fd, self._on_readable, session)

    def _stop_reading(self, session: PtySession) -> None:
        if session._loop is None:
            return
        try:
            session._loop.remove_reader(session.fd)
        except (OSError, ValueError) as e:
            logger.debug("Session %s: remove_reader failed: %s", session.id, e)

    def _on_readable(self, session: PtySession) -> None:
        try:
            data = session.process.read(READ_SIZE)
        except (EOFError, OSError):
            # EIO/EOF: the child side of the pty is gone
            self._stop_reading(session)
            tail = session._decoder.decode(b"", final=True)
            if tail:
                session._dispatch_data(tail)
            if not session.closed and session._reap_task is None:
                session._reap_task = session._loop.create_task(self._reap(session))
            return
        text = session._decoder.decode(data)
        if text:
            session._dispatch_data(text)

    async def _reap(self, session: PtySession) -> None:
        """Wait for the child to exit, drop it from the registry, notify listeners."""
        try:
            await asyncio.to_thread(session.process.wait)
        except Exception as e:
            logger.debug("Session %s: wait failed: %s", session.id, e)
        if session.closed:
            return

        process = session.process
        if process.exitstatus is not None:
            code = process.exitstatus
        elif process.signalstatus is not None:
            code = 128 + process.signalstatus
        else:
            code = -1
        session.exit_code = code
        session.closed = True
        session._stop_writing()
        session._pending.clear()
        self._release(session, force=False)

        # Drop the entry before notifying so listeners may re-create the id
        if self.sessions.get(session.id) is session:
            del self.sessions[session.id]
        logger.info("Session %s: process exited (code %d)", session.id, code)
        session._dispatch_exit(code)

    def _close(self, session: PtySession) -> None:
        """Stop reading, detach listeners and terminate the process."""
        if session.closed:
            return
        session.closed = True
        self._stop_reading(session)
        session._data_listeners.clear()
        session._exit_listeners.clear()
        session._stop_writing()
        session._pending.clear()
        if session._reap_task is not None:
            session._reap_task.cancel()
            session._reap_task = None
        self._release(session, force=True)

    def _release(self, session: PtySession, force: bool) -> None:
        """Close the pty and terminate the child on a worker thread.

        PtyProcess.close() sleeps between signals, so it never runs on the loop.
        """
        future = session._loop.run_in_executor(None, _close_process, session, force)
        self._closing.add(future)
        future.add_done_callback(self._closing.discard)

    async def wait_closed(self) -> None:
        """Wait until every killed or exited process has been fully released."""
        if self._closing:
            await asyncio.gather(*list(self._closing))


def _close_process(session: PtySession, force: bool) -> None:
    try:
        session.process.close(force=force)
    except Exception as e:
        logger.debug("Session %s: close failed (already dead?): %s", session.id, e)
