"""CLI interface for termdeck.

Entry point: termdeck <subcommand> [--data PATH] [args...]

  termdeck run  run one shell session in this terminal, tracking sub-agents
  termdeck agents  print the latest agent snapshot (optionally follow it)
"""

import argparse
import asyncio
import os
import signal
import sys
import uuid
from pathlib import Path

from .types import Agent


# --- Host observer ---


class HostObserver:
    """Observer for the `run` host: output to stdout, snapshots to a JSON file."""

    def __init__(self, out, snapshot_path: Path, exited: asyncio.Future):
        self.out = out
        self.snapshot_path = snapshot_path
        self.exited = exited

    def on_output(self, session_id: str, chunk: str) -> None:
        self.out.write(chunk.encode("utf-8", errors="replace"))
        self.out.flush()

    def on_exit(self, session_id: str, exit_code: int) -> None:
        if not self.exited.done():
            self.exited.set_result(exit_code)

    def on_agents(self, agents: list[Agent]) -> None:
        write_snapshot(self.snapshot_path, agents)

    def on_error(self, session_id: str, message: str) -> None:
        print(f"Error: {message}", file=sys.stderr)


def write_snapshot(path: Path, agents: list[Agent]) -> None:
    """Write a snapshot atomically (tmp file + rename)."""
    from .logging_config import get_logger
    from .types import snapshot_to_json

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(snapshot_to_json(agents) + "\n")
        tmp.rename(path)
    except OSError as e:
        get_logger(__name__).error(f"Failed to save agent snapshot: {e}")


def read_snapshot(path: Path) -> list[Agent]:
    """Load a snapshot file; missing or unreadable files read as empty."""
    import json

    from .types import snapshot_from_json

    if not path.exists():
        return []
    try:
        return snapshot_from_json(path.read_text())
    except (json.JSONDecodeError, OSError, TypeError, AttributeError):
        return []


def format_agents(agents: list[Agent], active_only: bool = False) -> str:
    """Human-readable listing of a snapshot."""
    if active_only:
        agents = [a for a in agents if a.active]
    if not agents:
        return "No agents detected."

    lines = ["=== Agents ==="]
    for agent in agents:
        state = "active" if agent.active else "done"
        uses = f"{agent.tool_uses} tool use{'s' if agent.tool_uses != 1 else ''}"
        lines.append(f"  [{state:>6}] {agent.session_id} / {agent.name}  ({uses} · {agent.tokens})")
        if agent.status:
            lines.append(f"           {agent.status}")
    return "\n".join(lines)


# --- Subcommands ---


async def _run_session(session_id: str, cwd: str) -> int:
    """Attach one session to this terminal until its shell exits."""
    import termios
    import tty

    from .agent_parser import AgentParser
    from .broker import SessionBroker
    from .config import snapshot_file
    from .logging_config import get_logger
    from .pty_registry import PtyRegistry

    logger = get_logger(__name__)
    loop = asyncio.get_running_loop()
    exited: asyncio.Future = loop.create_future()

    observer = HostObserver(sys.stdout.buffer, snapshot_file(), exited)
    broker = SessionBroker(PtyRegistry(), AgentParser(), observer)
    write_snapshot(snapshot_file(), [])

    if broker.attach(session_id, cwd) is None:
        return 1
    logger.info(f"Session {session_id} attached")

    stdin_fd = sys.stdin.fileno()
    interactive = os.isatty(stdin_fd)
    saved_attrs = None

    def sync_size() -> None:
        size = os.get_terminal_size(stdin_fd)
        broker.resize(session_id, size.columns, size.lines)

    def relay_input() -> None:
        try:
            data = os.read(stdin_fd, 4096)
        except OSError:
            data = b""
        if not data:
            loop.remove_reader(stdin_fd)
            return
        broker.write(session_id, data.decode("utf-8", errors="replace"))

    if interactive:
        saved_attrs = termios.tcgetattr(stdin_fd)
        tty.setraw(stdin_fd)
        sync_size()
        loop.add_signal_handler(signal.SIGWINCH, sync_size)
    loop.add_reader(stdin_fd, relay_input)

    try:
        return await exited
    finally:
        loop.remove_reader(stdin_fd)
        if interactive:
            loop.remove_signal_handler(signal.SIGWINCH)
            termios.tcsetattr(stdin_fd, termios.TCSADRAIN, saved_attrs)
        broker.shutdown()
        # Let the final (emptied) snapshot reach agents.json
        await asyncio.sleep(0)
        logger.info(f"Session {session_id} finished")


def cmd_run(args):
    """Run a shell session in this terminal and track its sub-agents."""
    from .logging_config import setup_process_logging

    # The session owns the terminal; logs go to files only
    setup_process_logging("run", console=False)
    session_id = args.id or uuid.uuid4().hex[:8]
    try:
        code = asyncio.run(_run_session(session_id, args.cwd))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


async def _follow_snapshot(path: Path, active_only: bool) -> None:
    """Re-print the snapshot every time the file is replaced."""
    from watchfiles import awatch

    print(format_agents(read_snapshot(path), active_only), flush=True)
    async for changes in awatch(path.parent):
        if not any(Path(changed).name == path.name for _, changed in changes):
            continue
        print(flush=True)
        print(format_agents(read_snapshot(path), active_only), flush=True)


def cmd_agents(args):
    """Print the latest agent snapshot."""
    from .config import snapshot_file

    path = snapshot_file()
    if not args.follow:
        print(format_agents(read_snapshot(path), args.active))
        return

    from .logging_config import setup_process_logging

    setup_process_logging("agents", level="WARNING", file=False)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        asyncio.run(_follow_snapshot(path, args.active))
    except KeyboardInterrupt:
        pass


def main():
    from . import config

    parser = argparse.ArgumentParser(
        prog="termdeck",
        description="Shell sessions with live sub-agent tracking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--data", "-d", help="Data directory path (default: $TERMDECK_DATA_DIR or ~/.local/share/termdeck)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a shell session in this terminal")
    run_parser.add_argument("--data", "-d", help=argparse.SUPPRESS)
    run_parser.add_argument("--id", help="Session id (default: random)")
    run_parser.add_argument("--cwd", default=os.getcwd(), help="Working directory (default: current)")
    run_parser.set_defaults(func=cmd_run)

    agents_parser = subparsers.add_parser("agents", help="Show detected sub-agents")
    agents_parser.add_argument("--data", "-d", help=argparse.SUPPRESS)
    agents_parser.add_argument("--active", "-a", action="store_true", help="Only show active agents")
    agents_parser.add_argument("--follow", "-f", action="store_true", help="Keep printing as the snapshot changes")
    agents_parser.set_defaults(func=cmd_agents)

    args = parser.parse_args()

    data_arg = args.data
    data = Path(data_arg).expanduser().resolve() if data_arg else config.default_data_dir()
    config.init(data)
    config.ensure_dirs()

    args.func(args)


if __name__ == "__main__":
    main()
