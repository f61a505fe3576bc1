"""Shared fixtures for termdeck tests."""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest

import termdeck.config as config
from termdeck.types import Agent


# Module-level setup: point config at a throwaway data dir so modules that
# read settings at construction time work without per-test setup.
_tmp = Path(tempfile.mkdtemp(prefix="termdeck-test-"))
config.init(_tmp)

SHELL = "/bin/sh"


@pytest.fixture
def data_dir(tmp_path):
    """Create a temporary data directory and init config."""
    d = tmp_path / "data"
    (d / "logs").mkdir(parents=True)
    config.init(d)
    config._settings_cache = None
    config._settings_mtime = 0.0
    yield d
    config.init(_tmp)
    config._settings_cache = None
    config._settings_mtime = 0.0


class RecordingObserver:
    """Observer that records everything the broker pushes."""

    def __init__(self):
        self.output: list[tuple[str, str]] = []
        self.exits: list[tuple[str, int]] = []
        self.snapshots: list[list[Agent]] = []
        self.errors: list[tuple[str, str]] = []

    def on_output(self, session_id, chunk):
        self.output.append((session_id, chunk))

    def on_exit(self, session_id, exit_code):
        self.exits.append((session_id, exit_code))

    def on_agents(self, agents):
        self.snapshots.append(agents)

    def on_error(self, session_id, message):
        self.errors.append((session_id, message))

    def text_for(self, session_id: str) -> str:
        return "".join(chunk for sid, chunk in self.output if sid == session_id)


@pytest.fixture
def observer():
    return RecordingObserver()


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
    """Poll predicate() on the event loop until it is truthy or timeout expires."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return bool(predicate())


def write_settings(data_dir: Path, **settings) -> None:
    (data_dir / "settings.json").write_text(json.dumps(settings))
