"""Spawn failure classification.

Everything else the core does degrades silently (unknown ids, dead
processes, bad working directories). A shell that cannot be started is the
one failure surfaced to the user, once per create attempt.
"""

import errno
from dataclasses import dataclass


@dataclass
class SpawnFailure:
    """Structured spawn failure."""

    category: str  # "shell_not_found", "permission_denied", "resource_exhausted", "unknown"
    text: str  # The underlying error text for logging
    session_id: str = ""

    @property
    def message(self) -> str:
        """One-line, user-facing description."""
        label = _CATEGORY_LABELS.get(self.category, "could not start shell")
        return f"Terminal {self.session_id}: {label} ({self.text})"


_CATEGORY_LABELS = {
    "shell_not_found": "shell not found",
    "permission_denied": "permission denied starting shell",
    "resource_exhausted": "out of pseudo-terminals or processes",
    "unknown": "could not start shell",
}

_EXHAUSTED_ERRNOS = frozenset({errno.EAGAIN, errno.ENOMEM, errno.EMFILE, errno.ENFILE, errno.ENOSPC})


class SpawnError(RuntimeError):
    """Raised by PtyRegistry.create() when the shell process cannot be started."""

    def __init__(self, failure: SpawnFailure):
        super().__init__(failure.message)
        self.failure = failure


def classify_spawn_error(error: BaseException, session_id: str = "") -> SpawnFailure:
    """Classify an exception raised while spawning a shell.

    errno wins when present; otherwise falls back to message matching.
    """
    error_msg = str(error)
    error_lower = error_msg.lower()
    code = getattr(error, "errno", None)

    if isinstance(error, FileNotFoundError) or code == errno.ENOENT:
        return SpawnFailure(category="shell_not_found", text=error_msg, session_id=session_id)
    if isinstance(error, PermissionError) or code in (errno.EACCES, errno.EPERM):
        return SpawnFailure(category="permission_denied", text=error_msg, session_id=session_id)
    if code in _EXHAUSTED_ERRNOS:
        return SpawnFailure(category="resource_exhausted", text=error_msg, session_id=session_id)

    # ptyprocess re-raises exec failures from the child as plain exceptions
    if "no such file" in error_lower or "not found" in error_lower:
        return SpawnFailure(category="shell_not_found", text=error_msg, session_id=session_id)
    if "permission denied" in error_lower:
        return SpawnFailure(category="permission_denied", text=error_msg, session_id=session_id)
    if "out of pty" in error_lower or "resource temporarily unavailable" in error_lower:
        return SpawnFailure(category="resource_exhausted", text=error_msg, session_id=session_id)

    return SpawnFailure(category="unknown", text=error_msg, session_id=session_id)
