"""ANSI/VT escape stripping to recover plain text lines from raw pty output.

Not a terminal emulator: cursor movement, scroll regions and the like are
dropped, not applied. What's left is good enough for line-oriented pattern
matching against the CLI's progress tree.
"""

import re

# Order matters: specific sequence shapes first, then the catch-all single
# escapes, then whatever control bytes survived.
_STRIP_PATTERNS = [
    re.compile(r"\x1b\[[0-9;?]*[A-Za-z]"),  # CSI (colors, cursor, erase)
    re.compile(r"\x1b\][^\x07]*(?:\x07|\x1b\\)"),  # OSC (window title, hyperlinks)
    re.compile(r"\x1b[()#][A-Za-z0-9]"),  # Character set, DEC line attrs
    re.compile(r"\x1b[=>NOM]"),  # Keypad modes, single shifts, reverse index
    re.compile(r"\x1b\x1b"),
    re.compile(r"\x1b[^\[\]()#=>\x1b]"),  # Any remaining two-byte escape
    re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]"),  # Keep \t \n \r
]


def strip_ansi(text: str) -> str:
    """Remove escape sequences and non-printable control bytes from text.

    Newline, carriage return and tab are preserved. Unrecognized sequences
    lose their ESC byte (and usually the byte after it) rather than raising.
    """
    for pattern in _STRIP_PATTERNS:
        text = pattern.sub("", text)
    return text
