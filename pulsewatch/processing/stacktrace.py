"""Stack trace parsing for JavaScript and Python traces."""

import re
from dataclasses import dataclass
from typing import List, Optional

# "    at functionName (file:line:column)" or "    at file:line:column"
_CHROME_RE = re.compile(r"^\s*at\s+(?:(.+?)\s+\()?(.+?):(\d+):(\d+)\)?\s*$")
# "functionName@file:line:column"
_FIREFOX_RE = re.compile(r"^\s*(.*?)@(.+?):(\d+):(\d+)\s*$")
# '  File "path.py", line 12, in handler'
_PYTHON_RE = re.compile(r'^\s*File "(.+?)", line (\d+)(?:, in (.+?))?\s*$')

_THIRD_PARTY_MARKERS = ("node_modules", "site-packages", "<anonymous>", "webpack", "<frozen")


@dataclass(frozen=True)
class StackFrame:
    """Single parsed stack frame."""

    function: Optional[str]
    file: Optional[str]
    line: Optional[int] = None
    column: Optional[int] = None

    @property
    def is_third_party(self) -> bool:
        """Frames from dependencies, runtime internals or bundler glue."""
        if not self.file:
            return False
        if self.file.startswith("native"):
            return True
        return any(marker in self.file for marker in _THIRD_PARTY_MARKERS)


def parse_stack_line(line: str) -> Optional[StackFrame]:
    """
    Parse a single stack line.

    Args:
        line: One line of a Chrome, Firefox/Safari or Python trace

    Returns:
        StackFrame or None if the line is not a frame
    """
    match = _CHROME_RE.match(line)
    if match:
        return StackFrame(
            function=match.group(1) or None,
            file=match.group(2),
            line=int(match.group(3)),
            column=int(match.group(4)),
        )

    match = _FIREFOX_RE.match(line)
    if match:
        return StackFrame(
            function=match.group(1) or None,
            file=match.group(2),
            line=int(match.group(3)),
            column=int(match.group(4)),
        )

    match = _PYTHON_RE.match(line)
    if match:
        return StackFrame(
            function=match.group(3) or None,
            file=match.group(1),
            line=int(match.group(2)),
        )

    return None


def parse_stack(stack: Optional[str]) -> List[StackFrame]:
    """
    Parse a stack trace into frames, innermost frame first.

    Python tracebacks list the innermost call last, so their frames
    are reversed to match the JavaScript ordering.

    Args:
        stack: Raw stack string

    Returns:
        List of StackFrame objects
    """
    if not stack:
        return []

    frames: List[StackFrame] = []
    is_python = False

    for line in stack.splitlines():
        frame = parse_stack_line(line)
        if frame is None:
            continue
        if frame.column is None:
            is_python = True
        frames.append(frame)

    if is_python:
        frames.reverse()

    return frames


def in_app_frames(frames: List[StackFrame]) -> List[StackFrame]:
    """Drop third-party frames unless that would drop every frame."""
    relevant = [frame for frame in frames if not frame.is_third_party]
    return relevant or list(frames)
