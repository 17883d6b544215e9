"""
Error Fingerprinting

Produces a short, stable dedup key for an error so repeated occurrences of
the same problem land in one aggregation bucket.

Strategy:
1. Normalize the message (mask UUIDs, snowflake IDs, timestamps, IPs,
   ports, numeric ids and hashes so transient values never fragment a
   fingerprint)
2. Extract up to 3 stable stack frames (skipping library/runtime frames)
3. Append the lowercased error name and the category
4. SHA-256 the combination and keep the first 16 hex chars

Stack parsing is pluggable: each FrameMatcher understands one runtime's
stack format. Python tracebacks and Node.js stacks are supported out of
the box.
"""

import hashlib
import re
from typing import Iterable, List, NamedTuple, Optional, Sequence

from error_monitor.alerts.error_types import ErrorCategory

FINGERPRINT_LENGTH = 16
COMPONENT_SEPARATOR = "|||"
DEFAULT_MAX_FRAMES = 3

# Used when classification/fingerprinting itself fails
FALLBACK_FINGERPRINT = "0" * FINGERPRINT_LENGTH

# Ordered: timestamps before ports so "12:00:00" is not read as two ports
_MASKS = (
    (re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE), "<UUID>"),
    (re.compile(r"\b\d{17,19}\b"), "<SNOWFLAKE>"),
    (re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2}"), "<TIMESTAMP>"),
    (re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b"), "<IP>"),
    (re.compile(r":(\d{2,5})\b"), ":<PORT>"),
    (re.compile(r"\bid[=:]\s*\d+", re.IGNORECASE), "id=<ID>"),
    (re.compile(r"\b[0-9a-f]{32,}\b", re.IGNORECASE), "<HASH>"),
)
_WHITESPACE = re.compile(r"\s+")
_SRC_PREFIX = re.compile(r".*/src/")


class StackFrame(NamedTuple):
    function: str
    path: str
    line: int

    def format(self) -> str:
        return f"{self.function}@{relative_path(self.path)}:{self.line}"


class FrameMatcher:
    """
    Recognizes frame lines of one runtime's stack format.

    Subclasses set ``pattern`` (with named groups path/line and optionally
    func), ``innermost_first`` and ``library_markers``.
    """
    name = "generic"
    pattern: re.Pattern = None
    innermost_first = True
    library_markers: Sequence[str] = ()

    def match(self, line: str) -> Optional[StackFrame]:
        m = self.pattern.search(line)
        if not m:
            return None
        return StackFrame(
            function=m.group('func') or "anonymous",
            path=m.group('path').replace("\\", "/"),
            line=int(m.group('line')),
        )

    def is_library(self, path: str) -> bool:
        lower = path.lower()
        return any(marker in lower for marker in self.library_markers)


class PythonFrameMatcher(FrameMatcher):
    """Standard traceback lines: ``File "/app/src/x.py", line 42, in handler``."""
    name = "python"
    pattern = re.compile(r'File "(?P<path>[^"]+)", line (?P<line>\d+), in (?P<func>[^\s]+)')
    innermost_first = False  # "most recent call last"
    library_markers = ("site-packages", "dist-packages", "/lib/python", "<frozen", "<string>")

    def is_library(self, path: str) -> bool:
        return path.startswith("<") or super().is_library(path)


class NodeFrameMatcher(FrameMatcher):
    """V8 stack lines: ``at fn (/app/src/x.ts:10:5)`` or ``at /app/src/x.ts:10:5``."""
    name = "node"
    pattern = re.compile(r"at\s+(?:(?P<func>.+?)\s+\()?(?P<path>.+?):(?P<line>\d+):(?P<col>\d+)\)?")
    innermost_first = True
    library_markers = ("node_modules",)

    def is_library(self, path: str) -> bool:
        return path.startswith("node:") or super().is_library(path)


DEFAULT_FRAME_MATCHERS = (PythonFrameMatcher(), NodeFrameMatcher())


def relative_path(path: str) -> str:
    """Trim everything before the project's ``src/`` directory."""
    return _SRC_PREFIX.sub("src/", path.replace("\\", "/"))


def normalize_message(message: Optional[str]) -> str:
    """Mask transient values, collapse whitespace and lowercase."""
    normalized = str(message or "")
    for pattern, token in _MASKS:
        normalized = pattern.sub(token, normalized)
    return _WHITESPACE.sub(" ", normalized).strip().lower()


def _stable_frames(
    stack_trace: str,
    matchers: Iterable[FrameMatcher]
) -> List[StackFrame]:
    lines = stack_trace.splitlines()
    for matcher in matchers:
        frames = []
        for line in lines:
            frame = matcher.match(line)
            if frame and not matcher.is_library(frame.path):
                frames.append(frame)
        if frames:
            return frames if matcher.innermost_first else frames[::-1]
    return []


def extract_stable_frames(
    stack_trace: Optional[str],
    max_frames: int = DEFAULT_MAX_FRAMES,
    matchers: Iterable[FrameMatcher] = DEFAULT_FRAME_MATCHERS
) -> List[str]:
    """
    Extract up to ``max_frames`` project frames, innermost first, formatted
    as ``function@relative/path:line``.

    The first matcher that recognizes any project frame wins.
    """
    if not stack_trace:
        return []
    return [frame.format() for frame in _stable_frames(stack_trace, matchers)[:max_frames]]


def extract_source(
    stack_trace: Optional[str],
    matchers: Iterable[FrameMatcher] = DEFAULT_FRAME_MATCHERS
) -> Optional[str]:
    """Relative file path of the innermost project frame, if any."""
    if not stack_trace:
        return None
    frames = _stable_frames(stack_trace, matchers)
    return relative_path(frames[0].path) if frames else None


def generate_fingerprint(
    message: Optional[str],
    stack_trace: Optional[str] = None,
    error_name: Optional[str] = None,
    category: ErrorCategory = ErrorCategory.UNKNOWN
) -> str:
    """
    Generate a fingerprint for error grouping.

    Args:
        message: Raw error message
        stack_trace: Optional stack trace (any supported runtime format)
        error_name: Optional exception class name
        category: Classified error category

    Returns:
        16-character hex fingerprint
    """
    components = [normalize_message(message)]

    frames = extract_stable_frames(stack_trace)
    if frames:
        components.append("->".join(frames))

    if error_name:
        components.append(error_name.lower())

    components.append(ErrorCategory(category).value)

    hash_input = COMPONENT_SEPARATOR.join(components)
    return hashlib.sha256(hash_input.encode('utf-8')).hexdigest()[:FINGERPRINT_LENGTH]
