"""Error fingerprinting for grouping equivalent errors.

Two errors share a fingerprint when they have the same type, the same
message once volatile content (ids, emails, addresses, literals) has been
replaced by placeholders, and the same top in-app stack frames. Line and
column numbers never take part, so a redeploy that shifts code does not
split a group.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlsplit

from .stacktrace import StackFrame, in_app_frames, parse_stack

DEFAULT_FRAME_COUNT = 3

_NORMALIZERS = [
    (re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.I), "<uuid>"),
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "<email>"),
    (re.compile(r"\b[a-zA-Z][a-zA-Z0-9+.-]*://[^\s'\"`<>]+"), "<url>"),
    (re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}\b"), "<ip>"),
    (re.compile(r"\b0x[0-9a-fA-F]+\b"), "<hex>"),
    (re.compile(r"\b(?=[0-9a-fA-F]*\d)(?=[0-9a-fA-F]*[a-fA-F])[0-9a-fA-F]{6,}\b"), "<hex>"),
    (re.compile(r"'[^']*'|\"[^\"]*\"|`[^`]*`"), "<str>"),
    (re.compile(r"\b\d+(?:\.\d+)?\b"), "<num>"),
]

_WHITESPACE_RE = re.compile(r"\s+")
_FILENAME_HASH_RE = re.compile(r"[-.][a-f0-9]{6,}\.", re.I)
_NUMERIC_SEGMENT_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class FingerprintResult:
    """Fingerprint and the parts it was computed from."""

    fingerprint: str
    normalized_message: str
    stack_signature: Optional[str]


def normalize_message(message: Optional[str]) -> str:
    """
    Replace volatile content in an error message with placeholders.

    Args:
        message: Raw error message

    Returns:
        Normalized message
    """
    if not message:
        return ""

    normalized = message
    for pattern, placeholder in _NORMALIZERS:
        normalized = pattern.sub(placeholder, normalized)

    return _WHITESPACE_RE.sub(" ", normalized).strip()


def normalize_filename(filename: Optional[str]) -> str:
    """Reduce a frame file to its basename without query string or build hash."""
    if not filename:
        return "unknown"

    normalized = filename.split("?")[0].split("#")[0]
    normalized = _FILENAME_HASH_RE.sub(".", normalized)
    basename = re.split(r"[/\\]", normalized)[-1]
    return basename or normalized


def normalize_page_url(url: Optional[str]) -> str:
    """Page URL without query or fragment, numeric path segments replaced."""
    if not url:
        return ""

    parts = urlsplit(url)
    segments = [
        "<num>" if _NUMERIC_SEGMENT_RE.match(segment) else segment
        for segment in parts.path.split("/")
    ]
    path = "/".join(segments)

    if parts.netloc:
        return f"{parts.netloc}{path}"
    return path


def frame_identity(frame: StackFrame) -> str:
    """Position-independent identity of a frame."""
    function = frame.function or "anonymous"
    return f"{function}@{normalize_filename(frame.file)}"


def stack_signature(
    frames: List[StackFrame],
    frame_count: int = DEFAULT_FRAME_COUNT,
) -> Optional[str]:
    """
    Build the stack signature from the top in-app frames.

    Args:
        frames: Parsed frames, innermost first
        frame_count: Number of frames that take part

    Returns:
        Signature string or None when there are no frames
    """
    if not frames:
        return None

    top = in_app_frames(frames)[:frame_count]
    return " > ".join(frame_identity(frame) for frame in top)


def generate_fingerprint(
    error_type: str,
    message: Optional[str],
    stack: Optional[str] = None,
    url: Optional[str] = None,
    frame_count: int = DEFAULT_FRAME_COUNT,
) -> FingerprintResult:
    """
    Compute the grouping fingerprint of an error.

    Args:
        error_type: Error event type (error, unhandledrejection, resource)
        message: Raw error message
        stack: Raw stack trace, if any
        url: Page URL, used only when the stack has no parsable frames
        frame_count: Number of in-app frames in the signature

    Returns:
        FingerprintResult
    """
    normalized_message = normalize_message(message)
    signature = stack_signature(parse_stack(stack), frame_count)

    if signature is None:
        signature_part = f"url:{normalize_page_url(url)}"
    else:
        signature_part = signature

    parts = "::".join([error_type or "error", normalized_message, signature_part])
    fingerprint = hashlib.sha256(parts.encode("utf-8")).hexdigest()[:16]

    return FingerprintResult(
        fingerprint=fingerprint,
        normalized_message=normalized_message,
        stack_signature=signature,
    )


def group_id(dsn: str, fingerprint: str) -> str:
    """Deterministic error group identifier for a (dsn, fingerprint) pair."""
    return hashlib.sha256(f"{dsn}:{fingerprint}".encode("utf-8")).hexdigest()[:32]
