"""Resolve minified stack frames to original source positions."""

import re
from collections import OrderedDict
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import structlog

from ..processing.stacktrace import StackFrame, parse_stack
from ..storage.base import TelemetryStore
from ..storage.models import SourceMapArtifact
from .consumer import SourceMapError, parse_source_map
from .vlq import VLQDecodeError

logger = structlog.get_logger(__name__)

_SCRIPT_NAME_RE = re.compile(r"([^/\\?#]+\.(?:js|mjs|cjs))(?:[?#]|$)")

CacheKey = Tuple[str, str, str, int]


def extract_filename(url: Optional[str]) -> Optional[str]:
    """
    Script basename of a frame file, or None if it is not a script.

    Args:
        url: Frame file URL or path

    Returns:
        Basename such as ``bundle.js``
    """
    if not url:
        return None

    path = urlsplit(url).path if "://" in url else url
    match = _SCRIPT_NAME_RE.search(path)
    return match.group(1) if match else None


class SourceMapResolver:
    """
    Resolve frames against uploaded source maps.

    Decoded mapping tables are cached per artifact identity
    (dsn, version, filename, created_at), so a re-upload under the same key
    is decoded afresh.
    """

    def __init__(self, store: TelemetryStore, cache_size: int = 64):
        """
        Initialize resolver.

        Args:
            store: Storage backend holding the artifacts
            cache_size: Maximum number of decoded maps kept in memory
        """
        self.store = store
        self.cache_size = cache_size
        self._cache: "OrderedDict[CacheKey, Any]" = OrderedDict()
        self._lock = Lock()

    def _consumer_for(self, artifact: SourceMapArtifact):
        key: CacheKey = (artifact.dsn, artifact.version, artifact.filename, artifact.created_at)

        with self._lock:
            consumer = self._cache.get(key)
            if consumer is not None:
                self._cache.move_to_end(key)
                return consumer

        consumer = parse_source_map(artifact.content)

        with self._lock:
            self._cache[key] = consumer
            self._cache.move_to_end(key)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        return consumer

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def resolve_frame(self, frame: StackFrame, dsn: str, version: Optional[str] = None) -> Dict[str, Any]:
        """
        Resolve one frame.

        Args:
            frame: Parsed stack frame
            dsn: Project DSN
            version: Release the artifact was uploaded for

        Returns:
            Frame dict; original* fields are None when unresolved
        """
        result: Dict[str, Any] = {
            "file": frame.file,
            "line": frame.line,
            "column": frame.column,
            "function": frame.function,
            "originalFile": None,
            "originalLine": None,
            "originalColumn": None,
            "originalName": None,
        }

        filename = extract_filename(frame.file)
        if not filename or frame.line is None or frame.column is None:
            return result

        try:
            artifact = self.store.find_sourcemap(dsn, f"{filename}.map", version)
            if artifact is None:
                return result

            position = self._consumer_for(artifact).original_position_for(frame.line, frame.column)
        except (SourceMapError, VLQDecodeError) as e:
            logger.warning("sourcemap_parse_failed", dsn=dsn, filename=filename, error=str(e))
            return result

        if position is not None:
            result["originalFile"] = position.source
            result["originalLine"] = position.line
            result["originalColumn"] = position.column
            result["originalName"] = position.name

        return result

    def resolve(self, frames: List[StackFrame], dsn: str, version: Optional[str] = None) -> List[Dict[str, Any]]:
        """Resolve frames in order; failures leave individual frames unresolved."""
        return [self.resolve_frame(frame, dsn, version) for frame in frames]

    def resolve_stack(self, stack: Optional[str], dsn: str, version: Optional[str] = None) -> List[Dict[str, Any]]:
        """Parse a raw stack string and resolve its frames."""
        return self.resolve(parse_stack(stack), dsn, version)
