"""Source map v3 consumer.

Decodes the ``mappings`` table once and answers original-position lookups
with a greatest-lower-bound search on the generated column. Generated lines
are 1-based and generated columns 0-based, as in browser-reported frames
resolved by the ``source-map`` JavaScript library; original lines are
returned 1-based and original columns 0-based.
"""

from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import orjson

from .vlq import decode_segment


class SourceMapError(ValueError):
    """Raised when a source map cannot be parsed."""


@dataclass(frozen=True)
class OriginalPosition:
    source: str
    line: int
    column: int
    name: Optional[str] = None


# (generated column, source index, original line, original column, name index)
Segment = Tuple[int, Optional[int], Optional[int], Optional[int], Optional[int]]


def _string_list(raw: Dict[str, Any], key: str) -> List[Optional[str]]:
    value = raw.get(key, [])
    if not isinstance(value, list) or not all(v is None or isinstance(v, str) for v in value):
        raise SourceMapError(f"source map {key} must be a list of strings")
    return value


def _offset_field(offset: Dict[str, Any], key: str) -> int:
    value = offset.get(key, 0)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise SourceMapError(f"section offset {key} must be a non-negative integer")
    return value


def _join_source(source_root: Optional[str], source: str) -> str:
    if not source_root or source.startswith(("/", "http://", "https://")):
        return source
    return f"{source_root.rstrip('/')}/{source}"


class BasicSourceMapConsumer:
    """Lookup over a single (non-indexed) source map."""

    def __init__(self, raw: Dict[str, Any]):
        if raw.get("version") != 3:
            raise SourceMapError(f"unsupported source map version: {raw.get('version')!r}")

        mappings = raw.get("mappings")
        if not isinstance(mappings, str):
            raise SourceMapError("source map has no mappings string")

        source_root = raw.get("sourceRoot")
        if source_root is not None and not isinstance(source_root, str):
            raise SourceMapError("source map sourceRoot must be a string")

        self.sources: List[str] = [_join_source(source_root, s or "") for s in _string_list(raw, "sources")]
        self.names: List[Optional[str]] = list(_string_list(raw, "names"))
        self.file: Optional[str] = raw.get("file")

        self._lines: List[List[Segment]] = []
        self._columns: List[List[int]] = []
        self._decode(mappings)

    def _decode(self, mappings: str) -> None:
        source = 0
        original_line = 0
        original_column = 0
        name = 0

        for line_text in mappings.split(";"):
            generated_column = 0
            segments: List[Segment] = []

            for segment_text in line_text.split(","):
                if not segment_text:
                    continue

                fields = decode_segment(segment_text)
                if len(fields) not in (1, 4, 5):
                    raise SourceMapError(f"segment has {len(fields)} fields: {segment_text!r}")

                generated_column += fields[0]
                if len(fields) == 1:
                    segments.append((generated_column, None, None, None, None))
                    continue

                source += fields[1]
                original_line += fields[2]
                original_column += fields[3]
                name_index: Optional[int] = None
                if len(fields) == 5:
                    name += fields[4]
                    name_index = name

                segments.append((generated_column, source, original_line, original_column, name_index))

            segments.sort(key=lambda s: s[0])
            self._lines.append(segments)
            self._columns.append([s[0] for s in segments])

    def original_position_for(self, line: int, column: int) -> Optional[OriginalPosition]:
        """
        Map a generated position back to source.

        Args:
            line: Generated line, 1-based
            column: Generated column, 0-based

        Returns:
            OriginalPosition or None when no mapping covers the position
        """
        index = line - 1
        if index < 0 or index >= len(self._lines):
            return None

        position = bisect_right(self._columns[index], column) - 1
        if position < 0:
            return None

        _, source, original_line, original_column, name_index = self._lines[index][position]
        if source is None or not 0 <= source < len(self.sources):
            return None

        name = None
        if name_index is not None and 0 <= name_index < len(self.names):
            name = self.names[name_index]

        return OriginalPosition(
            source=self.sources[source],
            line=original_line + 1,
            column=original_column,
            name=name,
        )


class IndexedSourceMapConsumer:
    """Lookup over an indexed source map made of offset sections."""

    def __init__(self, raw: Dict[str, Any]):
        self._sections: List[Tuple[Tuple[int, int], BasicSourceMapConsumer]] = []

        sections = raw.get("sections")
        if not isinstance(sections, list):
            raise SourceMapError("indexed source map sections must be a list")

        for section in sections:
            if not isinstance(section, dict):
                raise SourceMapError("indexed source map section must be an object")
            if "map" not in section:
                raise SourceMapError("indexed source map sections with url are not supported")
            if not isinstance(section["map"], dict):
                raise SourceMapError("indexed source map section map must be an object")

            offset = section.get("offset", {})
            if not isinstance(offset, dict):
                raise SourceMapError("indexed source map section offset must be an object")
            key = (_offset_field(offset, "line"), _offset_field(offset, "column"))
            self._sections.append((key, BasicSourceMapConsumer(section["map"])))

        self._sections.sort(key=lambda s: s[0])
        self._offsets = [key for key, _ in self._sections]

    def original_position_for(self, line: int, column: int) -> Optional[OriginalPosition]:
        target = (line - 1, column)
        position = bisect_right(self._offsets, target) - 1
        if position < 0:
            return None

        (offset_line, offset_column), consumer = self._sections[position]
        relative_line = target[0] - offset_line
        relative_column = column - offset_column if relative_line == 0 else column
        return consumer.original_position_for(relative_line + 1, relative_column)


def parse_source_map(content: Any):
    """
    Build a consumer from raw source map content.

    Args:
        content: JSON text, bytes or an already decoded dict

    Returns:
        BasicSourceMapConsumer or IndexedSourceMapConsumer

    Raises:
        SourceMapError: If the content is not a valid v3 source map
    """
    if isinstance(content, (str, bytes)):
        try:
            raw = orjson.loads(content)
        except orjson.JSONDecodeError as e:
            raise SourceMapError(f"invalid source map JSON: {e}") from e
    else:
        raw = content

    if not isinstance(raw, dict):
        raise SourceMapError("source map must be a JSON object")

    if "sections" in raw:
        return IndexedSourceMapConsumer(raw)
    return BasicSourceMapConsumer(raw)
