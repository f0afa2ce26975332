"""Collect source maps from a build directory and upload them to /sourcemap."""

import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Pattern, Union

import httpx
import structlog

from .consumer import SourceMapError, parse_source_map
from .vlq import VLQDecodeError

logger = structlog.get_logger(__name__)

FileFilter = Union[str, Pattern[str], Callable[[str], bool]]
VersionSource = Union[str, Callable[[], str]]

DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class SourceMapFile:
    filename: str
    path: str
    content: str


@dataclass(frozen=True)
class UploadResult:
    filename: str
    path: str
    success: bool
    error: Optional[str] = None


def resolve_version(version: VersionSource) -> str:
    """A fixed version string, or the value of a callable computing one."""
    value = version() if callable(version) else version
    value = (value or "").strip()
    if not value:
        raise ValueError("source map version is empty")
    return value


def _matches(file_filter: FileFilter, filename: str) -> bool:
    if callable(file_filter):
        return bool(file_filter(filename))
    if isinstance(file_filter, str):
        return re.search(file_filter, filename) is not None
    return file_filter.search(filename) is not None


def should_upload(
    filename: str,
    include: Optional[FileFilter] = None,
    exclude: Optional[FileFilter] = None,
) -> bool:
    """
    Decide whether a file is uploaded.

    Only ``.map`` files qualify; ``exclude`` wins over ``include``, and with no
    ``include`` every remaining map is uploaded.
    """
    if not filename.endswith(".map"):
        return False
    if exclude is not None and _matches(exclude, filename):
        return False
    if include is not None:
        return _matches(include, filename)
    return True


def collect_sourcemaps(
    output_dir: str,
    include: Optional[FileFilter] = None,
    exclude: Optional[FileFilter] = None,
) -> List[SourceMapFile]:
    """
    Walk ``output_dir`` recursively and read every qualifying source map.

    Files that are not valid source maps are skipped with a warning.

    Returns:
        Files in sorted path order
    """
    if not os.path.isdir(output_dir):
        logger.warning("sourcemap_output_dir_missing", path=output_dir)
        return []

    files: List[SourceMapFile] = []
    for root, dirs, names in os.walk(output_dir):
        dirs.sort()
        for name in sorted(names):
            if not should_upload(name, include, exclude):
                continue

            path = os.path.join(root, name)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    content = f.read()
                parse_source_map(content)
            except (OSError, UnicodeDecodeError, SourceMapError, VLQDecodeError) as e:
                logger.warning("sourcemap_skipped", path=path, error=str(e))
                continue

            files.append(SourceMapFile(filename=name, path=path, content=content))
            logger.debug("sourcemap_found", path=path)

    return files


class SourceMapUploader:
    """
    Upload collected maps to a Pulsewatch server, a few at a time.

    Every file gets its own UploadResult; one failure never stops the rest.
    """

    def __init__(
        self,
        server_url: str,
        dsn: str,
        version: VersionSource,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        concurrency: int = DEFAULT_CONCURRENCY,
        delete_after_upload: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.endpoint = f"{server_url.rstrip('/')}/sourcemap"
        self.dsn = dsn
        self.version = resolve_version(version)
        self.concurrency = max(1, concurrency)
        self.delete_after_upload = delete_after_upload
        self._client = httpx.Client(headers=headers, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "SourceMapUploader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def upload_file(self, file: SourceMapFile) -> UploadResult:
        try:
            response = self._client.post(
                self.endpoint,
                data={"dsn": self.dsn, "version": self.version},
                files={"file": (file.filename, file.content.encode("utf-8"), "application/json")},
            )
        except httpx.TimeoutException:
            return UploadResult(file.filename, file.path, False, "Request timeout")
        except httpx.HTTPError as e:
            return UploadResult(file.filename, file.path, False, str(e))

        if response.status_code != 200:
            return UploadResult(file.filename, file.path, False, f"HTTP {response.status_code}: {response.text}")
        return UploadResult(file.filename, file.path, True)

    def upload(self, files: List[SourceMapFile]) -> List[UploadResult]:
        """
        Upload ``files`` and, if configured, delete the ones the server accepted.

        Returns:
            One result per file, in input order
        """
        if not files:
            logger.warning("sourcemap_upload_nothing_found")
            return []

        logger.info("sourcemap_upload_started", endpoint=self.endpoint, dsn=self.dsn,
                    version=self.version, files=len(files))

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="pulsewatch-upload") as pool:
            results = list(pool.map(self.upload_file, files))

        for result in results:
            if not result.success:
                logger.error("sourcemap_upload_failed", filename=result.filename, error=result.error)

        if self.delete_after_upload:
            for result in results:
                if not result.success:
                    continue
                try:
                    os.remove(result.path)
                except OSError as e:
                    logger.warning("sourcemap_delete_failed", path=result.path, error=str(e))

        uploaded = sum(1 for r in results if r.success)
        logger.info("sourcemap_upload_done", uploaded=uploaded, failed=len(results) - uploaded)
        return results
