"""Tests for the build-directory source map uploader."""

import re

import httpx
import orjson
import pytest

from pulsewatch.sourcemap.uploader import (
    SourceMapUploader,
    collect_sourcemaps,
    resolve_version,
    should_upload,
)

VALID_MAP = orjson.dumps({
    "version": 3,
    "sources": ["src/App.tsx"],
    "names": ["render"],
    "mappings": "ktCAyCUA",
})


@pytest.fixture
def build_dir(tmp_path):
    (tmp_path / "assets").mkdir()
    (tmp_path / "assets" / "app.js.map").write_bytes(VALID_MAP)
    (tmp_path / "assets" / "app.js").write_text("console.log(1)")
    (tmp_path / "assets" / "vendor.js.map").write_bytes(VALID_MAP)
    (tmp_path / "main.js.map").write_bytes(VALID_MAP)
    (tmp_path / "broken.js.map").write_text("{not json")
    return tmp_path


class TestShouldUpload:
    def test_only_map_files(self):
        assert should_upload("app.js.map") is True
        assert should_upload("app.js") is False

    def test_include_and_exclude(self):
        assert should_upload("vendor.js.map", exclude=r"^vendor") is False
        assert should_upload("app.js.map", include=re.compile(r"^app")) is True
        assert should_upload("main.js.map", include=re.compile(r"^app")) is False
        assert should_upload("app.js.map", include=lambda name: "app" in name) is True

    def test_exclude_wins(self):
        assert should_upload("app.js.map", include=r"app", exclude=r"app") is False


class TestResolveVersion:
    def test_static_and_computed(self):
        assert resolve_version("1.4.2") == "1.4.2"
        assert resolve_version(lambda: "abc123\n") == "abc123"

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            resolve_version(lambda: "  ")


class TestCollectSourceMaps:
    def test_recursive_scan_skips_invalid(self, build_dir):
        files = collect_sourcemaps(str(build_dir))

        assert [f.filename for f in files] == ["main.js.map", "app.js.map", "vendor.js.map"]
        assert files[1].path == str(build_dir / "assets" / "app.js.map")

    def test_filters(self, build_dir):
        files = collect_sourcemaps(str(build_dir), exclude=r"^vendor")

        assert [f.filename for f in files] == ["main.js.map", "app.js.map"]

    def test_missing_directory(self, tmp_path):
        assert collect_sourcemaps(str(tmp_path / "dist")) == []


class TestSourceMapUploader:
    """Tests for per-file uploads."""

    def _uploader(self, handler, **options):
        return SourceMapUploader(
            "http://monitor.example/",
            "shop",
            "1.4.2",
            transport=httpx.MockTransport(handler),
            **options,
        )

    def test_uploads_and_deletes_accepted_files(self, build_dir):
        received = []

        def handler(request):
            received.append((request.url.path, request.content))
            if b'filename="vendor.js.map"' in request.content:
                return httpx.Response(400, text="bad map")
            return httpx.Response(200, json={"success": True})

        files = collect_sourcemaps(str(build_dir))
        with self._uploader(handler, headers={"Authorization": "Bearer t"}) as uploader:
            results = uploader.upload(files)

        assert [(r.filename, r.success) for r in results] == [
            ("main.js.map", True),
            ("app.js.map", True),
            ("vendor.js.map", False),
        ]
        assert results[2].error == "HTTP 400: bad map"
        assert {path for path, _ in received} == {"/sourcemap"}
        assert all(b'name="version"\r\n\r\n1.4.2' in body for _, body in received)
        assert not (build_dir / "main.js.map").exists()
        assert (build_dir / "assets" / "vendor.js.map").exists()

    def test_keep_files(self, build_dir):
        files = collect_sourcemaps(str(build_dir))
        with self._uploader(lambda request: httpx.Response(200), delete_after_upload=False) as uploader:
            uploader.upload(files)

        assert (build_dir / "main.js.map").exists()

    def test_transport_errors_reported_per_file(self, build_dir):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        files = collect_sourcemaps(str(build_dir))
        with self._uploader(handler) as uploader:
            results = uploader.upload(files)

        assert all(not r.success and "refused" in r.error for r in results)
        assert (build_dir / "main.js.map").exists()

    def test_nothing_to_upload(self):
        with self._uploader(lambda request: httpx.Response(200)) as uploader:
            assert uploader.upload([]) == []
