"""
Tests for UploadRequest - the per-request ingestion pipeline.
"""

import asyncio

import pytest

from ferry.config import ParserLimits
from ferry.faults import (
    ClientDisconnect, MalformedMultipart, PayloadTooLarge, ReadTimeout,
    UnsupportedMediaType,
)
from ferry.lifecycle import UploadLifecycle
from ferry.request import UploadRequest

from tests.conftest import build_multipart, make_receive, make_scope, split, temp_files


def make_request(body, content_type, temp_dir, *, chunks=None, limits=None,
                 headers=None, **receive_kwargs):
    receive = make_receive(body, chunks=chunks, **receive_kwargs)
    return UploadRequest(
        make_scope(content_type=content_type, headers=headers),
        receive,
        limits=limits,
        temp_dir=temp_dir,
    )


class TestForm:

    @pytest.mark.asyncio
    async def test_parses_fields_and_files(self, temp_dir):
        body, ct = build_multipart(
            data={"title": "Metaprogramming Elixir"},
            files={"photo": ("meta-cover.png", b"\x89PNG" * 100, "image/png")},
        )
        request = make_request(body, ct, temp_dir, chunks=split(body, 64))

        fields = await request.form()

        assert fields["title"] == "Metaprogramming Elixir"
        assert fields["photo"].size == 400
        assert request.bytes_received == len(body)
        assert request.lifecycle.owns(fields["photo"])

    @pytest.mark.asyncio
    async def test_form_is_cached(self, temp_dir):
        body, ct = build_multipart(data={"a": "1"})
        request = make_request(body, ct, temp_dir)

        first = await request.form()
        second = await request.form()

        assert first is second

    @pytest.mark.asyncio
    async def test_cleanup_removes_files(self, temp_dir):
        body, ct = build_multipart(files={"a": ("a.txt", b"a"), "b": ("b.txt", b"b")})
        request = make_request(body, ct, temp_dir)
        await request.form()
        assert len(temp_files(temp_dir)) == 2

        await request.cleanup()
        await request.cleanup()

        assert temp_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_transferred_file_survives_cleanup(self, temp_dir, tmp_path):
        body, ct = build_multipart(files={"keep": ("k.txt", b"keep"), "drop": ("d.txt", b"drop")})
        request = make_request(body, ct, temp_dir)
        fields = await request.form()

        dest = tmp_path / "kept" / "k.txt"
        await request.lifecycle.transfer_ownership(fields["keep"], dest)
        await request.cleanup()

        assert dest.read_bytes() == b"keep"
        assert not fields["drop"].storage_path.exists()

    @pytest.mark.asyncio
    async def test_shared_lifecycle(self, temp_dir):
        body, ct = build_multipart(files={"a": ("a.txt", b"a")})
        lifecycle = UploadLifecycle()
        request = UploadRequest(
            make_scope(content_type=ct), make_receive(body),
            lifecycle=lifecycle, temp_dir=temp_dir,
        )

        fields = await request.form()

        assert lifecycle.owns(fields["a"])


class TestRejections:

    @pytest.mark.asyncio
    async def test_body_over_limit(self, temp_dir):
        overhead = len(build_multipart(files={"photo": ("big.bin", b"")})[0])
        content = b"\x00" * (8_000_001 - overhead)
        body, ct = build_multipart(files={"photo": ("big.bin", content)})
        assert len(body) == 8_000_001
        request = make_request(body, ct, temp_dir, chunks=split(body, 1_000_000))

        with pytest.raises(PayloadTooLarge) as exc_info:
            await request.form()

        assert exc_info.value.status == 413
        assert request.bytes_received <= 8_000_000
        assert temp_files(temp_dir) == []
        await request.cleanup()
        assert temp_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_exactly_one_byte_over(self, temp_dir):
        body, ct = build_multipart(files={"f": ("f.bin", b"x" * 200)})
        limits = ParserLimits(max_body_bytes=len(body) - 1, read_chunk_bytes=50)
        request = make_request(body, ct, temp_dir, limits=limits)

        with pytest.raises(PayloadTooLarge):
            await request.form()

        assert temp_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_exactly_at_limit(self, temp_dir):
        body, ct = build_multipart(files={"f": ("f.bin", b"x" * 200)})
        limits = ParserLimits(max_body_bytes=len(body))
        request = make_request(body, ct, temp_dir, limits=limits)

        fields = await request.form()

        assert fields["f"].size == 200

    @pytest.mark.asyncio
    async def test_declared_length_rejected_before_reading(self, temp_dir):
        body, ct = build_multipart(data={"a": "1"})
        limits = ParserLimits(max_body_bytes=10)
        receive = make_receive(body)
        request = UploadRequest(
            make_scope(content_type=ct, headers=[("content-length", str(len(body)))]),
            receive, limits=limits, temp_dir=temp_dir,
        )

        with pytest.raises(PayloadTooLarge):
            await request.form()

        assert receive.calls() == 0

    @pytest.mark.asyncio
    async def test_invalid_content_length(self, temp_dir):
        body, ct = build_multipart(data={"a": "1"})
        request = make_request(body, ct, temp_dir, headers=[("content-length", "lots")])

        with pytest.raises(MalformedMultipart):
            await request.form()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content_type", [
        None,
        "application/json",
        "application/x-www-form-urlencoded",
        "multipart/mixed; boundary=abc",
    ])
    async def test_unsupported_media_type(self, temp_dir, content_type):
        request = make_request(b"{}", content_type, temp_dir)

        with pytest.raises(UnsupportedMediaType) as exc_info:
            await request.form()

        assert exc_info.value.status == 415

    @pytest.mark.asyncio
    async def test_missing_boundary(self, temp_dir):
        request = make_request(b"", "multipart/form-data", temp_dir)

        with pytest.raises(MalformedMultipart):
            await request.form()

    @pytest.mark.asyncio
    async def test_stalled_client(self, temp_dir):
        body, ct = build_multipart(files={"f": ("f.bin", b"y" * 1000)})
        limits = ParserLimits(read_timeout_ms=50)
        request = make_request(
            body, ct, temp_dir, chunks=split(body, 300), limits=limits, stall_after=2,
        )

        with pytest.raises(ReadTimeout) as exc_info:
            await request.form()

        assert exc_info.value.status == 408
        assert temp_files(temp_dir) == []

    @pytest.mark.asyncio
    async def test_client_disconnect(self, temp_dir):
        body, ct = build_multipart(files={"f": ("f.bin", b"y" * 1000)})
        request = make_request(
            body[:600], ct, temp_dir, chunks=split(body[:600], 200), disconnect_after=True,
        )

        with pytest.raises(ClientDisconnect):
            await request.form()

        assert temp_files(temp_dir) == []


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_concurrent_uploads_get_distinct_paths(self, temp_dir):
        async def upload(i):
            content = f"file {i}".encode() * 50
            body, ct = build_multipart(files={"doc": ("same-name.txt", content)})
            request = make_request(body, ct, temp_dir, chunks=split(body, 100))
            fields = await request.form()
            return fields["doc"], content

        results = await asyncio.gather(*[upload(i) for i in range(20)])

        paths = {handle.storage_path for handle, _ in results}
        assert len(paths) == 20
        for handle, content in results:
            assert handle.storage_path.read_bytes() == content

    @pytest.mark.asyncio
    async def test_failure_does_not_touch_other_requests(self, temp_dir):
        good_body, ct = build_multipart(files={"ok": ("ok.txt", b"fine")})
        bad_body, _ = build_multipart(files={"bad": ("bad.txt", b"z" * 500)})
        good = make_request(good_body, ct, temp_dir)
        bad = make_request(bad_body[:300], ct, temp_dir)

        results = await asyncio.gather(good.form(), bad.form(), return_exceptions=True)

        assert isinstance(results[1], MalformedMultipart)
        await bad.cleanup()
        assert results[0]["ok"].storage_path.read_bytes() == b"fine"
        assert temp_files(temp_dir) == [results[0]["ok"].storage_path]


class TestRequestProperties:

    def test_headers_and_method(self, temp_dir):
        request = UploadRequest(
            make_scope(content_type="multipart/form-data; boundary=x",
                       headers=[("X-Trace", "abc")]),
            make_receive(), temp_dir=temp_dir,
        )

        assert request.method == "POST"
        assert request.path == "/upload"
        assert request.headers.get("x-trace") == "abc"
        assert request.is_multipart()
        assert request.content_length() is None
