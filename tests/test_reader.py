"""
Tests for ChunkReader and LimitEnforcer.
"""

import pytest

from ferry.config import ParserLimits
from ferry.faults import ClientDisconnect, PayloadTooLarge, ReadTimeout
from ferry.reader import ChunkReader, LimitEnforcer

from tests.conftest import make_receive


def reader_for(receive, chunk=1024, timeout=1.0):
    return ChunkReader(receive, read_chunk_bytes=chunk, read_timeout=timeout)


class TestChunkReader:

    @pytest.mark.asyncio
    async def test_reads_whole_body(self):
        reader = reader_for(make_receive(chunks=[b"Hello, ", b"World", b"!"]))

        collected = [chunk async for chunk in reader]

        assert collected == [b"Hello, ", b"World", b"!"]
        assert reader.bytes_read == 13
        assert reader.at_eof

    @pytest.mark.asyncio
    async def test_reslices_large_messages(self):
        reader = reader_for(make_receive(b"x" * 25), chunk=10)

        sizes = []
        while (chunk := await reader.read_chunk()) is not None:
            sizes.append(len(chunk))

        assert sizes == [10, 10, 5]

    @pytest.mark.asyncio
    async def test_skips_empty_messages(self):
        reader = reader_for(make_receive(chunks=[b"", b"abc", b""]))

        assert await reader.read_chunk() == b"abc"
        assert await reader.read_chunk() is None

    @pytest.mark.asyncio
    async def test_end_of_stream_is_sticky(self):
        reader = reader_for(make_receive(b"abc"))

        await reader.read_chunk()
        assert await reader.read_chunk() is None
        assert await reader.read_chunk() is None

    @pytest.mark.asyncio
    async def test_timeout_per_chunk(self):
        receive = make_receive(chunks=[b"first", b"second"], stall_after=1)
        reader = reader_for(receive, timeout=0.05)

        assert await reader.read_chunk() == b"first"
        with pytest.raises(ReadTimeout) as exc_info:
            await reader.read_chunk()

        assert exc_info.value.status == 408
        assert exc_info.value.metadata["bytes_read"] == 5

    @pytest.mark.asyncio
    async def test_disconnect(self):
        reader = reader_for(make_receive(chunks=[b"partial"], disconnect_after=True))

        assert await reader.read_chunk() == b"partial"
        with pytest.raises(ClientDisconnect):
            await reader.read_chunk()

    def test_from_limits(self):
        limits = ParserLimits(read_chunk_bytes=64, read_timeout_ms=250)
        reader = ChunkReader.from_limits(make_receive(), limits)
        assert reader.read_chunk_bytes == 64
        assert reader.read_timeout == 0.25


class TestLimitEnforcer:

    @pytest.mark.asyncio
    async def test_within_limit(self):
        enforcer = LimitEnforcer(reader_for(make_receive(b"x" * 100)), 100)

        chunks = [chunk async for chunk in enforcer]

        assert b"".join(chunks) == b"x" * 100
        assert enforcer.total == 100

    @pytest.mark.asyncio
    async def test_rejects_before_returning_excess(self):
        enforcer = LimitEnforcer(reader_for(make_receive(b"x" * 101), chunk=50), 100)

        assert await enforcer.read_chunk() == b"x" * 50
        assert await enforcer.read_chunk() == b"x" * 50
        with pytest.raises(PayloadTooLarge) as exc_info:
            await enforcer.read_chunk()

        assert enforcer.total == 100
        assert exc_info.value.metadata["max_allowed"] == 100
        assert exc_info.value.metadata["actual"] == 101

    def test_declared_length_too_large(self):
        enforcer = LimitEnforcer(reader_for(make_receive()), 100)

        enforcer.check_declared_length(None)
        enforcer.check_declared_length(100)
        with pytest.raises(PayloadTooLarge):
            enforcer.check_declared_length(101)
