"""Tests for chunk slicing, hashing and abortable chunk requests."""

import asyncio
import hashlib
import os

import pytest

from uploader.chunk_transfer import ChunkTransfer, chunk_bounds, read_chunk
from uploader.exceptions import ChunkError, ReadError, UploadCancelledError
from uploader.hashing import compute_file_hash, compute_file_hash_async


def test_chunk_bounds():
    assert chunk_bounds(0, 4, 10) == (0, 4)
    assert chunk_bounds(1, 4, 10) == (4, 8)
    assert chunk_bounds(2, 4, 10) == (8, 10)


@pytest.mark.asyncio
async def test_read_chunk_returns_slice(make_file):
    file = make_file('slice.bin', 10)
    with open(file.path, 'rb') as f:
        content = f.read()

    assert await read_chunk(file, 1, 4) == content[4:8]
    assert await read_chunk(file, 2, 4) == content[8:]


@pytest.mark.asyncio
async def test_read_chunk_missing_file(make_file):
    file = make_file('vanished.bin', 10)
    os.remove(file.path)

    with pytest.raises(ReadError):
        await read_chunk(file, 0, 4)


def test_hash_matches_single_pass_digest(make_file):
    file = make_file('hash.bin', 1000)
    with open(file.path, 'rb') as f:
        expected = hashlib.md5(f.read()).hexdigest()

    assert compute_file_hash(file, block_size=64) == expected


def test_hash_uses_injected_hasher(make_file):
    file = make_file('sha.bin', 100)
    with open(file.path, 'rb') as f:
        expected = hashlib.sha256(f.read()).hexdigest()

    assert compute_file_hash(file, block_size=7, hasher_factory=hashlib.sha256) == expected


@pytest.mark.asyncio
async def test_hash_async_missing_file(make_file):
    file = make_file('nohash.bin', 10)
    os.remove(file.path)

    with pytest.raises(ReadError):
        await compute_file_hash_async(file)


class TestChunkTransfer:
    """Per-chunk request registry."""

    @pytest.fixture
    def session(self, fake_server):
        fake_server.sessions['s1'] = {'name': 'x.bin', 'total': 2, 'chunks': {}}
        return 's1'

    @pytest.mark.asyncio
    async def test_send_returns_acknowledgment(self, api_client, fake_server, session):
        transfer = ChunkTransfer(api_client)
        progress = []

        result = await transfer.send(session, 0, b'abcd', lambda sent, total: progress.append((sent, total)))

        assert result.chunk_index == 0
        assert result.chunk_file_id == 'part-0'
        assert fake_server.sessions[session]['chunks'][0] == b'abcd'
        assert progress and progress[-1][0] == progress[-1][1]
        assert transfer.in_flight == []

    @pytest.mark.asyncio
    async def test_send_failure_raises_chunk_error(self, api_client, fake_server, session):
        fake_server.always_fail = {1}
        transfer = ChunkTransfer(api_client)

        with pytest.raises(ChunkError) as exc_info:
            await transfer.send(session, 1, b'zz')

        assert exc_info.value.chunk_index == 1
        assert transfer.in_flight == []

    @pytest.mark.asyncio
    async def test_abort_one_request(self, api_client, fake_server, session, until):
        fake_server.gate = asyncio.Event()
        transfer = ChunkTransfer(api_client)

        pending = asyncio.ensure_future(transfer.send(session, 1, b'data'))
        await until(lambda: transfer.in_flight == [1])

        assert transfer.abort(1) is True
        with pytest.raises(UploadCancelledError):
            await pending
        assert transfer.in_flight == []

    @pytest.mark.asyncio
    async def test_abort_all_requests(self, api_client, fake_server, session, until):
        fake_server.gate = asyncio.Event()
        transfer = ChunkTransfer(api_client)

        sends = [asyncio.ensure_future(transfer.send(session, i, b'data')) for i in (0, 1)]
        await until(lambda: transfer.in_flight == [0, 1])

        assert transfer.abort_all() == 2
        results = await asyncio.gather(*sends, return_exceptions=True)
        assert all(isinstance(r, UploadCancelledError) for r in results)

    def test_abort_unknown_chunk(self, api_client):
        transfer = ChunkTransfer(api_client)

        assert transfer.abort(7) is False
        assert transfer.abort_all() == 0
