"""Shared pytest fixtures for all tests."""

import asyncio
import hashlib
import math
import re
from typing import Dict, List, Optional, Set

import httpx
import pytest

from common.types import UploadFile
from uploader.api_client import UploadApiClient
from uploader.config import Config


def parse_form(request: httpx.Request) -> Dict[str, bytes]:
    """Split a multipart/form-data request body into {field name: content}."""
    boundary = request.headers['Content-Type'].split('boundary=', 1)[1].encode()
    fields = {}
    for part in request.content.split(b'--' + boundary):
        if part in (b'', b'--\r\n', b'--'):
            continue
        headers, _, content = part[2:].partition(b'\r\n\r\n')
        name = re.search(rb'name="([^"]*)"', headers).group(1).decode()
        fields[name] = content[:-2] if content.endswith(b'\r\n') else content
    return fields


class FakeUploadServer:
    """
    In-memory implementation of the resumable upload API.

    Sessions are keyed by content hash. Chunk behaviour can be scripted per
    chunk index: fail a number of times, fail always, or block on ``gate``.
    """

    def __init__(self, chunk_size: int = 4):
        self.chunk_size = chunk_size
        self.sessions: Dict[str, dict] = {}
        self.prepare_calls: List[str] = []
        self.chunk_calls: List[int] = []
        self.complete_calls: List[str] = []
        self.cancel_calls: List[str] = []
        self.chunk_failures: Dict[int, int] = {}
        self.always_fail: Set[int] = set()
        self.fail_files: Set[str] = set()
        self.completed_hashes: Set[str] = set()
        self.preuploaded: List[int] = []
        self.prepare_error: Optional[str] = None
        self.complete_error: Optional[str] = None
        self.cancel_error: Optional[str] = None
        self.gate: Optional[asyncio.Event] = None
        self.gate_except: Set[int] = set()

    @staticmethod
    def ok(data=None) -> httpx.Response:
        return httpx.Response(200, json={'code': 1, 'msg': 'success', 'data': data})

    @staticmethod
    def fail(msg: str) -> httpx.Response:
        return httpx.Response(200, json={'code': 0, 'msg': msg, 'data': None})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def received(self, session_id: str) -> bytes:
        chunks = self.sessions[session_id]['chunks']
        return b''.join(chunks[i] for i in sorted(chunks))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith('/prepare'):
            return self._prepare(request)
        if path.endswith('/chunk'):
            return await self._chunk(request)
        if path.endswith('/complete'):
            return self._complete(request)
        if '/cancel/' in path:
            session_id = path.rsplit('/', 1)[-1]
            self.cancel_calls.append(session_id)
            if self.cancel_error:
                return self.fail(self.cancel_error)
            return self.ok('cancelled')
        return httpx.Response(404)

    def _prepare(self, request: httpx.Request) -> httpx.Response:
        name = request.url.params['fileName']
        size = int(request.url.params['fileSize'])
        file_hash = request.url.params['fileHash']
        self.prepare_calls.append(name)
        if self.prepare_error:
            return self.fail(self.prepare_error)

        session_id = f"sess-{file_hash[:12]}"
        total = math.ceil(size / self.chunk_size)
        session = self.sessions.setdefault(session_id, {
            'name': name,
            'total': total,
            'chunks': {i: b'' for i in self.preuploaded if i < total},
        })

        if file_hash in self.completed_hashes:
            return self.ok({
                'taskId': session_id,
                'resumable': False,
                'completed': True,
                'totalChunks': total,
                'uploadedChunks': list(range(total)),
                'chunkSize': self.chunk_size,
                'finalFileId': 'file-final',
                'downloadUrl': 'http://test/d/file-final',
            })

        return self.ok({
            'taskId': session_id,
            'resumable': bool(session['chunks']),
            'completed': False,
            'totalChunks': total,
            'uploadedChunks': sorted(session['chunks']),
            'chunkSize': self.chunk_size,
        })

    async def _chunk(self, request: httpx.Request) -> httpx.Response:
        form = parse_form(request)
        session_id = form['taskId'].decode()
        index = int(form['chunkIndex'])
        data = form['chunk']
        self.chunk_calls.append(index)

        if self.gate is not None and index not in self.gate_except:
            await self.gate.wait()

        session = self.sessions[session_id]
        if session['name'] in self.fail_files or index in self.always_fail:
            return self.fail(f"chunk {index} rejected")
        if self.chunk_failures.get(index, 0) > 0:
            self.chunk_failures[index] -= 1
            return httpx.Response(503)

        session['chunks'][index] = data
        return self.ok({
            'taskId': session_id,
            'chunkIndex': index,
            'chunkFileId': f'part-{index}',
            'success': True,
            'message': 'ok',
            'uploadedChunksCount': len(session['chunks']),
            'progressPercentage': len(session['chunks']) / session['total'] * 100,
        })

    def _complete(self, request: httpx.Request) -> httpx.Response:
        session_id = request.url.params['taskId']
        self.complete_calls.append(session_id)
        if self.complete_error:
            return self.fail(self.complete_error)
        session = self.sessions[session_id]
        return self.ok({
            'fileName': session['name'],
            'downloadLink': f'http://test/d/{session_id}',
            'size': sum(len(c) for c in session['chunks'].values()),
        })


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .resumable-uploader directory
    """
    config_dir = tmp_path / '.resumable-uploader'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance whose queue store lives in the temp dir.

    Returns:
        Config instance with temp config file
    """
    config = Config(temp_config_dir / 'config.json')
    config.data['queue_store_path'] = str(temp_config_dir / 'queue.json')
    config.data['retry_delay'] = 0.001
    return config


@pytest.fixture
def fake_server():
    return FakeUploadServer()


@pytest.fixture
def api_client(temp_config, fake_server):
    """Create UploadApiClient wired to the fake server."""
    client = UploadApiClient(temp_config)
    client.session = httpx.AsyncClient(transport=fake_server.transport(), base_url='http://test')
    return client


@pytest.fixture
def make_file(tmp_path):
    """
    Factory writing a file of ``size`` bytes and returning its UploadFile.

    Content is derived from the name so different names hash differently.
    """
    def _make(name: str = 'sample.bin', size: int = 10) -> UploadFile:
        seed = hashlib.sha256(name.encode()).digest()
        content = (seed * (size // len(seed) + 1))[:size]
        path = tmp_path / name
        path.write_bytes(content)
        return UploadFile.from_path(str(path))

    return _make


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it is true."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def until():
    return wait_for


@pytest.fixture
def form_fields():
    return parse_form
