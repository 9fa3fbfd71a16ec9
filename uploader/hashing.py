"""Streaming content digest used to identify uploads on the server."""

import asyncio
import hashlib
from typing import Callable

from common.constants import HASH_BLOCK_SIZE_BYTES
from common.types import UploadFile
from uploader.exceptions import ReadError


def compute_file_hash(
    file: UploadFile,
    block_size: int = HASH_BLOCK_SIZE_BYTES,
    hasher_factory: Callable = hashlib.md5
) -> str:
    """
    Hash a file by feeding it to the hasher block by block.

    Args:
        file: File to hash
        block_size: Bytes read per step, bounds memory use
        hasher_factory: Constructor of a hashlib-style object

    Returns:
        Hex digest of the whole content

    Raises:
        ReadError: If any block cannot be read
    """
    hasher = hasher_factory()
    try:
        for block in file.iter_blocks(block_size):
            hasher.update(block)
    except OSError as e:
        raise ReadError(f"Failed to read {file.name}: {e}") from e
    return hasher.hexdigest()


async def compute_file_hash_async(
    file: UploadFile,
    block_size: int = HASH_BLOCK_SIZE_BYTES,
    hasher_factory: Callable = hashlib.md5
) -> str:
    """Run compute_file_hash in a worker thread."""
    return await asyncio.to_thread(compute_file_hash, file, block_size, hasher_factory)
