"""
Locating BGZF block starts from arbitrary byte offsets.

Framework byte boundaries fall anywhere inside compressed blocks; the split
calculator needs the first block that starts at or after such a boundary.
"""

import os
import struct
import zlib
from typing import Optional

from Bio import bgzf

BGZF_MAGIC = b"\x1f\x8b\x08\x04"
BGZF_HEADER_SIZE = 18
SCAN_WINDOW = 1 << 16


class BgzfBlockLocator:
    """Finds BGZF block starts by scanning for validated block headers."""

    def __init__(self, path: str, file_size: Optional[int] = None):
        self.path = os.fspath(path)
        self.file_size = os.path.getsize(self.path) if file_size is None else file_size

    def next_block_start(self, byte_offset: int) -> Optional[int]:
        """Start of the first block at or after byte_offset, None past the last block."""
        with open(self.path, "rb") as handle:
            pos = max(byte_offset, 0)
            while pos < self.file_size:
                handle.seek(pos)
                window = handle.read(SCAN_WINDOW)
                if not window:
                    break
                i = window.find(BGZF_MAGIC)
                while i != -1:
                    if self._is_block_start(handle, pos + i):
                        return pos + i
                    i = window.find(BGZF_MAGIC, i + 1)
                if len(window) < SCAN_WINDOW:
                    break
                # overlap so a magic straddling two windows is not missed
                pos += len(window) - len(BGZF_MAGIC) + 1
        return None

    def block_size(self, handle, offset: int) -> Optional[int]:
        """Total compressed size of the block at offset, None if no valid block."""
        handle.seek(offset)
        try:
            _, size, _, _ = next(bgzf.BgzfBlocks(handle))
        except (StopIteration, ValueError, RuntimeError, struct.error, zlib.error):
            return None
        return size

    def _is_block_start(self, handle, offset: int) -> bool:
        size = self.block_size(handle, offset)
        if size is None or size < BGZF_HEADER_SIZE:
            return False
        following = offset + size
        if following == self.file_size:
            return True
        if following > self.file_size:
            return False
        handle.seek(following)
        return handle.read(len(BGZF_MAGIC)) == BGZF_MAGIC
