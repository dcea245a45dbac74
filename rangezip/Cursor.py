#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# RangeZip - Streaming and byte-range ZIP extraction
# Copyright (C) 2025-2026 RangeZip contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import io
import struct

from typing import Iterable, Optional

from rangezip.Errors import TruncatedDataError
from rangezip.Kernel import getLogger
from rangezip.Settings import READ_CHUNK_SIZE
from rangezip.Utils import closeQuietly

logger = getLogger(__name__)

UINT16 = struct.Struct('<H')
UINT32 = struct.Struct('<I')
UINT64 = struct.Struct('<Q')


class ChunkReader:
    """
    Adapts an iterable of byte chunks (e.g. requests' iter_content() or a generator)
    to the read(n) interface used by ByteCursor.
    """

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = iter(chunks)
        self._current = b''
        self._offset = 0

    def read(self, size: int = -1) -> bytes:
        if size == 0:
            return b''

        while self._offset >= len(self._current):
            try:
                self._current = bytes(next(self._chunks))
            except StopIteration:
                self._current = b''
                self._offset = 0
                return b''
            self._offset = 0

        if size < 0:
            end = len(self._current)
        else:
            end = min(len(self._current), self._offset + size)

        data = self._current[self._offset:end]
        self._offset = end
        return data

    def close(self):
        closeQuietly(self._chunks)


class ByteCursor:
    """
    Pull-based reader over a byte sequence.

    Accepts bytes-like data, any object with read(n) (files, HTTP bodies, another
    ByteCursor) or an iterable of byte chunks. The cursor never asks its source for
    more bytes than its limit allows, so a limited sub-cursor leaves everything after
    its window untouched in the parent.
    """

    def __init__(self, source, limit: Optional[int] = None, closeSource: bool = True):
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(bytes(source))
        elif not hasattr(source, 'read'):
            source = ChunkReader(source)

        if limit is not None and limit < 0:
            raise ValueError(f"Cursor limit must not be negative: {limit}")

        self._source = source
        self._remaining = limit
        self._pushback = bytearray()
        self._closeSource = closeSource
        self.position = 0 # Bytes consumed through this cursor

    @property
    def remaining(self) -> Optional[int]:
        """Bytes left in the window, None when the cursor is not limited"""
        return self._remaining

    def read(self, size: int) -> bytes:
        """Read up to size bytes; returns b'' only at end of data."""
        if size <= 0:
            return b''

        if self._remaining is not None:
            size = min(size, self._remaining)
            if size == 0:
                return b''

        if self._pushback:
            data = bytes(self._pushback[:size])
            del self._pushback[:size]
        else:
            data = self._source.read(size) or b''

        self.position += len(data)
        if self._remaining is not None:
            self._remaining -= len(data)

        return data

    def readExact(self, size: int) -> bytes:
        """Read exactly size bytes or raise TruncatedDataError."""
        if size == 0:
            return b''

        parts = []
        received = 0
        while received < size:
            chunk = self.read(size - received)
            if not chunk:
                logger.debug(f"Data ended after {received} of {size} bytes at position {self.position}")
                raise TruncatedDataError(
                    f"Expected {size} bytes but data ended after {received}", expected=size, received=received
                )
            parts.append(chunk)
            received += len(chunk)

        return b''.join(parts)

    def readAsText(self, size: int, encoding: str = 'utf-8', errors: str = 'strict') -> str:
        return self.readExact(size).decode(encoding, errors)

    def readUInt16(self) -> int:
        return UINT16.unpack(self.readExact(UINT16.size))[0]

    def readUInt32(self) -> int:
        return UINT32.unpack(self.readExact(UINT32.size))[0]

    def readUInt64(self) -> int:
        return UINT64.unpack(self.readExact(UINT64.size))[0]

    def readStruct(self, layout: struct.Struct) -> tuple:
        return layout.unpack(self.readExact(layout.size))

    def skip(self, size: int):
        """Consume and discard exactly size bytes."""
        while size > 0:
            step = min(size, READ_CHUNK_SIZE)
            self.readExact(step)
            size -= step

    def unread(self, data: bytes):
        """Push bytes back so the next read returns them first."""
        if not data:
            return

        self._pushback[:0] = data
        self.position -= len(data)
        if self._remaining is not None:
            self._remaining += len(data)

    def atEnd(self) -> bool:
        data = self.read(1)
        if not data:
            return True

        self.unread(data)
        return False

    def limited(self, size: int) -> 'ByteCursor':
        """Sub-cursor exposing only the next size bytes of this cursor."""
        return ByteCursor(self, limit=size, closeSource=False)

    def close(self):
        self._pushback.clear()
        if self._closeSource:
            closeQuietly(self._source)

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()
        return False
