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

"""
Randomly addressable byte sources.

A ByteSource only has to know its total length and hand out a binary stream for an
inclusive byte range. Everything else in rangezip is built on those two operations:

- MemoryByteSource: bytes already in memory
- FileByteSource: a local file, every range gets its own handle
- HttpByteSource: a remote object fetched with HTTP Range requests
"""

import io
import os
import threading

from typing import BinaryIO, Dict, Optional
from urllib.parse import urlparse

import requests
import urllib3

from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from rangezip.Errors import RangeRequestError
from rangezip.Kernel import getLogger, PUBLIC_VERSION
from rangezip.Settings import FETCH_CONCURRENCY, HTTP_TIMEOUT, USER_AGENT
from rangezip.Utils import formatRange

logger = getLogger(__name__)


class ByteSource:
    """Randomly addressable origin of archive bytes"""
    length: int # Total size in bytes

    @classmethod
    def build(cls, location, **kwargs) -> 'ByteSource':
        """
        Factory method to create the appropriate ByteSource

        Args:
            location: http(s) URL, local path, bytes-like data or an existing ByteSource
            **kwargs: Passed to HttpByteSource (session, timeout, headers)

        Returns:
            ByteSource: Source for the location
        """
        if isinstance(location, ByteSource):
            return location

        if isinstance(location, (bytes, bytearray, memoryview)):
            return MemoryByteSource(location)

        location = os.fspath(location)
        if urlparse(location).scheme in ('http', 'https'):
            return HttpByteSource(location, **kwargs)

        return FileByteSource(location)

    def streamBytes(self, start: int, end: int) -> BinaryIO:
        """
        Open a stream over an inclusive byte range

        Args:
            start: First byte offset
            end: Last byte offset (inclusive)

        Returns:
            BinaryIO: Readable stream yielding exactly end - start + 1 bytes

        Raises:
            ValueError: If the range is outside the source
            RangeRequestError: If the range cannot be fetched
        """
        raise NotImplementedError

    def _checkRange(self, start: int, end: int):
        if start < 0 or end < start or end >= self.length:
            raise ValueError(f"Invalid range {start}-{end} for a source of {self.length} bytes")

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()
        return False


class MemoryByteSource(ByteSource):
    """ByteSource over bytes held in memory"""

    def __init__(self, data):
        self._data = bytes(data)
        self.length = len(self._data)

    def streamBytes(self, start: int, end: int) -> BinaryIO:
        self._checkRange(start, end)
        return io.BytesIO(self._data[start:end + 1])


class FileRangeStream(io.RawIOBase):
    """Reads one inclusive byte range of a local file"""

    def __init__(self, path: str, start: int, end: int):
        super().__init__()
        self._file = open(path, 'rb')
        self._file.seek(start)
        self._left = end - start + 1

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._left <= 0:
            return 0

        with memoryview(b) as view:
            n = self._file.readinto(view[:self._left]) or 0

        self._left -= n
        return n

    def close(self) -> None:
        if not self.closed:
            self._file.close()
        super().close()


class FileByteSource(ByteSource):
    """ByteSource over a local file"""

    def __init__(self, path: str):
        if not os.path.isfile(path):
            raise ValueError(f"Not a file: {path}")

        self.path = path
        self.length = os.path.getsize(path)

    def streamBytes(self, start: int, end: int) -> BinaryIO:
        self._checkRange(start, end)
        return FileRangeStream(self.path, start, end)


def createSession(poolSize: int = FETCH_CONCURRENCY) -> requests.Session:
    """
    Session used for range requests.

    urllib3 retries are disabled, retry policy belongs to the caller. The pool is
    sized for one connection per concurrent fetch.
    """
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=poolSize, pool_maxsize=poolSize, max_retries=Retry(total=0))
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    session.headers['User-Agent'] = f'{USER_AGENT}/{PUBLIC_VERSION}'
    return session


class HttpRangeStream(io.RawIOBase):
    """
    File-like body of one ranged HTTP response.

    Reads straight from the urllib3 response so nothing is buffered beyond what the
    caller asks for. Network failures while reading surface as RangeRequestError.
    """

    def __init__(self, response: requests.Response, expectedLength: int):
        super().__init__()
        self._response = response
        self._left = expectedLength

    @property
    def statusCode(self) -> int:
        return self._response.status_code

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._left <= 0:
            return 0

        want = min(len(b), self._left)
        try:
            data = self._response.raw.read(want)
        except (urllib3.exceptions.HTTPError, OSError) as e:
            logger.error(f"Reading {self._response.url} failed: {e}")
            raise RangeRequestError(f"Reading {self._response.url} failed: {e}") from e

        if not data:
            # Server closed early, the cursor reports the truncation
            self._left = 0
            return 0

        n = len(data)
        b[:n] = data
        self._left -= n
        return n

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


class _ThreadLocalSession(threading.local):
    """
    Thread-local storage for requests sessions.

    Subclassing threading.local ensures __init__ is called for each thread,
    so 'session' attribute always exists.
    """

    def __init__(self):
        super().__init__()
        self.session: Optional[requests.Session] = None


class HttpByteSource(ByteSource):
    """
    ByteSource over a remote object served with HTTP Range support.

    The length comes from a HEAD request. Every range is a GET with
    'Range: bytes=start-end'; content encoding is disabled so offsets refer to the
    stored bytes. Each fetch thread uses its own session unless one is supplied.
    """

    def __init__(
        self, url: str, session: requests.Session = None, timeout: float = HTTP_TIMEOUT,
        headers: Dict[str, str] = None
    ):
        self.url = url
        self.timeout = timeout
        self._headers = dict(headers or {})
        # Lengths and offsets refer to the stored bytes, never to a negotiated encoding
        self._headers['Accept-Encoding'] = 'identity'
        self._sharedSession = session
        self._local = _ThreadLocalSession()
        self._sessions = []
        self._sessionsLock = threading.Lock()

        self.length = self._fetchLength()

        logger.debug(f"HttpByteSource initialized: {url} ({self.length} bytes)")

    def _session(self) -> requests.Session:
        if self._sharedSession is not None:
            return self._sharedSession

        if self._local.session is None:
            self._local.session = createSession()
            with self._sessionsLock:
                self._sessions.append(self._local.session)

        return self._local.session

    def _fetchLength(self) -> int:
        try:
            response = self._session().head(
                self.url, headers=self._headers, allow_redirects=True, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"HEAD {self.url} failed: {e}")
            raise RangeRequestError(f"HEAD {self.url} failed: {e}") from e

        if not response.ok:
            logger.error(f"HEAD {self.url} returned HTTP {response.status_code}")
            raise RangeRequestError(
                f"HEAD {self.url} returned HTTP {response.status_code}", statusCode=response.status_code
            )

        contentLength = response.headers.get('Content-Length')
        if not contentLength:
            logger.error(f"HEAD {self.url} has no Content-Length")
            raise RangeRequestError(f"Content-Length header is missing for {self.url}")

        return int(contentLength)

    def streamBytes(self, start: int, end: int) -> BinaryIO:
        self._checkRange(start, end)

        headers = dict(self._headers)
        headers['Range'] = f'bytes={start}-{end}'

        logger.debug(f"GET {self.url} {formatRange(start, end)}")

        try:
            response = self._session().get(self.url, headers=headers, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Range request {start}-{end} to {self.url} failed: {e}")
            raise RangeRequestError(f"Range request to {self.url} failed: {e}", start=start, end=end) from e

        wholeObject = start == 0 and end == self.length - 1
        if response.status_code == 206 or (response.status_code == 200 and wholeObject):
            return HttpRangeStream(response, end - start + 1)

        response.close()
        logger.error(f"Range request {start}-{end} to {self.url} returned HTTP {response.status_code}")
        raise RangeRequestError(
            f"Range request {start}-{end} to {self.url} returned HTTP {response.status_code}",
            start=start,
            end=end,
            statusCode=response.status_code
        )

    def close(self):
        with self._sessionsLock:
            sessions, self._sessions = self._sessions, []

        for session in sessions:
            session.close()
