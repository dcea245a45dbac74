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
Concurrent range fetching for partitions.

Each non-empty partition becomes one range request running on a worker thread.
Requests are capped by a ConcurrencyGate; tickets come out strictly in submission
order through a bounded queue, so a slow consumer eventually blocks the producer.
"""

import concurrent.futures
import queue
import threading

from typing import BinaryIO, Iterator, Optional, Tuple

from rangezip.Errors import FetchCancelledError, RangeRequestError
from rangezip.Kernel import getLogger, ZipEvent
from rangezip.Partitioner import Partition
from rangezip.Settings import FETCH_CONCURRENCY, MAX_PENDING_PARTITIONS, RANGE_END_PADDING
from rangezip.Sources import ByteSource
from rangezip.Utils import closeQuietly, formatRange

logger = getLogger(__name__)


class ConcurrencyGate:
    """
    Caps the number of range requests being issued at once.

    A gate can be shared by several fetchers to bound them together.
    """

    def __init__(self, capacity: int = FETCH_CONCURRENCY):
        if capacity < 1:
            raise ValueError(f"Gate capacity must be at least 1: {capacity}")

        self.capacity = capacity
        self._semaphore = threading.BoundedSemaphore(capacity)
        self._lock = threading.Lock()
        self.inUse = 0
        self.peakInUse = 0

    def acquire(self, timeout: float = None) -> bool:
        if not self._semaphore.acquire(timeout=timeout):
            return False

        with self._lock:
            self.inUse += 1
            self.peakInUse = max(self.peakInUse, self.inUse)
        return True

    def release(self):
        with self._lock:
            self.inUse -= 1
        self._semaphore.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, excType, excValue, traceback):
        self.release()
        return False


def _closeFutureStream(future: concurrent.futures.Future):
    if future.cancelled() or future.exception() is not None:
        return
    closeQuietly(future.result())


class FetchTicket:
    """A partition paired with the stream of its range request"""

    def __init__(self, partition: Partition, future: concurrent.futures.Future):
        self.partition = partition
        self.future = future

    @property
    def byteRange(self) -> Tuple[int, int]:
        return self.partition.byteRange

    def result(self, timeout: float = None) -> BinaryIO:
        """
        Wait for the range request and return its stream.

        Raises:
            RangeRequestError: If the request failed
            FetchCancelledError: If the fetch was cancelled before it ran
        """
        try:
            return self.future.result(timeout=timeout)
        except concurrent.futures.CancelledError as e:
            raise FetchCancelledError(f"Fetch of {self.partition} was cancelled") from e

    def discard(self):
        """Drop the ticket, closing its stream whenever the request completes."""
        if not self.future.cancel():
            self.future.add_done_callback(_closeFutureStream)

    def __repr__(self):
        return f'FetchTicket({self.partition!r})'


class _Failure:

    def __init__(self, error: BaseException):
        self.error = error


_END = object()


class BoundedFetcher:
    """
    Issues one range request per submitted partition.

    The producer calls submit() for each partition and then finish(), or abort()
    when it fails. The consumer iterates tickets(), which blocks on the queue and
    yields tickets in submission order.
    """

    def __init__(
        self, source: ByteSource, gate: ConcurrencyGate = None, maxPending: int = MAX_PENDING_PARTITIONS,
        endPadding: int = RANGE_END_PADDING
    ):
        self.source = source
        self.gate = gate or ConcurrencyGate()
        self.endPadding = endPadding
        self._tickets = queue.Queue(maxsize=maxPending)
        self._cancelled = threading.Event()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self.gate.capacity, thread_name_prefix='rangezip-fetch'
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def submit(self, partition: Partition) -> Optional[FetchTicket]:
        """
        Schedule the range request of a partition.

        Returns:
            FetchTicket: The queued ticket, None for an empty partition

        Raises:
            FetchCancelledError: If the fetcher was cancelled
        """
        if not len(partition):
            return None

        if self.cancelled:
            raise FetchCancelledError('Fetcher was cancelled')

        ticket = FetchTicket(partition, self._executor.submit(self._fetch, partition))
        self._put(ticket)
        return ticket

    def finish(self):
        """Mark the end of submissions"""
        self._put(_END)

    def abort(self, error: BaseException):
        """End submissions with a failure the consumer will raise"""
        self._put(_Failure(error))

    def _put(self, item):
        if self.cancelled:
            if isinstance(item, FetchTicket):
                item.discard()
            return

        # Blocks while maxPending tickets are waiting; cancel() frees the queue
        self._tickets.put(item)

    def tickets(self) -> Iterator[FetchTicket]:
        while True:
            item = self._tickets.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item

    def _fetch(self, partition: Partition) -> BinaryIO:
        start, end = partition.byteRange
        end = min(end + self.endPadding, self.source.length - 1)

        with self.gate:
            if self.cancelled:
                raise FetchCancelledError(f"Fetch of {partition} was cancelled")

            logger.debug(f"Fetching {len(partition)} entries, {formatRange(start, end)}")
            try:
                stream = self.source.streamBytes(start, end)
            except RangeRequestError:
                raise
            except Exception as e:
                logger.error(f"Fetching {formatRange(start, end)} failed: {e}")
                raise RangeRequestError(f"Fetching {formatRange(start, end)} failed: {e}", start=start, end=end) from e

        ZipEvent.partitionFetch.trigger(partition=partition, start=start, end=end)
        return stream

    def _drain(self):
        while True:
            try:
                item = self._tickets.get_nowait()
            except queue.Empty:
                return
            if isinstance(item, FetchTicket):
                item.discard()

    def cancel(self):
        """Stop accepting work and discard every queued ticket."""
        if not self.cancelled:
            logger.debug('Cancelling pending fetches')
        self._cancelled.set()
        self._drain()

    def close(self):
        """Cancel, then wait for requests already being issued so their slots and streams are released."""
        self.cancel()
        self._executor.shutdown(wait=True, cancel_futures=True)
        # Tickets put by a producer that was blocked when cancel() ran
        self._drain()

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()
        return False
