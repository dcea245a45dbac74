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

import threading

from typing import Callable, Iterator

from rangezip.CentralDirectory import iterCentralDirectory
from rangezip.Cursor import ByteCursor
from rangezip.Errors import FetchCancelledError, TruncatedDataError
from rangezip.Fetcher import BoundedFetcher, ConcurrencyGate, FetchTicket
from rangezip.Kernel import getLogger, ZipEvent
from rangezip.Partitioner import partitionNearbyEntries
from rangezip.Records import LocalFileRecord, RecordKind, decodeNext
from rangezip.Settings import MAX_PENDING_PARTITIONS, PARTITION_MAX_GAP, SCAN_CHUNK_SIZE
from rangezip.Sources import ByteSource

logger = getLogger(__name__)


def defaultPredicate(record) -> bool:
    """Everything except directory entries of size 0"""
    return not (record.isDirectory and record.uncompressedSize == 0)


class SelectiveExtractor:
    """
    Iterator of the local file records selected from a randomly addressable archive.

    A producer thread walks the central directory, keeps the records accepted by the
    predicate, groups them into partitions and submits each partition to a
    BoundedFetcher. Iterating consumes the tickets in submission order and decodes
    the requested local records out of each partition's range.

    Exhaust the iterator or close() it to release threads, slots and streams.
    """

    def __init__(
        self,
        source: ByteSource,
        predicate: Callable = defaultPredicate,
        gate: ConcurrencyGate = None,
        chunkSize: int = SCAN_CHUNK_SIZE,
        maxGap: int = PARTITION_MAX_GAP,
        maxPending: int = MAX_PENDING_PARTITIONS,
        ownsSource: bool = False,
    ):
        self.source = source
        self.predicate = predicate or defaultPredicate
        self.chunkSize = chunkSize
        self.maxGap = maxGap
        self.ownsSource = ownsSource

        self._fetcher = BoundedFetcher(source, gate=gate, maxPending=maxPending)
        self._producer = threading.Thread(target=self._produce, name='rangezip-producer', daemon=True)
        self._records = None
        self._released = False

    def __iter__(self):
        return self

    def __next__(self) -> LocalFileRecord:
        if self._records is None:
            if self._released:
                raise StopIteration
            self._producer.start()
            self._records = self._consume()

        return next(self._records)

    def _produce(self):
        directory = iterCentralDirectory(self.source, self.chunkSize)
        try:
            selected = (record for record in directory if self.predicate(record))
            for partition in partitionNearbyEntries(selected, self.maxGap):
                if self._fetcher.cancelled:
                    return
                self._fetcher.submit(partition)

            self._fetcher.finish()
        except FetchCancelledError:
            logger.debug('Extraction closed while listing the central directory')
        except Exception as e:
            # Handed over to the consumer, which raises it at its next pull
            logger.error(f"Listing the central directory failed: {e}")
            self._fetcher.abort(e)
        finally:
            directory.close()

    def _consume(self) -> Iterator[LocalFileRecord]:
        try:
            for ticket in self._fetcher.tickets():
                yield from self._drain(ticket)
        finally:
            self._release()

    def _drain(self, ticket: FetchTicket) -> Iterator[LocalFileRecord]:
        partition = ticket.partition
        start, end = partition.byteRange

        cursor = ByteCursor(ticket.result())
        try:
            # Bytes between requested entries are skipped, trailing bytes are never read
            for entry in partition:
                offset = start + cursor.position
                if entry.firstByteAt < offset:
                    logger.warning(f"{entry.fileName} at {entry.firstByteAt} overlaps the previous entry, skipped")
                    continue
                cursor.skip(entry.firstByteAt - offset)

                try:
                    record = decodeNext(cursor, directory={entry.fileName: entry})
                except TruncatedDataError:
                    if start + cursor.position <= end:
                        raise
                    logger.warning(f"{entry.fileName} runs past {partition}, ending the partition")
                    return

                if record.kind is not RecordKind.LOCAL_FILE:
                    logger.warning(f"No local record for {entry.fileName} at {entry.firstByteAt}, ending {partition}")
                    return

                if record.fileName != entry.fileName:
                    logger.debug(f"Local name {record.fileName!r} differs from central name {entry.fileName!r}")

                ZipEvent.entryExtract.trigger(record=record)
                yield record
        finally:
            cursor.close()

    def _release(self):
        if self._released:
            return
        self._released = True

        self._fetcher.cancel()
        if self._producer.is_alive():
            self._producer.join()
        self._fetcher.close()

        if self.ownsSource:
            self.source.close()

    def close(self):
        if self._records is not None:
            # Runs the consumer's cleanup if it is suspended mid-partition
            self._records.close()
        self._release()

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()
        return False


def iterZipFiles(
    location,
    predicate: Callable = defaultPredicate,
    gate: ConcurrencyGate = None,
    chunkSize: int = SCAN_CHUNK_SIZE,
    maxGap: int = PARTITION_MAX_GAP,
    maxPending: int = MAX_PENDING_PARTITIONS,
    **sourceOptions
) -> SelectiveExtractor:
    """
    Selectively extract files from a randomly addressable archive.

    Args:
        location: ByteSource, http(s) URL, local path or bytes-like data
        predicate: Decides from a central directory record whether to extract it
        gate: Shared ConcurrencyGate, a private one is created when omitted
        **sourceOptions: Passed to HttpByteSource when location is a URL

    Returns:
        SelectiveExtractor: Lazy iterator of LocalFileRecords
    """
    source = ByteSource.build(location, **sourceOptions)
    return SelectiveExtractor(
        source,
        predicate=predicate,
        gate=gate,
        chunkSize=chunkSize,
        maxGap=maxGap,
        maxPending=maxPending,
        ownsSource=source is not location,
    )


def readEntireZip(stream, predicate: Callable = None) -> Iterator[LocalFileRecord]:
    """
    Decode an archive front to back from a forward-only stream.

    Central directory and end records are decoded and passed over; iteration ends
    at the first unrecognized signature or the end of data.

    Args:
        stream: File object, bytes-like data or iterable of byte chunks
        predicate: Optional filter over local file records
    """
    cursor = ByteCursor(stream)
    try:
        while True:
            record = decodeNext(cursor)
            if record.kind is RecordKind.UNRECOGNIZED:
                if record.signature is not None:
                    logger.debug(f"Stopping at signature 0x{record.signature:08x}")
                return

            if record.kind is not RecordKind.LOCAL_FILE:
                continue

            if predicate is None or predicate(record):
                ZipEvent.entryExtract.trigger(record=record)
                yield record
    finally:
        cursor.close()
