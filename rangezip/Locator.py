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
Locating the central directory of a randomly addressable archive.

The end of central directory record sits at the very end of the archive, followed
only by the archive comment (0-65535 bytes), so its position is not known up front.
The archive is scanned backwards in fixed-size chunks until the record shows up; the
record then tells where the central directory starts, which may be before the bytes
fetched so far (fetch the gap) or after them (trim the excess).
"""

from dataclasses import dataclass
from typing import Optional

from rangezip.Cursor import ByteCursor, UINT32
from rangezip.Errors import CentralDirectoryNotFoundError, TruncatedDataError
from rangezip.Kernel import getLogger, ZipEvent
from rangezip.Records import (
    END_OF_CENTRAL_DIRECTORY_LAYOUT, END_OF_CENTRAL_DIRECTORY_SIZE, SIGNATURE_END_OF_CENTRAL_DIRECTORY,
    SIGNATURE_ZIP64_END_OF_CENTRAL_DIRECTORY, SIGNATURE_ZIP64_LOCATOR, ZIP64_END_OF_CENTRAL_DIRECTORY_SIZE,
    ZIP64_LOCATOR_SIZE, EndOfCentralDirectoryRecord, Zip64EndOfCentralDirectoryRecord, decodeEndOfCentralDirectory,
    decodeZip64EndOfCentralDirectory, decodeZip64Locator
)
from rangezip.Settings import SCAN_CHUNK_SIZE
from rangezip.Sources import ByteSource
from rangezip.Utils import formatSize, readAll

logger = getLogger(__name__)

END_OF_CENTRAL_DIRECTORY_MAGIC = UINT32.pack(SIGNATURE_END_OF_CENTRAL_DIRECTORY)


@dataclass
class CentralDirectoryRegion:
    """The located central directory, ready to be decoded"""
    cursor: ByteCursor # Positioned at the first central directory record
    start: int # Absolute offset of the central directory
    size: int # Central directory size declared by the trailer
    endRecord: EndOfCentralDirectoryRecord
    endRecordAt: int # Absolute offset of the end of central directory record
    zip64Record: Optional[Zip64EndOfCentralDirectoryRecord] = None

    @property
    def recordCount(self) -> int:
        if self.zip64Record is not None:
            return self.zip64Record.numberCentralDirectoryRecords
        return self.endRecord.numberCentralDirectoryRecords


def fetchRange(source: ByteSource, start: int, end: int) -> bytes:
    """Read an inclusive range completely"""
    data = readAll(source.streamBytes(start, end))
    if len(data) != end - start + 1:
        logger.error(f"Range {start}-{end} returned {len(data)} bytes")
        raise TruncatedDataError(
            f"Range {start}-{end} returned {len(data)} bytes", expected=end - start + 1, received=len(data)
        )
    return data


def streamCentralDirectory(source: ByteSource, chunkSize: int = SCAN_CHUNK_SIZE) -> CentralDirectoryRegion:
    """
    Find the end of central directory record and return the central directory bytes.

    Args:
        source: Archive to scan
        chunkSize: Bytes fetched per backward step

    Returns:
        CentralDirectoryRegion: Cursor positioned at the start of the central directory

    Raises:
        CentralDirectoryNotFoundError: If no usable end of central directory record exists
    """
    if chunkSize <= 0:
        raise ValueError(f"Scan chunk size must be positive: {chunkSize}")

    buffer = b''
    chunkStart = source.length

    while chunkStart > 0:
        chunkEnd = chunkStart - 1
        chunkStart = max(0, chunkStart - chunkSize)

        chunk = fetchRange(source, chunkStart, chunkEnd)
        buffer = chunk + buffer

        logger.debug(f"Scanning {formatSize(len(chunk))} at offset {chunkStart} for the end of central directory")

        # Candidates starting inside the new chunk, including ones that run into the previous chunk,
        # from the highest offset down
        index = buffer.rfind(END_OF_CENTRAL_DIRECTORY_MAGIC, 0, min(len(chunk) + 3, len(buffer)))
        while index != -1:
            region = _resolveRegion(source, buffer, chunkStart, index)
            if region is not None:
                ZipEvent.centralDirectoryLocate.trigger(
                    source=source, start=region.start, size=region.size, endRecord=region.endRecord
                )
                return region

            index = buffer.rfind(END_OF_CENTRAL_DIRECTORY_MAGIC, 0, index + 3)

    logger.error(f"No end of central directory record in {source.length} bytes")
    raise CentralDirectoryNotFoundError('Central directory not found')


def _resolveRegion(source: ByteSource, buffer: bytes, chunkStart: int, index: int) -> Optional[CentralDirectoryRegion]:
    """Turn a signature candidate at buffer[index] into a region, None for a false positive."""
    if len(buffer) - index < END_OF_CENTRAL_DIRECTORY_SIZE:
        # Nothing can follow the end of the archive, more fetching would not help
        logger.error(f"End of central directory record at {chunkStart + index} is truncated")
        raise CentralDirectoryNotFoundError('Central directory not found: end record is truncated')

    commentLength = END_OF_CENTRAL_DIRECTORY_LAYOUT.unpack_from(buffer, index + UINT32.size)[-1]
    recordEnd = index + END_OF_CENTRAL_DIRECTORY_SIZE + commentLength
    if recordEnd > len(buffer):
        logger.debug(f"Signature at {chunkStart + index} declares a comment past the end of the archive, skipped")
        return None

    endRecord = decodeEndOfCentralDirectory(ByteCursor(buffer[index + UINT32.size:recordEnd]))
    endRecordAt = chunkStart + index

    zip64Record = None
    directoryStart = endRecord.centralDirectoryOffset
    directorySize = endRecord.centralDirectorySize
    if endRecord.needsZip64:
        zip64Record = _readZip64Record(source, buffer, chunkStart, index)
        if zip64Record is not None:
            directoryStart = zip64Record.centralDirectoryOffset
            directorySize = zip64Record.centralDirectorySize

    if directoryStart > endRecordAt:
        logger.error(f"Central directory offset {directoryStart} lies past its end record at {endRecordAt}")
        raise CentralDirectoryNotFoundError(
            f"Central directory offset {directoryStart} lies past its end record at {endRecordAt}"
        )

    if directoryStart < chunkStart:
        # The directory begins before the fetched bytes, grab the gap
        buffer = fetchRange(source, directoryStart, chunkStart - 1) + buffer
    elif directoryStart > chunkStart:
        buffer = buffer[directoryStart - chunkStart:]

    logger.debug(
        f"Central directory at {directoryStart} ({formatSize(directorySize)}), "
        f"{endRecord.numberCentralDirectoryRecords} records"
    )

    return CentralDirectoryRegion(
        cursor=ByteCursor(buffer),
        start=directoryStart,
        size=directorySize,
        endRecord=endRecord,
        endRecordAt=endRecordAt,
        zip64Record=zip64Record,
    )


def _readZip64Record(source: ByteSource, buffer: bytes, chunkStart: int, index: int):
    """Follow the ZIP64 locator that precedes the end record, None when there is none."""
    locatorAt = chunkStart + index - ZIP64_LOCATOR_SIZE
    if locatorAt < 0:
        return None

    if index >= ZIP64_LOCATOR_SIZE:
        raw = buffer[index - ZIP64_LOCATOR_SIZE:index]
    else:
        raw = fetchRange(source, locatorAt, chunkStart + index - 1)

    cursor = ByteCursor(raw)
    if cursor.readUInt32() != SIGNATURE_ZIP64_LOCATOR:
        logger.debug('End record has saturated fields but no ZIP64 locator, using them as they are')
        return None

    locator = decodeZip64Locator(cursor)
    recordAt = locator.endOfCentralDirectoryOffset
    if recordAt + ZIP64_END_OF_CENTRAL_DIRECTORY_SIZE > locatorAt:
        logger.error(f"ZIP64 end of central directory offset {recordAt} is invalid")
        raise CentralDirectoryNotFoundError(f"ZIP64 end of central directory offset {recordAt} is invalid")

    cursor = ByteCursor(fetchRange(source, recordAt, recordAt + ZIP64_END_OF_CENTRAL_DIRECTORY_SIZE - 1))
    if cursor.readUInt32() != SIGNATURE_ZIP64_END_OF_CENTRAL_DIRECTORY:
        logger.error(f"No ZIP64 end of central directory record at {recordAt}")
        raise CentralDirectoryNotFoundError(f"No ZIP64 end of central directory record at {recordAt}")

    return decodeZip64EndOfCentralDirectory(cursor)
