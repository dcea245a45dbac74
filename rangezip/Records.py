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
ZIP record decoding.

Three record shapes are decoded from a ByteCursor, selected by their 4-byte
little-endian signature:

- Local file record: header, name, extra field and the (inflated) body
- Central directory record: per-entry metadata plus the entry's byte span
- End of central directory record: where the central directory lives

Any other signature decodes to an UnrecognizedRecord, which is how a sequential
read learns that the local records are over.
"""

import datetime
import struct
import zipfile
import zlib

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import ClassVar, Dict, Mapping, Optional, Tuple, Union

from rangezip.Cursor import ByteCursor, UINT32, UINT64
from rangezip.Errors import BodyUnavailableError, ZipFormatError
from rangezip.Kernel import getLogger
from rangezip.Settings import READ_CHUNK_SIZE

logger = getLogger(__name__)

# Signature constants, zipfile keeps them as bytes in its private names
SIGNATURE_LOCAL_FILE = struct.unpack('<I', zipfile.stringFileHeader)[0] # 0x04034b50
SIGNATURE_CENTRAL_DIRECTORY = struct.unpack('<I', zipfile.stringCentralDir)[0] # 0x02014b50
SIGNATURE_END_OF_CENTRAL_DIRECTORY = struct.unpack('<I', zipfile.stringEndArchive)[0] # 0x06054b50
SIGNATURE_ZIP64_END_OF_CENTRAL_DIRECTORY = 0x06064b50
SIGNATURE_ZIP64_LOCATOR = 0x07064b50
SIGNATURE_DATA_DESCRIPTOR = 0x08074b50

# Compression methods (from zipfile module)
STORE = zipfile.ZIP_STORED # 0
DEFLATE = zipfile.ZIP_DEFLATED # 8

# General purpose flags
FLAG_ENCRYPTED = 0x0001
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800

# Fixed record sizes, signature included
LOCAL_FILE_HEADER_SIZE = 30
CENTRAL_DIRECTORY_HEADER_SIZE = 46
END_OF_CENTRAL_DIRECTORY_SIZE = 22
ZIP64_LOCATOR_SIZE = 20
ZIP64_END_OF_CENTRAL_DIRECTORY_SIZE = 56
DATA_DESCRIPTOR_SIZE = 16
ZIP64_DATA_DESCRIPTOR_SIZE = 24

ZIP64_EXTRA_TAG = 0x0001
ZIP64_MARKER = 0xFFFFFFFF
ZIP64_COUNT_MARKER = 0xFFFF

# Layouts after the signature
LOCAL_FILE_LAYOUT = struct.Struct('<HHHHHIIIHH') # 26 bytes
CENTRAL_DIRECTORY_LAYOUT = struct.Struct('<HHHHHHIIIHHHHHII') # 42 bytes
END_OF_CENTRAL_DIRECTORY_LAYOUT = struct.Struct('<HHHHIIH') # 18 bytes
ZIP64_LOCATOR_LAYOUT = struct.Struct('<IQI') # 16 bytes
ZIP64_END_OF_CENTRAL_DIRECTORY_LAYOUT = struct.Struct('<QHHIIQQQQ') # 52 bytes
EXTRA_FIELD_HEADER = struct.Struct('<HH')


class RecordKind(Enum):
    """Tag of the decoded record union"""
    LOCAL_FILE = auto()
    CENTRAL_DIRECTORY = auto()
    END_OF_CENTRAL_DIRECTORY = auto()
    UNRECOGNIZED = auto()


@dataclass(frozen=True)
class BodyUnavailable:
    """Outcome stored instead of the content when a body could not be decoded"""
    reason: str


class EntryMixin:
    """Derived properties shared by local file and central directory records"""

    @property
    def isDirectory(self) -> bool:
        return self.fileName.endswith('/')

    @property
    def isEncrypted(self) -> bool:
        return bool(self.generalPurpose & FLAG_ENCRYPTED)

    @property
    def hasDataDescriptor(self) -> bool:
        return bool(self.generalPurpose & FLAG_DATA_DESCRIPTOR)

    @property
    def modifiedAt(self) -> Optional[datetime.datetime]:
        return dosToDatetime(self.lastModifiedDate, self.lastModifiedTime)


@dataclass
class LocalFileRecord(EntryMixin):
    version: int
    generalPurpose: int
    compressionMethod: int
    lastModifiedTime: int
    lastModifiedDate: int
    crc: int
    compressedSize: int
    uncompressedSize: int
    fileNameLength: int
    fileName: str
    extraLength: int
    extra: bytes
    body: Union[bytes, BodyUnavailable] = field(default=b'', repr=False)
    signature: int = SIGNATURE_LOCAL_FILE

    kind: ClassVar[RecordKind] = RecordKind.LOCAL_FILE

    @property
    def bodyAvailable(self) -> bool:
        return not isinstance(self.body, BodyUnavailable)

    def bytes(self):
        """Full decompressed content"""
        if isinstance(self.body, BodyUnavailable):
            raise BodyUnavailableError(
                f"Content of {self.fileName} is unavailable: {self.body.reason}",
                fileName=self.fileName,
                reason=self.body.reason
            )
        return self.body

    def text(self, encoding: str = 'utf-8', errors: str = 'strict') -> str:
        return self.bytes().decode(encoding, errors)


@dataclass
class CentralDirectoryRecord(EntryMixin):
    versionCreated: int
    versionNeeded: int
    generalPurpose: int
    compressionMethod: int
    lastModifiedTime: int
    lastModifiedDate: int
    crc: int
    compressedSize: int
    uncompressedSize: int
    fileNameLength: int
    extraLength: int
    fileCommentLength: int
    diskNumber: int
    internalAttributes: int
    externalAttributes: int
    firstByteAt: int
    lastByteAt: int
    fileName: str
    extra: bytes = field(repr=False)
    fileComment: str
    signature: int = SIGNATURE_CENTRAL_DIRECTORY

    kind: ClassVar[RecordKind] = RecordKind.CENTRAL_DIRECTORY


@dataclass
class EndOfCentralDirectoryRecord:
    numberOfDisks: int
    centralDirectoryStartDisk: int
    numberCentralDirectoryRecordsOnThisDisk: int
    numberCentralDirectoryRecords: int
    centralDirectorySize: int
    centralDirectoryOffset: int
    commentLength: int
    comment: str
    signature: int = SIGNATURE_END_OF_CENTRAL_DIRECTORY

    kind: ClassVar[RecordKind] = RecordKind.END_OF_CENTRAL_DIRECTORY

    @property
    def needsZip64(self) -> bool:
        """True when a field is saturated and the real value lives in the ZIP64 trailer"""
        return (
            self.centralDirectoryOffset == ZIP64_MARKER or self.centralDirectorySize == ZIP64_MARKER or
            self.numberCentralDirectoryRecords == ZIP64_COUNT_MARKER
        )


@dataclass(frozen=True)
class UnrecognizedRecord:
    """Anything that is not one of the three records; signature is None at end of data"""
    signature: Optional[int] = None

    kind: ClassVar[RecordKind] = RecordKind.UNRECOGNIZED


@dataclass
class Zip64Locator:
    diskNumber: int
    endOfCentralDirectoryOffset: int
    totalDisks: int


@dataclass
class Zip64EndOfCentralDirectoryRecord:
    recordSize: int
    versionCreated: int
    versionNeeded: int
    diskNumber: int
    centralDirectoryStartDisk: int
    numberCentralDirectoryRecordsOnThisDisk: int
    numberCentralDirectoryRecords: int
    centralDirectorySize: int
    centralDirectoryOffset: int


ZipRecord = Union[LocalFileRecord, CentralDirectoryRecord, EndOfCentralDirectoryRecord, UnrecognizedRecord]


def dosToDatetime(dosDate: int, dosTime: int) -> Optional[datetime.datetime]:
    """Convert MS-DOS date/time fields, None for values that are not a real date"""
    try:
        return datetime.datetime(
            ((dosDate >> 9) & 0x7F) + 1980,
            (dosDate >> 5) & 0x0F,
            dosDate & 0x1F,
            (dosTime >> 11) & 0x1F,
            (dosTime >> 5) & 0x3F,
            min((dosTime & 0x1F) * 2, 59),
        )
    except ValueError:
        return None


def decodeText(raw: bytes, flags: int = FLAG_UTF8) -> str:
    """Names and comments are UTF-8; legacy archives without the UTF-8 flag may use cp437."""
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError:
        if flags & FLAG_UTF8:
            return raw.decode('utf-8', 'replace')
        return raw.decode('cp437')


def parseExtraFields(extra: bytes) -> Dict[int, bytes]:
    """Split an extra field into {tag: payload}, first occurrence wins"""
    fields = {}
    offset = 0
    while offset + EXTRA_FIELD_HEADER.size <= len(extra):
        tag, size = EXTRA_FIELD_HEADER.unpack_from(extra, offset)
        offset += EXTRA_FIELD_HEADER.size
        fields.setdefault(tag, extra[offset:offset + size])
        offset += size
    return fields


def applyZip64Extra(extra: bytes, *values: int) -> Tuple[int, ...]:
    """
    Replace saturated 32-bit values with their 64-bit counterparts.

    The ZIP64 extra field stores 8-byte values only for the saturated fields, in the
    order uncompressed size, compressed size, local header offset. Callers pass the
    values in that order.
    """
    payload = parseExtraFields(extra).get(ZIP64_EXTRA_TAG)
    if payload is None:
        return values

    resolved = []
    offset = 0
    for value in values:
        if value == ZIP64_MARKER and offset + UINT64.size <= len(payload):
            value = UINT64.unpack_from(payload, offset)[0]
            offset += UINT64.size
        resolved.append(value)

    return tuple(resolved)


def hasZip64Extra(extra: bytes) -> bool:
    return ZIP64_EXTRA_TAG in parseExtraFields(extra)


def dataDescriptorSize(record) -> int:
    if not record.hasDataDescriptor:
        return 0
    return ZIP64_DATA_DESCRIPTOR_SIZE if hasZip64Extra(record.extra) else DATA_DESCRIPTOR_SIZE


def readSignature(cursor: ByteCursor) -> Optional[int]:
    """Next signature, or None when fewer than 4 bytes are left."""
    head = b''
    while len(head) < UINT32.size:
        chunk = cursor.read(UINT32.size - len(head))
        if not chunk:
            break
        head += chunk

    if len(head) < UINT32.size:
        if head:
            logger.debug(f"Ignoring {len(head)} trailing bytes at position {cursor.position}")
        return None

    return UINT32.unpack(head)[0]


def decodeNext(cursor: ByteCursor, directory: Mapping[str, CentralDirectoryRecord] = None) -> ZipRecord:
    """
    Decode whatever record comes next.

    Args:
        cursor: Cursor positioned at a signature
        directory: Optional central directory records by name; used for local
                   records whose sizes are deferred to a data descriptor

    Returns:
        One of the three records, or UnrecognizedRecord for any other signature
        (or end of data)
    """
    signature = readSignature(cursor)
    if signature is None:
        return UnrecognizedRecord()

    if signature == SIGNATURE_LOCAL_FILE:
        return decodeLocalFile(cursor, directory=directory)
    elif signature == SIGNATURE_CENTRAL_DIRECTORY:
        return decodeCentralDirectory(cursor)
    elif signature == SIGNATURE_END_OF_CENTRAL_DIRECTORY:
        return decodeEndOfCentralDirectory(cursor)

    logger.debug(f"Unrecognized signature 0x{signature:08x} at position {cursor.position - UINT32.size}")
    return UnrecognizedRecord(signature)


def decodeLocalFile(cursor: ByteCursor, directory: Mapping[str, CentralDirectoryRecord] = None) -> LocalFileRecord:
    """Decode a local file record whose signature was already consumed, body included."""
    (
        version, flags, method, modifiedTime, modifiedDate,
        crc, compressedSize, uncompressedSize, nameLength, extraLength
    ) = cursor.readStruct(LOCAL_FILE_LAYOUT)

    fileName = decodeText(cursor.readExact(nameLength), flags)
    extra = cursor.readExact(extraLength)
    uncompressedSize, compressedSize = applyZip64Extra(extra, uncompressedSize, compressedSize)

    record = LocalFileRecord(
        version=version,
        generalPurpose=flags,
        compressionMethod=method,
        lastModifiedTime=modifiedTime,
        lastModifiedDate=modifiedDate,
        crc=crc,
        compressedSize=compressedSize,
        uncompressedSize=uncompressedSize,
        fileNameLength=nameLength,
        fileName=fileName,
        extraLength=extraLength,
        extra=extra,
    )

    sizeKnown = not record.hasDataDescriptor or compressedSize != 0
    if not sizeKnown and directory and fileName in directory:
        # Sizes were deferred to the data descriptor, the central directory has them
        entry = directory[fileName]
        record.compressedSize = entry.compressedSize
        record.uncompressedSize = entry.uncompressedSize
        record.crc = entry.crc
        sizeKnown = True

    if sizeKnown:
        # The body window is always consumed so the next record starts where expected
        raw = cursor.readExact(record.compressedSize)
        record.body = inflateBody(record, raw)
    elif method == DEFLATE and not record.isEncrypted:
        record.body, record.compressedSize = inflateUntilEnd(cursor, fileName)
    elif _peekSignature(cursor) == SIGNATURE_DATA_DESCRIPTOR:
        record.body = b'' # Empty entry, the descriptor follows the header directly
    else:
        logger.error(f"Cannot delimit {fileName}: method {method} with sizes deferred to a data descriptor")
        raise ZipFormatError(f"Entry {fileName} has no recorded size and cannot be streamed")

    if record.hasDataDescriptor:
        readDataDescriptor(cursor, record, zip64=hasZip64Extra(extra))

    if record.bodyAvailable and zlib.crc32(record.body) != record.crc:
        record.body = BodyUnavailable(f"CRC-32 mismatch, expected 0x{record.crc:08x}")

    if not record.bodyAvailable:
        logger.warning(f"Body of {fileName} is unavailable: {record.body.reason}")

    return record


def _peekSignature(cursor: ByteCursor) -> Optional[int]:
    data = cursor.read(UINT32.size)
    cursor.unread(data)
    if len(data) < UINT32.size:
        return None
    return UINT32.unpack(data)[0]


def inflateBody(record: LocalFileRecord, raw: bytes) -> Union[bytes, BodyUnavailable]:
    """Turn the compressed window into content; failures become BodyUnavailable."""
    if record.isEncrypted:
        return BodyUnavailable("entry is encrypted")

    if record.compressionMethod == STORE:
        return raw

    if record.compressionMethod != DEFLATE:
        return BodyUnavailable(f"unsupported compression method {record.compressionMethod}")

    try:
        decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
        body = decompressor.decompress(raw) + decompressor.flush()
    except zlib.error as e:
        return BodyUnavailable(f"inflate failed: {e}")

    if not decompressor.eof:
        return BodyUnavailable("deflate stream is truncated")

    return body


def inflateUntilEnd(cursor: ByteCursor, fileName: str) -> Tuple[bytes, int]:
    """
    Inflate a deflate stream of unknown compressed size.

    Reads until the final deflate block, then pushes back whatever input followed it.

    Returns:
        Tuple of (content, compressed size)
    """
    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    parts = []
    consumed = 0

    try:
        while not decompressor.eof:
            chunk = cursor.read(READ_CHUNK_SIZE)
            if not chunk:
                logger.error(f"Deflate stream of {fileName} ended before its final block")
                raise ZipFormatError(f"Deflate stream of {fileName} is truncated")
            consumed += len(chunk)
            parts.append(decompressor.decompress(chunk))
    except zlib.error as e:
        # Without a valid stream the end of this body cannot be found
        logger.error(f"Cannot inflate {fileName}: {e}")
        raise ZipFormatError(f"Cannot inflate {fileName}: {e}") from e

    unused = decompressor.unused_data
    cursor.unread(unused)

    return b''.join(parts), consumed - len(unused)


def readDataDescriptor(cursor: ByteCursor, record: LocalFileRecord, zip64: bool = False):
    """Consume the data descriptor after a body and adopt its CRC and sizes."""
    first = cursor.readUInt32()
    crc = cursor.readUInt32() if first == SIGNATURE_DATA_DESCRIPTOR else first

    if zip64:
        compressedSize, uncompressedSize = cursor.readUInt64(), cursor.readUInt64()
    else:
        compressedSize, uncompressedSize = cursor.readUInt32(), cursor.readUInt32()

    record.crc = crc
    record.compressedSize = compressedSize
    record.uncompressedSize = uncompressedSize


def decodeCentralDirectory(cursor: ByteCursor) -> CentralDirectoryRecord:
    """Decode a central directory record whose signature was already consumed."""
    (
        versionCreated, versionNeeded, flags, method, modifiedTime, modifiedDate,
        crc, compressedSize, uncompressedSize, nameLength, extraLength, commentLength,
        diskNumber, internalAttributes, externalAttributes, firstByteAt
    ) = cursor.readStruct(CENTRAL_DIRECTORY_LAYOUT)

    fileName = decodeText(cursor.readExact(nameLength), flags)
    extra = cursor.readExact(extraLength)
    fileComment = decodeText(cursor.readExact(commentLength), flags)

    uncompressedSize, compressedSize, firstByteAt = applyZip64Extra(
        extra, uncompressedSize, compressedSize, firstByteAt
    )

    record = CentralDirectoryRecord(
        versionCreated=versionCreated,
        versionNeeded=versionNeeded,
        generalPurpose=flags,
        compressionMethod=method,
        lastModifiedTime=modifiedTime,
        lastModifiedDate=modifiedDate,
        crc=crc,
        compressedSize=compressedSize,
        uncompressedSize=uncompressedSize,
        fileNameLength=nameLength,
        extraLength=extraLength,
        fileCommentLength=commentLength,
        diskNumber=diskNumber,
        internalAttributes=internalAttributes,
        externalAttributes=externalAttributes,
        firstByteAt=firstByteAt,
        lastByteAt=0,
        fileName=fileName,
        extra=extra,
        fileComment=fileComment,
    )

    # Assumes the local record repeats these name/extra lengths, true for conformant archives
    record.lastByteAt = (
        firstByteAt + LOCAL_FILE_HEADER_SIZE + nameLength + extraLength + commentLength + compressedSize +
        dataDescriptorSize(record) - 1
    )

    return record


def decodeEndOfCentralDirectory(cursor: ByteCursor) -> EndOfCentralDirectoryRecord:
    """Decode an end of central directory record whose signature was already consumed."""
    (
        numberOfDisks, startDisk, recordsOnThisDisk, records,
        centralDirectorySize, centralDirectoryOffset, commentLength
    ) = cursor.readStruct(END_OF_CENTRAL_DIRECTORY_LAYOUT)

    comment = decodeText(cursor.readExact(commentLength), 0)

    return EndOfCentralDirectoryRecord(
        numberOfDisks=numberOfDisks,
        centralDirectoryStartDisk=startDisk,
        numberCentralDirectoryRecordsOnThisDisk=recordsOnThisDisk,
        numberCentralDirectoryRecords=records,
        centralDirectorySize=centralDirectorySize,
        centralDirectoryOffset=centralDirectoryOffset,
        commentLength=commentLength,
        comment=comment,
    )


def decodeZip64Locator(cursor: ByteCursor) -> Zip64Locator:
    """Decode a ZIP64 end of central directory locator whose signature was already consumed."""
    diskNumber, offset, totalDisks = cursor.readStruct(ZIP64_LOCATOR_LAYOUT)
    return Zip64Locator(diskNumber=diskNumber, endOfCentralDirectoryOffset=offset, totalDisks=totalDisks)


def decodeZip64EndOfCentralDirectory(cursor: ByteCursor) -> Zip64EndOfCentralDirectoryRecord:
    """Decode the fixed part of a ZIP64 end of central directory record (signature consumed)."""
    return Zip64EndOfCentralDirectoryRecord(*cursor.readStruct(ZIP64_END_OF_CENTRAL_DIRECTORY_LAYOUT))
