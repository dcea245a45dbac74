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

from typing import Iterator, Optional

from rangezip.Errors import UnexpectedSignatureError
from rangezip.Kernel import getLogger
from rangezip.Locator import CentralDirectoryRegion, streamCentralDirectory
from rangezip.Records import (
    SIGNATURE_CENTRAL_DIRECTORY, SIGNATURE_END_OF_CENTRAL_DIRECTORY, SIGNATURE_ZIP64_END_OF_CENTRAL_DIRECTORY,
    CentralDirectoryRecord, decodeCentralDirectory, readSignature
)
from rangezip.Settings import SCAN_CHUNK_SIZE
from rangezip.Sources import ByteSource

logger = getLogger(__name__)

# Signatures that legitimately follow the last central directory record
DIRECTORY_TERMINATORS = (SIGNATURE_END_OF_CENTRAL_DIRECTORY, SIGNATURE_ZIP64_END_OF_CENTRAL_DIRECTORY)


class CentralDirectoryStream:
    """
    Lazily decoded central directory records, in on-disk order.

    The central directory is located on the first pull. Each pull decodes exactly one
    record; there is no replay or random access.
    """

    def __init__(self, source: ByteSource, chunkSize: int = SCAN_CHUNK_SIZE):
        self.source = source
        self.chunkSize = chunkSize
        self.region: Optional[CentralDirectoryRegion] = None
        self._records = self._iterRecords()

    def __iter__(self):
        return self

    def __next__(self) -> CentralDirectoryRecord:
        return next(self._records)

    def close(self):
        self._records.close()

    def _iterRecords(self) -> Iterator[CentralDirectoryRecord]:
        self.region = streamCentralDirectory(self.source, self.chunkSize)
        cursor = self.region.cursor
        count = 0

        try:
            while True:
                signature = readSignature(cursor)
                if signature is None or signature in DIRECTORY_TERMINATORS:
                    break

                if signature != SIGNATURE_CENTRAL_DIRECTORY:
                    logger.error(
                        f"Expected a central directory record at {self.region.start + cursor.position - 4}, "
                        f"found signature 0x{signature:08x}"
                    )
                    raise UnexpectedSignatureError(
                        f"Unexpected signature 0x{signature:08x} in the central directory", signature=signature
                    )

                count += 1
                yield decodeCentralDirectory(cursor)
        finally:
            cursor.close()

        if count != self.region.recordCount:
            logger.warning(f"End record declares {self.region.recordCount} entries, central directory has {count}")


def iterCentralDirectory(source: ByteSource, chunkSize: int = SCAN_CHUNK_SIZE) -> CentralDirectoryStream:
    return CentralDirectoryStream(source, chunkSize)
