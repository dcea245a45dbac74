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

from typing import Iterable, Iterator, List, Tuple

from rangezip.Kernel import getLogger
from rangezip.Records import CentralDirectoryRecord
from rangezip.Settings import PARTITION_MAX_GAP

logger = getLogger(__name__)


class Partition:
    """
    Central directory records fetched together with one range request.

    The byte range runs from the first record's local header to the last record's
    last byte.
    """

    def __init__(self, records: List[CentralDirectoryRecord] = None):
        self.records = list(records or [])

    def append(self, record: CentralDirectoryRecord):
        self.records.append(record)

    @property
    def byteRange(self) -> Tuple[int, int]:
        if not self.records:
            raise ValueError("An empty partition has no byte range")
        return self.records[0].firstByteAt, self.records[-1].lastByteAt

    @property
    def fileNames(self) -> List[str]:
        return [record.fileName for record in self.records]

    def __len__(self):
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def __repr__(self):
        if not self.records:
            return 'Partition([])'
        start, end = self.byteRange
        return f'Partition({len(self.records)} records, bytes={start}-{end})'


def partitionNearbyEntries(records: Iterable[CentralDirectoryRecord], maxGap: int = PARTITION_MAX_GAP) -> Iterator[Partition]:
    """
    Group records whose byte spans are close enough to be fetched as one range.

    A record starts a new partition when it begins more than maxGap bytes after the
    previous record ended. With the default negative gap, entries that merely follow
    each other are split as well; only overlapping spans share a partition.

    The first partition emitted may be empty, and so may the last one when there were
    no records at all. Consumers must ignore empty partitions.

    Records are expected in non-decreasing firstByteAt order. A record that goes
    backwards starts a new partition so every partition range still covers its records.
    """
    lastFileEndsAt = 0
    lastFileStartsAt = 0
    current = Partition()

    for record in records:
        if record.firstByteAt < lastFileStartsAt:
            logger.warning(
                f"{record.fileName} starts at {record.firstByteAt}, before the previous entry at {lastFileStartsAt}"
            )
            yield current
            current = Partition()
        elif record.firstByteAt > lastFileEndsAt + maxGap:
            # Byte distance too large, flush and start a new partition
            yield current
            current = Partition()

        current.append(record)
        lastFileStartsAt = record.firstByteAt
        lastFileEndsAt = record.lastByteAt

    yield current
