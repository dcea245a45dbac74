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


"""Streaming and byte-range ZIP extraction"""

from rangezip.Errors import (
    BodyUnavailableError, CentralDirectoryNotFoundError, FetchCancelledError, RangeRequestError, TruncatedDataError,
    UnexpectedSignatureError, ZipError, ZipFormatError
)
from rangezip.Kernel import PUBLIC_VERSION, EventTiming, ZipEvent
from rangezip.Records import (
    BodyUnavailable, CentralDirectoryRecord, EndOfCentralDirectoryRecord, LocalFileRecord, RecordKind,
    UnrecognizedRecord
)
from rangezip.Sources import ByteSource, FileByteSource, HttpByteSource, MemoryByteSource
from rangezip.Locator import streamCentralDirectory
from rangezip.CentralDirectory import iterCentralDirectory
from rangezip.Partitioner import Partition, partitionNearbyEntries
from rangezip.Fetcher import BoundedFetcher, ConcurrencyGate, FetchTicket
from rangezip.Extractor import SelectiveExtractor, defaultPredicate, iterZipFiles, readEntireZip

__version__ = PUBLIC_VERSION
