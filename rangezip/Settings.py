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

import bitmath

from rangezip.Utils import getEnv

# Backward scan step used to find the end of central directory record (50 KiB).
# The archive comment is at most 64 KiB, so one or two steps cover nearly every archive.
SCAN_CHUNK_SIZE = getEnv('RANGEZIP_SCAN_CHUNK_SIZE', int(bitmath.KiB(50).bytes))

# Simultaneous range requests allowed per ConcurrencyGate
FETCH_CONCURRENCY = getEnv('RANGEZIP_FETCH_CONCURRENCY', 10)

# Negative: a partition is closed slightly before entries become strictly contiguous
PARTITION_MAX_GAP = getEnv('RANGEZIP_PARTITION_MAX_GAP', -int(bitmath.KiB(10).bytes))

# Fetched-but-unconsumed partitions held before the producer blocks
MAX_PENDING_PARTITIONS = getEnv('RANGEZIP_MAX_PENDING_PARTITIONS', 32)

# Read size for draining streams and streaming inflation (64 KiB)
READ_CHUNK_SIZE = getEnv('RANGEZIP_READ_CHUNK_SIZE', int(bitmath.KiB(64).bytes))

# Seconds, applied to connect and read of every HTTP request
HTTP_TIMEOUT = getEnv('RANGEZIP_HTTP_TIMEOUT', 30.0)

USER_AGENT = 'RangeZip'

# Extra bytes requested past a partition's computed end. Local extra fields may be
# longer than their central directory copies (Info-ZIP timestamps for one).
RANGE_END_PADDING = getEnv('RANGEZIP_RANGE_END_PADDING', int(bitmath.KiB(1).bytes))
