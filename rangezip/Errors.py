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


class ZipError(RuntimeError):
    """Base exception for everything raised by rangezip"""
    pass


# Structural errors, fatal to the whole locate/decode operation


class TruncatedDataError(ZipError):
    """Raised when the data ends before a required field could be read"""

    def __init__(self, message: str, expected: int = None, received: int = None):
        super().__init__(message)
        self.expected = expected
        self.received = received


class CentralDirectoryNotFoundError(ZipError):
    """Raised when no end of central directory record can be located"""
    pass


class ZipFormatError(ZipError):
    """Raised for records that are well delimited but cannot be processed"""
    pass


class UnexpectedSignatureError(ZipError):
    """Raised when a specific record was required and another signature was found"""

    def __init__(self, message: str, signature: int = None):
        super().__init__(message)
        self.signature = signature


# Transport errors


class RangeRequestError(ZipError):
    """Raised when a byte range cannot be fetched from a ByteSource"""

    def __init__(self, message: str, start: int = None, end: int = None, statusCode: int = None):
        super().__init__(message)
        self.start = start
        self.end = end
        self.statusCode = statusCode


class FetchCancelledError(ZipError):
    """Raised inside fetch workers whose extraction was closed before they ran"""
    pass


# Body errors


class BodyUnavailableError(ZipError):
    """Raised when the content of an entry whose body could not be decoded is accessed"""

    def __init__(self, message: str, fileName: str = None, reason: str = None):
        super().__init__(message)
        self.fileName = fileName
        self.reason = reason
