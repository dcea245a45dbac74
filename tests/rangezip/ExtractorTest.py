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


import io
import os
import struct
import tempfile
import threading
import unittest
import warnings
import zipfile

from rangezip.Errors import CentralDirectoryNotFoundError, RangeRequestError, ZipFormatError
from rangezip.Extractor import SelectiveExtractor, defaultPredicate, iterZipFiles, readEntireZip
from rangezip.Fetcher import ConcurrencyGate
from rangezip.Kernel import ZipEvent
from rangezip.Sources import MemoryByteSource

from tests.ZipTestBase import RecordingByteSource, ZipTestBase, buildZip, readWithZipfile

SCENARIO = [('a.txt', b'0123456789'), ('dir/', b''), ('dir/b.txt', b'abcdefghijklmnopqrst')]


def mixedArchive(seekable=True):
    entries = [(f'docs/page{i:02d}.html', (f'<p>{i}</p>' * (i * 37 + 1)).encode()) for i in range(20)]
    entries.insert(5, ('docs/', b''))
    entries.append(('docs/empty.txt', b''))
    entries.append(('blob.bin', os.urandom(70000)))
    return buildZip(entries, comment=b'mixed archive', seekable=seekable), entries


class SelectiveExtractionTest(ZipTestBase):

    def testThreeFileScenario(self):
        """a.txt (10 B), dir/ (0 B) and dir/b.txt (20 B): the directory entry is skipped."""
        records = list(iterZipFiles(buildZip(SCENARIO)))

        self.assertEqual([r.fileName for r in records], ['a.txt', 'dir/b.txt'])
        self.assertEqual(records[0].bytes(), b'0123456789')
        self.assertEqual(records[1].text(), 'abcdefghijklmnopqrst')

    def testMatchesSequentialDecoding(self):
        """Selective and sequential decoding agree on names and contents under the same predicate."""
        data, _ = mixedArchive()

        selective = {r.fileName: r.bytes() for r in iterZipFiles(data)}
        sequential = {r.fileName: r.bytes() for r in readEntireZip(io.BytesIO(data), defaultPredicate)}

        self.assertEqual(set(selective), set(sequential))
        self.assertEqual(selective, sequential)

        expected = {name: content for name, content in readWithZipfile(data).items() if name != 'docs/'}
        self.assertEqual(selective, expected)

    def testCentralDirectoryOrder(self):
        data, entries = mixedArchive()
        names = [r.fileName for r in iterZipFiles(data, gate=ConcurrencyGate(4))]
        self.assertEqual(names, [name for name, _ in entries if name != 'docs/'])

    def testDirectoryPredicate(self):
        """Zero-size directories are excluded, directories with content are kept."""
        zeroDirectory = zipfile.ZipInfo('empty/')
        fullDirectory = zipfile.ZipInfo('odd/')
        data = buildZip([(zeroDirectory, b''), (fullDirectory, b'payload'), ('empty.txt', b'')])

        names = [r.fileName for r in iterZipFiles(data)]
        self.assertEqual(names, ['odd/', 'empty.txt'])

    def testCustomPredicate(self):
        data, _ = mixedArchive()
        source = RecordingByteSource(data)
        records = list(iterZipFiles(source, predicate=lambda r: r.fileName.endswith('07.html')))

        self.assertEqual([r.fileName for r in records], ['docs/page07.html'])
        # Trailer scan plus one range request
        self.assertEqual(len(source.requests), 2)

    def testDataDescriptors(self):
        data, _ = mixedArchive(seekable=False)
        expected = {name: content for name, content in readWithZipfile(data).items() if name != 'docs/'}

        self.assertEqual({r.fileName: r.bytes() for r in iterZipFiles(data)}, expected)

    def testStoredDataDescriptorsUseDirectorySizes(self):
        entries = [('a.bin', b'a' * 100), ('b.bin', b'b' * 200)]
        data = buildZip(entries, compression=zipfile.ZIP_STORED, seekable=False)

        self.assertEqual({r.fileName: r.bytes() for r in iterZipFiles(data)}, dict(entries))
        with self.assertRaises(ZipFormatError):
            list(readEntireZip(data))

    def testGapSkipsUnrequestedEntries(self):
        """An unrequested stored entry with deferred sizes between two requested ones is passed over."""
        entries = [('a.bin', b'a' * 100), ('b.bin', b'b' * 200), ('c.bin', b'c' * 300)]
        data = buildZip(entries, compression=zipfile.ZIP_STORED, seekable=False)
        source = RecordingByteSource(data)

        records = list(iterZipFiles(source, predicate=lambda r: r.fileName != 'b.bin', maxGap=4096))

        self.assertEqual([(r.fileName, r.bytes()) for r in records], [entries[0], entries[2]])
        self.assertEqual(len(source.requests), 1)

    def testDuplicateNamesInOnePartition(self):
        with warnings.catch_warnings():
            warnings.simplefilter('ignore') # zipfile warns about the duplicate name
            data = buildZip([('x.txt', b'first'), ('x.txt', b'second')])

        selective = [r.bytes() for r in iterZipFiles(data, maxGap=4096)]
        sequential = [r.bytes() for r in readEntireZip(data)]

        self.assertEqual(selective, [b'first', b'second'])
        self.assertEqual(selective, sequential)

    def testLocalNameDiffersFromCentralName(self):
        data = bytearray(buildZip(SCENARIO))
        with zipfile.ZipFile(io.BytesIO(bytes(data))) as archive:
            offset = archive.getinfo('dir/b.txt').header_offset
        data[offset + 30:offset + 39] = b'DIR/B.TXT'

        records = list(iterZipFiles(bytes(data), maxGap=4096))

        self.assertEqual([r.fileName for r in records], ['a.txt', 'DIR/B.TXT'])
        self.assertEqual(records[1].bytes(), b'abcdefghijklmnopqrst')

    def testRecordRunningPastPartitionEndsIt(self):
        """A local record reaching beyond the fetched range ends its partition, later ones still come."""
        entries = [('a.txt', b'alpha'), ('b.txt', b'beta'), ('c.txt', b'gamma')]
        data = bytearray(buildZip(entries))
        with zipfile.ZipFile(io.BytesIO(bytes(data))) as archive:
            offset = archive.getinfo('b.txt').header_offset
        struct.pack_into('<H', data, offset + 28, 0xFFFF)

        records = list(iterZipFiles(bytes(data)))

        self.assertEqual([r.fileName for r in records], ['a.txt', 'c.txt'])


    def testConcurrencyCap(self):
        data, _ = mixedArchive()
        source = RecordingByteSource(data, delay=0.02)
        gate = ConcurrencyGate(2)

        self.assertEqual(len(list(iterZipFiles(source, gate=gate))), 22)
        self.assertLessEqual(source.peakActive, 2)

    def testTransportFailureReachesConsumer(self):
        data = buildZip(SCENARIO)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            failingOffset = archive.getinfo('dir/b.txt').header_offset
        source = RecordingByteSource(data, failOn=lambda start, end: start == failingOffset)

        extractor = iterZipFiles(source)
        self.assertEqual(next(extractor).fileName, 'a.txt')
        with self.assertRaises(RangeRequestError):
            next(extractor)

        # Failed iteration released everything
        self.assertRaises(StopIteration, next, extractor)

    def testListingFailureReachesConsumer(self):
        with self.assertRaises(CentralDirectoryNotFoundError):
            list(iterZipFiles(b'\x00' * 1000))

    def testCloseMidway(self):
        data, _ = mixedArchive()
        source = RecordingByteSource(data)

        with iterZipFiles(source, maxPending=2) as extractor:
            self.assertEqual(next(extractor).fileName, 'docs/page00.html')

        self.assertFalse(any(t.name == 'rangezip-producer' for t in threading.enumerate()))
        self.assertTrue(all(stream.closed for stream in source.opened))

    def testCloseBeforeIterating(self):
        source = RecordingByteSource(buildZip(SCENARIO))
        extractor = SelectiveExtractor(source)
        extractor.close()

        self.assertEqual(list(extractor), [])
        self.assertEqual(source.requests, [])

    def testOwnsBuiltSource(self):
        source = RecordingByteSource(buildZip(SCENARIO))
        list(iterZipFiles(source))
        self.assertFalse(source.closed)

        with tempfile.TemporaryDirectory() as directory:
            path = os.path.join(directory, 'scenario.zip')
            with open(path, 'wb') as f:
                f.write(buildZip(SCENARIO))

            extractor = iterZipFiles(path)
            self.assertTrue(extractor.ownsSource)
            self.assertEqual([r.fileName for r in extractor], ['a.txt', 'dir/b.txt'])

    def testExtractEvent(self):
        seen = []

        def observer(record, **kwargs):
            seen.append(record.fileName)

        ZipEvent.entryExtract.subscribe(observer)
        list(iterZipFiles(MemoryByteSource(buildZip(SCENARIO))))
        self.assertEqual(seen, ['a.txt', 'dir/b.txt'])


class ReadEntireZipTest(ZipTestBase):

    def testAllLocalRecords(self):
        records = list(readEntireZip(buildZip(SCENARIO)))
        self.assertEqual([r.fileName for r in records], ['a.txt', 'dir/', 'dir/b.txt'])

    def testDefaultPredicate(self):
        records = list(readEntireZip(io.BytesIO(buildZip(SCENARIO)), predicate=defaultPredicate))
        self.assertEqual([r.fileName for r in records], ['a.txt', 'dir/b.txt'])

    def testChunkedStream(self):
        data = buildZip(SCENARIO)
        chunks = (data[i:i + 7] for i in range(0, len(data), 7))
        self.assertEqual([r.bytes() for r in readEntireZip(chunks)], [b'0123456789', b'', b'abcdefghijklmnopqrst'])

    def testStopsAtUnrecognizedSignature(self):
        data = buildZip(SCENARIO)
        firstEntryEnd = data.find(b'PK\x03\x04', 1)
        records = list(readEntireZip(data[:firstEntryEnd] + b'junk' + data[firstEntryEnd:]))
        self.assertEqual([r.fileName for r in records], ['a.txt'])


if __name__ == '__main__':
    unittest.main()
