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
import time
import unittest

from types import SimpleNamespace

from rangezip.Errors import FetchCancelledError, RangeRequestError
from rangezip.Fetcher import BoundedFetcher, ConcurrencyGate
from rangezip.Kernel import ZipEvent
from rangezip.Partitioner import Partition
from rangezip.Utils import readAll

from tests.ZipTestBase import RecordingByteSource, ZipTestBase

DATA = bytes(range(256)) * 40 # 10240 bytes


def partition(start, end, name=None):
    return Partition([SimpleNamespace(fileName=name or f'{start}-{end}', firstByteAt=start, lastByteAt=end)])


class ConcurrencyGateTest(unittest.TestCase):

    def testCapacity(self):
        gate = ConcurrencyGate(2)
        self.assertTrue(gate.acquire())
        self.assertTrue(gate.acquire())
        self.assertFalse(gate.acquire(timeout=0.01))

        gate.release()
        with gate:
            self.assertEqual(gate.inUse, 2)
        self.assertEqual(gate.inUse, 1)
        self.assertEqual(gate.peakInUse, 2)

    def testInvalidCapacity(self):
        self.assertRaises(ValueError, ConcurrencyGate, 0)


class BoundedFetcherTest(ZipTestBase):

    def testTicketsInSubmissionOrder(self):
        """Later partitions finishing first do not reorder tickets."""
        source = RecordingByteSource(DATA, delay=0.01)
        ranges = [(9000, 9999), (0, 99), (5000, 5099), (100, 199)]

        with BoundedFetcher(source, gate=ConcurrencyGate(4), endPadding=0) as fetcher:
            for start, end in ranges:
                fetcher.submit(partition(start, end))
            fetcher.finish()

            results = [(ticket.byteRange, readAll(ticket.result())) for ticket in fetcher.tickets()]

        self.assertEqual([byteRange for byteRange, _ in results], ranges)
        for (start, end), data in results:
            self.assertEqual(data, DATA[start:end + 1])

    def testEmptyPartitionIsIgnored(self):
        source = RecordingByteSource(DATA)
        with BoundedFetcher(source) as fetcher:
            self.assertIsNone(fetcher.submit(Partition()))
            fetcher.finish()
            self.assertEqual(list(fetcher.tickets()), [])
        self.assertEqual(source.requests, [])

    def testRangeEndIsPaddedAndClamped(self):
        source = RecordingByteSource(DATA)
        with BoundedFetcher(source, endPadding=50) as fetcher:
            fetcher.submit(partition(0, 99))
            fetcher.submit(partition(10200, 10239))
            fetcher.finish()
            for ticket in fetcher.tickets():
                readAll(ticket.result())

        self.assertEqual(sorted(source.requests), [(0, 149), (10200, 10239)])

    def testConcurrencyCap(self):
        """With capacity N and more than N partitions, at most N requests are issued at once."""
        source = RecordingByteSource(DATA, delay=0.05)
        gate = ConcurrencyGate(3)

        with BoundedFetcher(source, gate=gate, endPadding=0) as fetcher:
            for i in range(10):
                fetcher.submit(partition(i * 1000, i * 1000 + 99))
            fetcher.finish()
            tickets = list(fetcher.tickets())
            for ticket in tickets:
                readAll(ticket.result())

        self.assertEqual(len(source.requests), 10)
        self.assertLessEqual(source.peakActive, 3)
        self.assertLessEqual(gate.peakInUse, 3)
        self.assertEqual(gate.inUse, 0)

    def testSharedGate(self):
        source = RecordingByteSource(DATA, delay=0.05)
        gate = ConcurrencyGate(2)
        fetchers = [BoundedFetcher(source, gate=gate, endPadding=0) for _ in range(3)]

        for fetcher in fetchers:
            for i in range(3):
                fetcher.submit(partition(i * 100, i * 100 + 9))
            fetcher.finish()

        for fetcher in fetchers:
            for ticket in fetcher.tickets():
                readAll(ticket.result())
            fetcher.close()

        self.assertLessEqual(source.peakActive, 2)

    def testFailureSurfacesAtItsTicket(self):
        source = RecordingByteSource(DATA, failOn=lambda start, end: start == 5000)

        with BoundedFetcher(source, endPadding=0) as fetcher:
            fetcher.submit(partition(0, 99))
            fetcher.submit(partition(5000, 5099))
            fetcher.finish()

            tickets = fetcher.tickets()
            self.assertEqual(readAll(next(tickets).result()), DATA[:100])
            with self.assertRaises(RangeRequestError) as context:
                next(tickets).result()
            self.assertEqual(context.exception.statusCode, 503)

    def testUnexpectedErrorsAreWrapped(self):
        source = RecordingByteSource(DATA)
        with BoundedFetcher(source, endPadding=0) as fetcher:
            fetcher.submit(partition(20000, 20099))
            fetcher.finish()
            with self.assertRaises(RangeRequestError) as context:
                next(fetcher.tickets()).result()
            self.assertIsInstance(context.exception.__cause__, ValueError)

    def testAbortRaisesInConsumer(self):
        with BoundedFetcher(RecordingByteSource(DATA)) as fetcher:
            fetcher.submit(partition(0, 9))
            fetcher.abort(KeyError('listing failed'))

            tickets = fetcher.tickets()
            next(tickets)
            self.assertRaises(KeyError, next, tickets)

    def testBackPressure(self):
        """The producer blocks once maxPending tickets wait, cancel() releases it."""
        fetcher = BoundedFetcher(RecordingByteSource(DATA), maxPending=2)
        submitted = []

        def produce():
            try:
                for i in range(5):
                    fetcher.submit(partition(i, i))
                    submitted.append(i)
            except FetchCancelledError:
                pass

        producer = threading.Thread(target=produce)
        producer.start()
        time.sleep(0.2)
        self.assertEqual(len(submitted), 2)

        fetcher.cancel()
        producer.join(timeout=5)
        self.assertFalse(producer.is_alive())
        fetcher.close()
        self.assertTrue(fetcher.cancelled)

    def testSubmitAfterCancel(self):
        fetcher = BoundedFetcher(RecordingByteSource(DATA))
        fetcher.close()
        self.assertRaises(FetchCancelledError, fetcher.submit, partition(0, 9))

    def testDiscardClosesCompletedStream(self):
        source = RecordingByteSource(DATA)
        with BoundedFetcher(source) as fetcher:
            ticket = fetcher.submit(partition(0, 9))
            ticket.future.result()
            ticket.discard()

        self.assertTrue(source.opened[0].closed)

    def testFetchEvent(self):
        seen = []

        def observer(**kwargs):
            seen.append((kwargs['start'], kwargs['end']))

        ZipEvent.partitionFetch.subscribe(observer)
        with BoundedFetcher(RecordingByteSource(DATA), endPadding=0) as fetcher:
            fetcher.submit(partition(10, 19))
            fetcher.finish()
            for ticket in fetcher.tickets():
                readAll(ticket.result())

        self.assertEqual(seen, [(10, 19)])


if __name__ == '__main__':
    unittest.main()
