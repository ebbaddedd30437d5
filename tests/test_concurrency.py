"""
MiniDoc Concurrency Tests
=========================
Threaded tests for the per-collection readers/writer lock and for
executor operations running side by side.

Tests prove:
  - Concurrent readers allowed
  - Writer blocks reader, reader blocks writer
  - Writer preference (late readers queue behind a waiting writer)
  - Re-entrant writes and nested reads inside a write
  - Read → write upgrade refused
  - Lock timeouts surface through the executor
  - Concurrent inserts and updates are never lost
"""

import os
import sys
import threading
import time
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cli.sample_data import SAMPLE_BOOKS
from concurrency.rw_lock import ReadWriteLock, LockTimeoutError, LockUpgradeError
from execution.context import EngineConfig
from execution.executor import Executor
from storage.collection import Collection


# ═══════════════════════════════════════════════════════════════════════════
# 1. ReadWriteLock
# ═══════════════════════════════════════════════════════════════════════════

class TestReadWriteLock(unittest.TestCase):
    """Compatibility between readers and writers."""

    def setUp(self):
        self.lock = ReadWriteLock(timeout=2.0)

    def test_concurrent_readers(self):
        """Readers hold the lock at the same time."""
        barrier = threading.Barrier(5, timeout=2.0)
        results = []

        def reader():
            with self.lock.read_locked():
                barrier.wait()
                results.append(True)

        threads = [threading.Thread(target=reader) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=3.0)

        self.assertEqual(len(results), 5)
        self.assertEqual(self.lock.reader_count, 0)

    def test_writer_blocks_reader(self):
        """Reader waits while a writer holds the lock."""
        self.lock.acquire_write()
        started = threading.Event()
        result = {}

        def reader():
            started.set()
            with self.lock.read_locked(timeout=2.0):
                result['r'] = True

        t = threading.Thread(target=reader)
        t.start()
        started.wait(timeout=1.0)
        time.sleep(0.1)

        # Reader should be waiting
        self.assertNotIn('r', result)

        self.lock.release_write()
        t.join(timeout=3.0)
        self.assertTrue(result.get('r'))

    def test_reader_blocks_writer(self):
        """Writer times out while a reader holds the lock."""
        self.lock.acquire_read()
        result = {}

        def writer():
            try:
                self.lock.acquire_write(timeout=0.2)
                result['r'] = "granted"
                self.lock.release_write()
            except LockTimeoutError:
                result['r'] = "timeout"

        t = threading.Thread(target=writer)
        t.start()
        t.join(timeout=2.0)
        self.lock.release_read()
        self.assertEqual(result.get('r'), "timeout")

    def test_upgrade_refused(self):
        with self.lock.read_locked():
            with self.assertRaises(LockUpgradeError):
                self.lock.acquire_write()
        self.assertEqual(self.lock.reader_count, 0)
        self.assertFalse(self.lock.write_held)

    def test_write_is_reentrant(self):
        with self.lock.write_locked():
            with self.lock.write_locked():
                self.assertTrue(self.lock.write_held)
            self.assertTrue(self.lock.write_held)
            with self.lock.read_locked():
                self.assertEqual(self.lock.reader_count, 1)
        self.assertFalse(self.lock.write_held)
        self.assertEqual(self.lock.reader_count, 0)

    def test_unbalanced_release(self):
        with self.assertRaises(RuntimeError):
            self.lock.release_read()
        with self.assertRaises(RuntimeError):
            self.lock.release_write()


class TestWriterPreference(unittest.TestCase):
    """A waiting writer is served before readers that arrive after it."""

    def test_late_reader_queues_behind_writer(self):
        lock = ReadWriteLock(timeout=2.0)
        lock.acquire_read()
        results = {}

        def writer():
            with lock.write_locked(timeout=2.0):
                results['writer'] = True

        def late_reader():
            time.sleep(0.15)  # Arrive after writer
            try:
                with lock.read_locked(timeout=0.3):
                    results['reader'] = "granted"
            except LockTimeoutError:
                results['reader'] = "timeout"

        tw = threading.Thread(target=writer)
        tr = threading.Thread(target=late_reader)
        tw.start()
        time.sleep(0.05)  # Writer waits first
        tr.start()
        tr.join(timeout=2.0)

        self.assertEqual(results.get('reader'), "timeout")

        lock.release_read()
        tw.join(timeout=3.0)
        self.assertTrue(results.get('writer'))


# ═══════════════════════════════════════════════════════════════════════════
# 2. Executor under concurrency
# ═══════════════════════════════════════════════════════════════════════════

class TestExecutorConcurrency(unittest.TestCase):

    def setUp(self):
        self.collection = Collection("books")
        self.collection.insert_many(SAMPLE_BOOKS)
        self.db = Executor(self.collection, EngineConfig(lock_timeout=5.0))

    def test_concurrent_inserts(self):
        errors = []

        def inserter(worker):
            try:
                for i in range(25):
                    self.db.insert_one({"title": f"Book {worker}-{i}", "price": float(i)})
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=inserter, args=(w,)) for w in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)

        self.assertEqual(errors, [])
        self.assertEqual(self.db.count_documents(), 114)
        self.assertEqual(len(self.collection.indexes.get("_id_")), 114)

    def test_concurrent_increments_not_lost(self):
        def bump():
            for _ in range(50):
                self.db.update_one({"title": "1984"}, {"$inc": {"pages": 1}})

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)

        self.assertEqual(self.db.find_one({"title": "1984"})["pages"], 328 + 200)

    def test_readers_see_whole_updates(self):
        """A reader never observes a half-applied update_many."""
        stop = threading.Event()
        seen = []

        def writer():
            flag = True
            while not stop.is_set():
                self.db.update_many({}, {"$set": {"in_stock": flag}})
                flag = not flag
                time.sleep(0.001)

        t = threading.Thread(target=writer)
        t.start()
        try:
            for _ in range(50):
                counts = self.db.count_documents({"in_stock": True})
                seen.append(counts)
        finally:
            stop.set()
            t.join(timeout=5.0)

        for count in seen:
            self.assertIn(count, (0, 10, 14))

    def test_lock_timeout_surfaces(self):
        db = Executor(self.collection, EngineConfig(lock_timeout=0.2))
        holding = threading.Event()
        release = threading.Event()

        def holder():
            with self.collection.write_locked():
                holding.set()
                release.wait(timeout=3.0)

        t = threading.Thread(target=holder)
        t.start()
        holding.wait(timeout=1.0)
        try:
            with self.assertRaises(LockTimeoutError):
                db.find({"title": "1984"})
            with self.assertRaises(LockTimeoutError):
                db.aggregate([{"$count": "n"}])
        finally:
            release.set()
            t.join(timeout=3.0)


if __name__ == "__main__":
    unittest.main()
