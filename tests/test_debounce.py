"""
Tests for the trailing-edge debouncer used for note edits.

Run with:
    python -m pytest tests/test_debounce.py
"""
import asyncio
import unittest

from letter_rounds.debounce import Debouncer


class TestDebouncer(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.writes = []

    def _writer(self, value):
        async def write():
            self.writes.append(value)
        return write

    async def test_only_last_edit_is_written(self):
        debouncer = Debouncer(delay=0.05)
        for value in ("H", "He", "Hel", "Hello"):
            debouncer.schedule("env-1:A:notes", self._writer(value))
        self.assertEqual(debouncer.pending, ["env-1:A:notes"])

        await asyncio.sleep(0.15)
        self.assertEqual(self.writes, ["Hello"])
        self.assertEqual(debouncer.pending, [])

    async def test_keys_are_independent(self):
        debouncer = Debouncer(delay=0.05)
        debouncer.schedule("A", self._writer("a"))
        debouncer.schedule("B", self._writer("b"))
        await asyncio.sleep(0.15)
        self.assertEqual(sorted(self.writes), ["a", "b"])

    async def test_nothing_written_inside_quiet_window(self):
        debouncer = Debouncer(delay=10)
        debouncer.schedule("A", self._writer("a"))
        await asyncio.sleep(0.01)
        self.assertEqual(self.writes, [])
        debouncer.cancel_all()

    async def test_flush_writes_pending_now(self):
        debouncer = Debouncer(delay=10)
        debouncer.schedule("A", self._writer("first"))
        debouncer.schedule("A", self._writer("second"))
        await debouncer.flush()
        self.assertEqual(self.writes, ["second"])
        self.assertEqual(debouncer.pending, [])

    async def test_cancel_all_drops_pending(self):
        debouncer = Debouncer(delay=0.01)
        debouncer.schedule("A", self._writer("a"))
        debouncer.cancel_all()
        await asyncio.sleep(0.05)
        self.assertEqual(self.writes, [])

    async def test_failing_action_is_logged(self):
        async def broken():
            raise RuntimeError("disk full")

        debouncer = Debouncer(delay=0)
        debouncer.schedule("A", broken)
        with self.assertLogs("letter_rounds.debounce", level="ERROR"):
            await debouncer.flush()


if __name__ == '__main__':
    unittest.main()
