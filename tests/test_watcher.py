from __future__ import annotations

import sys
import threading
import unittest
from pathlib import Path

TESTS_ROOT = Path(__file__).resolve().parent
if str(TESTS_ROOT) not in sys.path:
    sys.path.insert(0, str(TESTS_ROOT))

from fakes import FakeStream, job_event

from rapt.contracts import (
    JOB_STATE_FAILED,
    JOB_STATE_PENDING,
    JOB_STATE_RUNNING,
    JOB_STATE_SUCCEEDED,
)
from rapt.errors import JobWatchTimeout, WatchInterrupted
from rapt.watcher import LifecycleWatcher, job_state_from_status


class JobStateTests(unittest.TestCase):
    def test_counter_precedence(self) -> None:
        self.assertEqual(JOB_STATE_PENDING, job_state_from_status({}))
        self.assertEqual(JOB_STATE_PENDING, job_state_from_status(None))
        self.assertEqual(JOB_STATE_RUNNING, job_state_from_status({"active": 1}))
        self.assertEqual(JOB_STATE_FAILED, job_state_from_status({"active": 1, "failed": 1}))
        self.assertEqual(
            JOB_STATE_SUCCEEDED,
            job_state_from_status({"succeeded": 1, "failed": 1}),
        )

    def test_garbage_counters_count_as_zero(self) -> None:
        self.assertEqual(JOB_STATE_PENDING, job_state_from_status({"active": "n/a"}))


class LifecycleWatcherTests(unittest.TestCase):
    def test_active_then_succeeded(self) -> None:
        seen: list[str] = []
        watcher = LifecycleWatcher("job-a", on_state=seen.append)
        state = watcher.wait(
            [job_event("job-a"), job_event("job-a", active=1), job_event("job-a", succeeded=1)],
            timeout=5,
        )
        self.assertEqual(JOB_STATE_SUCCEEDED, state)
        self.assertEqual([JOB_STATE_PENDING, JOB_STATE_RUNNING, JOB_STATE_SUCCEEDED], seen)

    def test_active_then_failed(self) -> None:
        watcher = LifecycleWatcher("job-a")
        state = watcher.wait(
            [job_event("job-a", active=1), job_event("job-a", failed=1)],
            timeout=5,
        )
        self.assertEqual(JOB_STATE_FAILED, state)
        self.assertEqual(JOB_STATE_FAILED, watcher.state)

    def test_raw_job_documents_are_accepted(self) -> None:
        watcher = LifecycleWatcher("job-a")
        state = watcher.wait([job_event("job-a", succeeded=1)["object"]], timeout=5)
        self.assertEqual(JOB_STATE_SUCCEEDED, state)

    def test_stream_closing_without_terminal_state_is_interrupted(self) -> None:
        watcher = LifecycleWatcher("job-a")
        with self.assertRaises(WatchInterrupted) as ctx:
            watcher.wait([job_event("job-a", active=1)], timeout=5)
        self.assertEqual("job-a", ctx.exception.job_name)
        self.assertEqual(JOB_STATE_RUNNING, watcher.state)

    def test_error_event_is_interrupted(self) -> None:
        watcher = LifecycleWatcher("job-a")
        error = {"type": "ERROR", "object": {"kind": "Status", "message": "too old resource version"}}
        with self.assertRaises(WatchInterrupted) as ctx:
            watcher.wait([error], timeout=5)
        self.assertIn("too old resource version", str(ctx.exception))

    def test_stream_exception_is_interrupted(self) -> None:
        def _events():
            yield job_event("job-a", active=1)
            raise OSError("connection reset")

        watcher = LifecycleWatcher("job-a")
        with self.assertRaises(WatchInterrupted) as ctx:
            watcher.wait(_events(), timeout=5)
        self.assertIsInstance(ctx.exception.__cause__, OSError)

    def test_deleted_before_terminal_is_interrupted(self) -> None:
        watcher = LifecycleWatcher("job-a")
        with self.assertRaises(WatchInterrupted):
            watcher.wait([job_event("job-a", active=1, event_type="DELETED")], timeout=5)

    def test_bookmarks_and_other_jobs_are_ignored(self) -> None:
        watcher = LifecycleWatcher("job-a")
        state = watcher.wait(
            [
                {"type": "BOOKMARK", "object": {"metadata": {"name": "job-a"}}},
                job_event("job-b", failed=1),
                job_event("job-a", succeeded=1),
            ],
            timeout=5,
        )
        self.assertEqual(JOB_STATE_SUCCEEDED, state)

    def test_no_events_before_deadline_times_out(self) -> None:
        stream = FakeStream(block=True)
        self.addCleanup(stream.close)
        watcher = LifecycleWatcher("job-a")
        with self.assertRaises(TimeoutError) as ctx:
            watcher.wait(stream.events(), timeout=0.2)
        self.assertIsInstance(ctx.exception, JobWatchTimeout)
        self.assertEqual(JOB_STATE_PENDING, watcher.state)

    def test_cancel_event_interrupts_wait(self) -> None:
        stream = FakeStream(block=True)
        self.addCleanup(stream.close)
        cancel = threading.Event()
        timer = threading.Timer(0.1, cancel.set)
        timer.start()
        self.addCleanup(timer.cancel)
        watcher = LifecycleWatcher("job-a")
        with self.assertRaises(WatchInterrupted):
            watcher.wait(stream.events(), timeout=None, cancel=cancel)


if __name__ == "__main__":
    unittest.main()
