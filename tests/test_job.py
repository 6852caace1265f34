"""Tests for job module."""

import threading

import pytest

from errors import JobCancelled
from job import Job


class TestJobLifecycle:
    """Tests for job state transitions."""

    def test_initial_state(self):
        job = Job('bootstrap')
        assert job.state == 'pending'
        assert job.type == 'bootstrap'
        assert job.completed is False
        assert len(job.id) == 32

    def test_running_with_status(self):
        job = Job('bootstrap')
        job.report_running('starting')
        assert job.state == 'running'
        assert job.status == 'starting'

    def test_success(self):
        job = Job('bootstrap')
        job.report_running()
        job.report_success({'completed': 3})
        assert job.state == 'success'
        assert job.result == {'completed': 3}
        assert job.completed is True
        assert job.finished_at is not None

    def test_terminal_state_is_final(self):
        job = Job('command')
        job.report_failure('broken')
        job.report_success('late')
        job.report_running('again')
        assert job.state == 'failure'
        assert job.result == 'broken'

    def test_status_history(self):
        job = Job('command')
        job.set_status('one')
        job.set_status('two')
        assert [message for _, message in job.status_history] == ['one', 'two']

    def test_snapshot(self):
        job = Job('command')
        job.set_status('working')
        snap = job.snapshot()
        assert snap['status'] == 'working'
        assert snap['state'] == 'pending'
        assert snap['id'] == job.id


class TestJobCancellation:
    """Tests for cooperative cancellation."""

    def test_not_cancelled_by_default(self):
        job = Job('bootstrap')
        assert job.cancelled is False
        job.raise_if_cancelled()

    def test_cancel(self):
        job = Job('bootstrap')
        job.cancel()
        assert job.cancelled is True
        with pytest.raises(JobCancelled):
            job.raise_if_cancelled()


class TestJobConcurrency:
    """Tests for concurrent status writes."""

    def test_concurrent_set_status(self):
        job = Job('bootstrap')

        def writer(n):
            for i in range(50):
                job.set_status(f"worker {n} step {i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(job.status_history) == 200
        assert job.status == job.status_history[-1][1]
