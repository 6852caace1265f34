"""Tests for bootstrap.executor module.

Uses recording workers and the FakeInventory to test phase ordering,
error handling, cancellation and dry-run behavior.
"""

import threading
import time

from bootstrap.executor import BootstrapExecutor, InventoryBootstrapWorker, operation_key
from bootstrap.plan import BootstrapPlan
from config import BootstrapSettings
from errors import InventoryError
from job import Job
from manifest import ProvisionManifest


def _plan(plugin, zk_count=2, amq_count=2):
    manifest = ProvisionManifest.from_dict({'nodes': [
        {'type': 'c1.medium', 'count': zk_count, 'components': ['zookeeper::server']},
        {'type': 'm1.large', 'count': amq_count, 'components': ['activemq::master', 'activemq::slave']},
    ]})
    return BootstrapPlan.build(plugin, manifest)


class RecordingWorker:
    """Worker that records (task, node, start, end) and can fail chosen operations."""

    def __init__(self, fail=(), delay=0.0):
        self.fail = set(fail)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, job, task, node):
        start = time.monotonic()
        time.sleep(self.delay)
        with self._lock:
            self.calls.append((task.id, node.key, start, time.monotonic()))
        if (task.id, node.key) in self.fail:
            raise InventoryError(f"bootstrap of '{node.key}' failed")
        return f"ok {node.key}"


class TestBootstrapExecutor:
    """Tests for phase-by-phase execution."""

    def test_all_phases_succeed(self, plugin):
        worker = RecordingWorker()
        job = Job('bootstrap')
        success, state = BootstrapExecutor(_plan(plugin), worker, 'production').run(job)

        assert success is True
        assert job.state == 'success'
        assert state.summary()['completed'] == 6
        assert len(worker.calls) == 6

    def test_phase_barrier(self, plugin):
        worker = RecordingWorker(delay=0.02)
        BootstrapExecutor(_plan(plugin), worker, 'production').run(Job('bootstrap'))

        phase1_end = max(end for task, _, _, end in worker.calls if task == 'zookeeper::server')
        phase2_start = min(start for task, _, start, _ in worker.calls if task != 'zookeeper::server')
        assert phase1_end <= phase2_start

    def test_on_error_stop_skips_later_phases(self, plugin):
        worker = RecordingWorker(fail=[('zookeeper::server', 'c1.medium-0-1')])
        job = Job('bootstrap')
        success, state = BootstrapExecutor(_plan(plugin), worker, 'production').run(job)

        assert success is False
        assert job.state == 'failure'
        assert {task for task, _, _, _ in worker.calls} == {'zookeeper::server'}
        summary = state.summary()
        assert summary['completed'] == 1
        assert summary['failed'] == 1
        assert summary['skipped'] == 4
        assert job.result == summary
        failed = state.get_node('zookeeper::server@c1.medium-0-1')
        assert "bootstrap of 'c1.medium-0-1' failed" in failed.error

    def test_on_error_continue_runs_later_phases(self, plugin):
        worker = RecordingWorker(fail=[('zookeeper::server', 'c1.medium-0-0')])
        settings = BootstrapSettings(on_error='continue')
        success, state = BootstrapExecutor(_plan(plugin), worker, 'production', settings).run(Job('bootstrap'))

        assert success is False
        assert len(worker.calls) == 6
        assert state.summary()['completed'] == 5
        assert state.summary()['failed'] == 1

    def test_partial_failure_within_phase(self, plugin):
        worker = RecordingWorker(fail=[('activemq::slave', 'm1.large-1-1')])
        success, state = BootstrapExecutor(_plan(plugin), worker, 'production').run(Job('bootstrap'))

        assert success is False
        assert state.get_node('activemq::master@m1.large-1-1').status == 'completed'
        assert state.get_node('activemq::slave@m1.large-1-0').status == 'completed'
        assert state.get_node('activemq::slave@m1.large-1-1').status == 'failed'

    def test_node_timeout(self, plugin):
        def worker(job, task, node):
            if node.key == 'c1.medium-0-0':
                time.sleep(1.5)
            return 'ok'

        settings = BootstrapSettings(max_workers=2, node_timeout=1)
        success, state = BootstrapExecutor(_plan(plugin), worker, 'production', settings).run(Job('bootstrap'))

        assert success is False
        stuck = state.get_node('zookeeper::server@c1.medium-0-0')
        assert stuck.status == 'failed'
        assert 'timed out' in stuck.error
        assert state.get_node('zookeeper::server@c1.medium-0-1').status == 'completed'

    def test_timed_out_operation_holds_phase_barrier(self, plugin):
        calls = []
        lock = threading.Lock()

        def worker(job, task, node):
            start = time.monotonic()
            if task.id == 'zookeeper::server':
                time.sleep(1.5)
            with lock:
                calls.append((task.id, start, time.monotonic()))
            return 'ok'

        settings = BootstrapSettings(max_workers=2, node_timeout=1, on_error='continue')
        success, state = BootstrapExecutor(_plan(plugin), worker, 'production', settings).run(Job('bootstrap'))

        assert success is False
        phase1_end = max(end for task, _, end in calls if task == 'zookeeper::server')
        phase2_start = min(start for task, start, _ in calls if task != 'zookeeper::server')
        assert phase1_end <= phase2_start
        assert state.get_node('zookeeper::server@c1.medium-0-0').status == 'failed'
        assert state.summary()['completed'] == 4

    def test_abandoned_straggler_cannot_restart_failed_state(self, plugin):
        release = threading.Event()
        late = threading.Event()

        def worker(job, task, node):
            if node.key == 'c1.medium-0-0':
                release.wait(5)
                late.set()
            return 'ok'

        settings = BootstrapSettings(max_workers=2, node_timeout=1, abandon_stragglers=True)
        try:
            success, state = BootstrapExecutor(_plan(plugin), worker, 'production', settings).run(Job('bootstrap'))
        finally:
            release.set()

        late.wait(5)
        assert success is False
        assert state.get_node('zookeeper::server@c1.medium-0-0').status == 'failed'

    def test_cancel_between_phases(self, plugin):
        job = Job('bootstrap')

        def worker(job_, task, node):
            job_.cancel()
            return 'ok'

        success, state = BootstrapExecutor(_plan(plugin), worker, 'production').run(job)

        assert success is False
        assert job.state == 'failure'
        assert state.summary()['completed'] == 2
        assert state.summary()['cancelled'] == 4

    def test_dry_run(self, plugin, capsys):
        worker = RecordingWorker()
        job = Job('bootstrap')
        success, state = BootstrapExecutor(_plan(plugin), worker, 'production', dry_run=True).run(job)

        assert success is True
        assert worker.calls == []
        assert job.state == 'pending'
        assert state.summary()['pending'] == 6
        out = capsys.readouterr().out
        assert 'DRY-RUN BOOTSTRAP: activemq (1.2.0)' in out
        assert 'zookeeper::server -> c1.medium-0-0, c1.medium-0-1' in out
        assert '2 phase(s), 6 node operation(s)' in out

    def test_empty_phase_counts_as_success(self, plugin):
        worker = RecordingWorker()
        success, state = BootstrapExecutor(_plan(plugin, amq_count=0), worker, 'production').run(Job('bootstrap'))
        assert success is True
        assert len(worker.calls) == 2


class TestInventoryBootstrapWorker:
    """Tests for the inventory-backed worker."""

    def test_bootstraps_with_group_run_list_and_attributes(self, plugin, inventory):
        executor = BootstrapExecutor(
            _plan(plugin, zk_count=1, amq_count=1),
            InventoryBootstrapWorker('production', inventory),
            'production',
        )
        success, state = executor.run(Job('bootstrap'))

        assert success is True
        calls = {(c['name'], tuple(c['run_list'])): c for c in inventory.bootstrapped}
        slave = calls[('m1.large-1-0', ('recipe[activemq::slave]',))]
        assert slave['environment'] == 'production'
        assert slave['attributes'] == {'activemq': {'role': 'slave'}}
        zk = calls[('c1.medium-0-0', ('recipe[zookeeper::server]',))]
        assert zk['attributes'] == {}
        assert state.get_node('zookeeper::server@c1.medium-0-0').message == "bootstrapped as 'c1.medium-0-0'"

    def test_inventory_failure_marks_node_failed(self, plugin, inventory):
        inventory.fail_bootstrap.add('c1.medium-0-0')
        executor = BootstrapExecutor(
            _plan(plugin, zk_count=1, amq_count=1),
            InventoryBootstrapWorker('production', inventory),
            'production',
        )
        success, state = executor.run(Job('bootstrap'))
        assert success is False
        assert state.get_node('zookeeper::server@c1.medium-0-0').status == 'failed'
        assert state.summary()['skipped'] == 2


class TestOperationKey:
    """Tests for operation keys."""

    def test_format(self, plugin):
        plan = _plan(plugin, zk_count=1)
        task = plan.phases[0].tasks[0]
        assert operation_key(task, task.nodes[0]) == 'zookeeper::server@c1.medium-0-0'
