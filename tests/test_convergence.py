"""Tests for convergence module."""

import pytest

from config import ConvergenceSettings
from convergence import ConvergenceReport, run_convergence
from errors import ConvergenceFailed
from inventory import set_inventory
from job import Job


class TestRunConvergence:
    """Tests for bulk convergence runs."""

    def test_all_nodes_converged(self, inventory):
        nodes = [inventory.nodes['amq-master1'], inventory.nodes['amq-slave1']]
        job = Job('action')
        report = run_convergence(job, nodes, 'activemq::service', inventory=inventory)

        assert report.success
        assert report.succeeded == ['amq-master1', 'amq-slave1']
        assert report.results['amq-master1'].message == 'converged amq-master1'
        assert sorted(inventory.converged) == [
            ('amq-master1', 'activemq::service'),
            ('amq-slave1', 'activemq::service'),
        ]
        assert job.status == 'Convergence finished on 2 node(s)'

    def test_no_nodes(self, inventory):
        report = run_convergence(Job('action'), [], inventory=inventory)
        assert report.results == {}
        assert report.success
        assert inventory.converged == []

    def test_partial_failure_reports_every_node(self, inventory):
        inventory.fail_converge.add('amq-slave1')
        nodes = [inventory.nodes['amq-master1'], inventory.nodes['amq-slave1'], inventory.nodes['zk1']]

        with pytest.raises(ConvergenceFailed) as exc_info:
            run_convergence(Job('action'), nodes, inventory=inventory)

        report = exc_info.value.report
        assert report.succeeded == ['amq-master1', 'zk1']
        assert report.failed == ['amq-slave1']
        assert 'exited with 1' in report.results['amq-slave1'].message
        assert str(exc_info.value) == 'Convergence failed on 1 of 3 node(s): amq-slave1'

    def test_uses_default_inventory(self, inventory):
        set_inventory(inventory)
        run_convergence(Job('action'), [inventory.nodes['zk1']], settings=ConvergenceSettings(max_workers=1))
        assert inventory.converged == [('zk1', None)]


class TestConvergenceReport:
    """Tests for ConvergenceReport."""

    def test_empty_report_succeeds(self):
        report = ConvergenceReport()
        assert report.success
        assert report.failed == []
