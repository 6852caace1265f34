"""Shared pytest fixtures for conductor tests."""

import copy
import re
import sys
import threading
from pathlib import Path
from typing import Optional

import pytest
import yaml

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from errors import InventoryError
from inventory import Environment, Node, set_inventory


SAMPLE_TOPOLOGY = {
    'name': 'activemq',
    'version': '1.2.0',
    'maintainer': 'Platform Team',
    'maintainer_email': 'platform@example.com',
    'license': 'Apache 2.0',
    'description': 'ActiveMQ with a ZooKeeper ensemble',
    'components': [
        {
            'name': 'zookeeper',
            'groups': [
                {'name': 'server', 'recipes': ['zookeeper::server']},
            ],
            'actions': [
                {'name': 'restart', 'service_recipe': 'zookeeper::service'},
            ],
        },
        {
            'name': 'activemq',
            'description': 'Message broker',
            'groups': [
                {'name': 'master', 'recipes': ['activemq::master']},
                {
                    'name': 'slave',
                    'recipes': ['activemq::slave'],
                    'attributes': {'activemq.role': 'slave'},
                },
            ],
            'actions': [
                {
                    'name': 'stop',
                    'service_recipe': 'activemq::service',
                    'steps': [
                        {'node_attribute': {'key': 'activemq.service.state', 'value': 'stop', 'toggle': True}},
                    ],
                },
                {'name': 'start', 'service_recipe': 'activemq::service'},
            ],
            'commands': [
                {
                    'name': 'stop',
                    'description': 'Stop the brokers',
                    'steps': [
                        {'group': 'master', 'action': 'stop'},
                        {'group': 'slave', 'action': 'stop'},
                    ],
                },
            ],
        },
    ],
    'commands': [
        {
            'name': 'restart_all',
            'steps': [
                {'component': 'zookeeper', 'group': 'server', 'action': 'restart'},
                {'component': 'activemq', 'group': 'master', 'action': 'start'},
            ],
        },
    ],
    'stack_order': [
        ['zookeeper::server'],
        ['activemq::master', 'activemq::slave'],
    ],
}


def _flatten(data: dict, prefix: str = '') -> dict:
    flat = {}
    for key, value in data.items():
        name = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            flat.update(_flatten(value, name))
        else:
            flat[name] = str(value)
    return flat


class FakeInventory:
    """In-memory InventoryService that records every call.

    resolve_nodes understands the 'field:value AND ...' queries built by
    Group.search_query.
    """

    def __init__(self, environments=(), nodes=()):
        self.environments = {e.name: e for e in environments}
        self.nodes = {n.name: n for n in nodes}
        self.queries: list[str] = []
        self.saved_nodes: list[tuple[str, dict]] = []
        self.saved_environments: list[tuple[str, dict]] = []
        self.converged: list[tuple[str, Optional[str]]] = []
        self.bootstrapped: list[dict] = []
        self.fail_converge: set[str] = set()
        self.fail_bootstrap: set[str] = set()
        self._lock = threading.Lock()

    def find_environment(self, name):
        return self.environments.get(name)

    def resolve_nodes(self, environment, query):
        self.queries.append(query)
        terms = []
        for term in query.split(' AND '):
            field, value = term.split(':', 1)
            terms.append((field, re.sub(r'\\(.)', r'\1', value)))

        matched = []
        for node in self.nodes.values():
            attributes = _flatten(node.attributes)
            ok = True
            for field, value in terms:
                if field == 'chef_environment':
                    ok = node.environment == value
                elif field == 'run_list':
                    ok = value in node.run_list
                else:
                    ok = attributes.get(field) == value
                if not ok:
                    break
            if ok:
                matched.append(node)
        return matched

    def save_node(self, node):
        with self._lock:
            self.saved_nodes.append((node.name, copy.deepcopy(node.attributes)))

    def save_environment(self, environment):
        with self._lock:
            self.saved_environments.append((environment.name, copy.deepcopy(environment.default_attributes)))

    def converge_node(self, node, recipe=None):
        with self._lock:
            self.converged.append((node.name, recipe))
        if node.name in self.fail_converge:
            raise InventoryError(f"Convergence on '{node.name}' exited with 1: boom")
        return f"converged {node.name}"

    def bootstrap_node(self, environment, name, run_list, attributes):
        with self._lock:
            self.bootstrapped.append({
                'environment': environment,
                'name': name,
                'run_list': list(run_list),
                'attributes': copy.deepcopy(attributes),
            })
        if name in self.fail_bootstrap:
            raise InventoryError(f"bootstrap of '{name}' failed")
        node = Node(name=name, environment=environment, run_list=list(run_list), attributes=attributes)
        with self._lock:
            self.nodes[name] = node
        return node


@pytest.fixture
def topology_data():
    """Fresh copy of the sample topology mapping."""
    return copy.deepcopy(SAMPLE_TOPOLOGY)


@pytest.fixture
def plugin(topology_data):
    """Built and validated sample plugin."""
    from plugin_loader import build_plugin
    return build_plugin(topology_data)


@pytest.fixture
def topology_file(tmp_path, topology_data):
    """Sample topology written to <tmp>/activemq/topology.yaml."""
    plugin_dir = tmp_path / 'activemq'
    plugin_dir.mkdir()
    path = plugin_dir / 'topology.yaml'
    path.write_text(yaml.safe_dump(topology_data, sort_keys=False))
    return path


@pytest.fixture
def inventory():
    """Fake inventory with a 'production' environment and one node per group."""
    return FakeInventory(
        environments=[Environment(name='production', default_attributes={'activemq': {'heap': '1g'}})],
        nodes=[
            Node(name='zk1', environment='production', run_list=['recipe[zookeeper::server]']),
            Node(name='amq-master1', environment='production', run_list=['recipe[activemq::master]']),
            Node(
                name='amq-slave1',
                environment='production',
                run_list=['recipe[activemq::slave]'],
                attributes={'activemq': {'role': 'slave'}},
            ),
            Node(name='amq-staging', environment='staging', run_list=['recipe[activemq::master]']),
        ],
    )


@pytest.fixture(autouse=True)
def _reset_default_inventory():
    """Never let a test reach a real inventory through the process default."""
    yield
    set_inventory(None)
