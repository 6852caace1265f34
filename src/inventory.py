"""Node inventory / convergence service client.

The inventory service owns environments and nodes and runs convergence on
them. Everything in this package talks to it through the InventoryService
protocol; HttpInventoryClient is the REST implementation.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

import requests

from config import InventorySettings, load_config
from errors import InventoryConnectionError, InventoryError

logger = logging.getLogger(__name__)


@dataclass
class Environment:
    """A named deployment target."""
    name: str
    description: str = ''
    default_attributes: dict = field(default_factory=dict)
    override_attributes: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> 'Environment':
        return cls(
            name=data['name'],
            description=data.get('description', ''),
            default_attributes=data.get('default_attributes') or {},
            override_attributes=data.get('override_attributes') or {},
        )

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'description': self.description,
            'default_attributes': self.default_attributes,
            'override_attributes': self.override_attributes,
        }


@dataclass
class Node:
    """A live node registered in the inventory.

    Attributes:
        name: Node name (unique in the inventory)
        environment: Environment the node belongs to
        run_list: Recipes/roles applied on convergence
        attributes: Normal attributes, writable by actions
        public_hostname: Address used to reach the node
    """
    name: str
    environment: str = ''
    run_list: list[str] = field(default_factory=list)
    attributes: dict = field(default_factory=dict)
    public_hostname: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'Node':
        return cls(
            name=data['name'],
            environment=data.get('environment', ''),
            run_list=list(data.get('run_list') or []),
            attributes=data.get('attributes') or {},
            public_hostname=data.get('public_hostname'),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'environment': self.environment,
            'run_list': self.run_list,
            'attributes': self.attributes,
        }
        if self.public_hostname is not None:
            d['public_hostname'] = self.public_hostname
        return d


@runtime_checkable
class InventoryService(Protocol):
    """Operations the orchestrator needs from the inventory service."""

    def find_environment(self, name: str) -> Optional[Environment]:
        """Return the environment, or None if it does not exist."""

    def resolve_nodes(self, environment: str, query: str) -> list[Node]:
        """Return the nodes matching a search query."""

    def save_node(self, node: Node) -> None:
        """Persist node attributes."""

    def save_environment(self, environment: Environment) -> None:
        """Persist environment attributes."""

    def converge_node(self, node: Node, recipe: Optional[str] = None) -> str:
        """Run convergence on one node. Raises on failure."""

    def bootstrap_node(self, environment: str, name: str, run_list: list[str],
                       attributes: dict) -> Node:
        """Bootstrap one node into an environment. Raises on failure."""


class HttpInventoryClient:
    """REST client for the inventory service."""

    def __init__(self, settings: InventorySettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.base_url = settings.url.rstrip('/')
        self.session = session or requests.Session()
        self.session.headers['Accept'] = 'application/json'
        if settings.token:
            self.session.headers['Authorization'] = f'Bearer {settings.token}'

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")
        try:
            return self.session.request(
                method,
                url,
                timeout=self.settings.timeout,
                verify=self.settings.verify_ssl,
                **kwargs,
            )
        except requests.exceptions.ConnectionError as e:
            raise InventoryConnectionError(f"Cannot connect to inventory at {self.base_url}: {e}")
        except requests.exceptions.Timeout:
            raise InventoryConnectionError(
                f"Timeout after {self.settings.timeout}s talking to inventory at {self.base_url}"
            )

    @staticmethod
    def _check(resp: requests.Response, what: str) -> None:
        if resp.status_code >= 400:
            raise InventoryError(
                f"Inventory error during {what}: {resp.status_code} - {resp.text[:200]}",
                status_code=resp.status_code,
            )

    def find_environment(self, name: str) -> Optional[Environment]:
        resp = self._request('GET', f'/environments/{name}')
        if resp.status_code == 404:
            return None
        self._check(resp, f"environment lookup '{name}'")
        return Environment.from_dict(resp.json())

    def resolve_nodes(self, environment: str, query: str) -> list[Node]:
        resp = self._request('GET', '/search/node', params={'q': query})
        self._check(resp, f"node search in '{environment}'")
        return [Node.from_dict(row) for row in resp.json().get('rows', [])]

    def save_node(self, node: Node) -> None:
        resp = self._request('PUT', f'/nodes/{node.name}', json=node.to_dict())
        self._check(resp, f"save of node '{node.name}'")

    def save_environment(self, environment: Environment) -> None:
        resp = self._request('PUT', f'/environments/{environment.name}', json=environment.to_dict())
        self._check(resp, f"save of environment '{environment.name}'")

    def converge_node(self, node: Node, recipe: Optional[str] = None) -> str:
        payload: dict[str, Any] = {}
        if recipe:
            payload['override_run_list'] = [recipe]
        resp = self._request('POST', f'/nodes/{node.name}/converge', json=payload)
        self._check(resp, f"convergence of '{node.name}'")
        data = resp.json() if resp.content else {}
        if data.get('exit_status', 0) != 0:
            raise InventoryError(
                f"Convergence on '{node.name}' exited with {data.get('exit_status')}: "
                f"{(data.get('stderr') or '')[:200]}"
            )
        return data.get('stdout', '')

    def bootstrap_node(self, environment: str, name: str, run_list: list[str],
                       attributes: dict) -> Node:
        resp = self._request('POST', '/bootstrap', json={
            'environment': environment,
            'name': name,
            'run_list': run_list,
            'attributes': attributes,
        })
        self._check(resp, f"bootstrap of '{name}'")
        return Node.from_dict(resp.json())


_default_inventory: Optional[InventoryService] = None
_default_lock = threading.Lock()


def get_inventory() -> InventoryService:
    """Return the process-wide inventory client, building it from config on first use."""
    global _default_inventory
    with _default_lock:
        if _default_inventory is None:
            _default_inventory = HttpInventoryClient(load_config().inventory)
        return _default_inventory


def set_inventory(inventory: Optional[InventoryService]) -> None:
    """Replace the process-wide inventory client (None resets to lazy default)."""
    global _default_inventory
    with _default_lock:
        _default_inventory = inventory
