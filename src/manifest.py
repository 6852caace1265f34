"""Provision manifests: loading, saving and validation against a plugin.

A provision manifest requests infrastructure for a topology:

    {
      "nodes": [
        {"type": "m1.large", "count": 2, "components": ["activemq::master"]}
      ]
    }

Validation is fail-fast: the first violation raises InvalidProvisionManifest
with a message naming the offending field and value. It runs before any
infrastructure call is made.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from common import parse_node_group_id
from errors import InternalError, InvalidJSONManifest, InvalidProvisionManifest, ManifestNotFound

logger = logging.getLogger(__name__)

INSTANCE_TYPE_REGEX = re.compile(r'^\w+\.\w+$')


@dataclass
class NodeSpec:
    """One entry of a manifest's nodes list.

    Attributes:
        type: Instance type, '<family>.<size>'
        count: Requested instance count (None when not given)
        components: 'component::group' assignments
    """
    type: str
    count: Optional[int] = None
    components: list[str] = field(default_factory=list)

    @property
    def instances(self) -> int:
        """Number of instances to provision (1 when count is not given)."""
        return 1 if self.count is None else self.count

    @classmethod
    def from_dict(cls, data: dict) -> 'NodeSpec':
        return cls(
            type=data['type'],
            count=data.get('count'),
            components=list(data.get('components') or []),
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {'type': self.type}
        if self.count is not None:
            d['count'] = self.count
        d['components'] = list(self.components)
        return d


def validate_provision_manifest(manifest: Any, plugin) -> None:
    """Validate a raw provision manifest against a plugin.

    Args:
        manifest: Parsed manifest data (mapping)
        plugin: Target Plugin

    Raises:
        InvalidProvisionManifest: On the first violation found
    """
    if isinstance(manifest, ProvisionManifest):
        manifest = manifest.data

    if not isinstance(manifest, dict):
        raise InvalidProvisionManifest(
            f"The provisioner manifest needs to be a mapping, but you provided a(n) {type(manifest).__name__}"
        )

    if 'nodes' not in manifest or manifest['nodes'] is None:
        raise InvalidProvisionManifest(
            "The provisioner manifest needs to have a key 'nodes' containing a list"
        )

    nodes = manifest['nodes']
    if not isinstance(nodes, list):
        raise InvalidProvisionManifest(
            f"The provisioner manifest needs to have a key 'nodes' containing a list, "
            f"but it was a(n) {type(nodes).__name__}"
        )

    for node in nodes:
        if not isinstance(node, dict):
            raise InvalidProvisionManifest(
                f"The provisioner manifest needs to have a list of mappings at 'nodes', "
                f"but there was a {type(node).__name__}: {node!r}"
            )

        node_type = node.get('type')
        if not isinstance(node_type, str) or not INSTANCE_TYPE_REGEX.match(node_type):
            raise InvalidProvisionManifest(
                f"Provision manifest contained an entry not in the proper format: type '{node_type}'. "
                f"Expected: 'family.size' (e.g. 'm1.large')"
            )

        count = node.get('count')
        if count is not None:
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise InvalidProvisionManifest(
                    f"Provision manifest contained an invalid value for count: '{count}'. "
                    f"Expected a non-negative integer."
                )

        components = node.get('components')
        if not isinstance(components, list):
            raise InvalidProvisionManifest(
                f"The provisioner manifest contains a node entry without a list of components: {node!r}"
            )

        for component_string in components:
            parsed = parse_node_group_id(component_string)
            if parsed is None:
                raise InvalidProvisionManifest(
                    f"Provision manifest contained an entry not in the proper format: "
                    f"components '{component_string}'. Expected: 'component::group'"
                )

            component_name, group_name = parsed
            if not plugin.has_component(component_name):
                raise InvalidProvisionManifest(
                    f"Provision manifest describes the component: '{component_name}' "
                    f"but '{plugin.name}' does not have this component"
                )

            if not plugin.component(component_name).has_group(group_name):
                raise InvalidProvisionManifest(
                    f"Provision manifest describes the group: '{group_name}' in the component "
                    f"'{component_name}' but that component does not have this group"
                )


@dataclass
class ProvisionManifest:
    """A provision manifest, optionally bound to a file path.

    The raw data is kept as given so unknown keys survive a load/save cycle.
    """
    data: dict = field(default_factory=lambda: {'nodes': []})
    path: Optional[Path] = None

    @property
    def node_specs(self) -> list[NodeSpec]:
        """Parsed node entries. Call validate() first for meaningful errors."""
        return [NodeSpec.from_dict(n) for n in self.data.get('nodes') or []]

    def validate(self, plugin) -> 'ProvisionManifest':
        validate_provision_manifest(self.data, plugin)
        return self

    def to_dict(self) -> dict:
        return self.data

    def to_json(self) -> str:
        return json.dumps(self.data, indent=2, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict, path: Optional[Path] = None) -> 'ProvisionManifest':
        if not isinstance(data, dict):
            raise InvalidProvisionManifest(
                f"The provisioner manifest needs to be a mapping, but you provided a(n) {type(data).__name__}"
            )
        return cls(data=dict(data), path=path)

    @classmethod
    def from_specs(cls, specs: list[NodeSpec], **extra: Any) -> 'ProvisionManifest':
        data: dict[str, Any] = dict(extra)
        data['nodes'] = [s.to_dict() for s in specs]
        return cls(data=data)

    @classmethod
    def from_json(cls, text: str, path: Optional[Path] = None) -> 'ProvisionManifest':
        """Parse a manifest from a JSON string.

        Raises:
            InvalidJSONManifest: If the string is not a JSON object
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidJSONManifest(f"Invalid manifest JSON: {e}")
        if not isinstance(data, dict):
            raise InvalidJSONManifest(
                f"Manifest JSON must be an object, got {type(data).__name__}"
            )
        return cls(data=data, path=path)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'ProvisionManifest':
        """Load a manifest from a JSON file.

        Raises:
            ManifestNotFound: If the file does not exist
            InvalidJSONManifest: If the file is not valid JSON
        """
        path = Path(path).expanduser().resolve()
        try:
            text = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            raise ManifestNotFound(f"No manifest found at: '{path}'")
        logger.debug(f"Loaded manifest from {path}")
        return cls.from_json(text, path=path)

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Write the manifest as pretty JSON.

        Args:
            path: Destination; defaults to the path it was loaded from

        Returns:
            Path written to

        Raises:
            InternalError: If no destination is known
        """
        if path is not None:
            self.path = Path(path)
        if not self.path:
            raise InternalError(
                "Cannot save manifest without a destination. Set the 'path' attribute on your object."
            )

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            f.write(self.to_json())
            f.write('\n')
        logger.debug(f"Saved manifest to {self.path}")
        return self.path
