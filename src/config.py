"""Driver configuration management.

Configuration is loaded from YAML files in the config directory:
- config.yaml: inventory endpoint, bootstrap and convergence settings
- secrets.yaml: sensitive values (inventory API token)

Resolution order for the config directory:
1. $CONDUCTOR_CONFIG environment variable
2. ~/.conductor/
3. /etc/conductor/

When no config directory exists, built-in defaults are used.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

ON_ERROR_CHOICES = ('stop', 'continue')


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class InventorySettings:
    """Connection settings for the node inventory / convergence service."""
    url: str = 'http://localhost:8889'
    token: str = ''
    verify_ssl: bool = True
    timeout: int = 30


@dataclass
class BootstrapSettings:
    """Bootstrap fan-out settings.

    Attributes:
        max_workers: Concurrent node operations per phase
        node_timeout: Seconds allowed per node operation (0 disables)
        on_error: 'stop' ends the plan after a failed phase, 'continue' proceeds
        abandon_stragglers: Start the next phase without waiting for operations
            that outlived the phase deadline
    """
    max_workers: int = 8
    node_timeout: int = 1800
    on_error: str = 'stop'
    abandon_stragglers: bool = False


@dataclass
class ConvergenceSettings:
    """Bulk convergence fan-out settings."""
    max_workers: int = 8
    node_timeout: int = 600


@dataclass
class DriverConfig:
    """Complete driver configuration."""
    inventory: InventorySettings = field(default_factory=InventorySettings)
    bootstrap: BootstrapSettings = field(default_factory=BootstrapSettings)
    convergence: ConvergenceSettings = field(default_factory=ConvergenceSettings)
    plugins_dir: Optional[Path] = None
    config_dir: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict, secrets: Optional[dict] = None,
                  config_dir: Optional[Path] = None) -> 'DriverConfig':
        """Build config from parsed config.yaml content.

        Raises:
            ConfigError: If a value is invalid
        """
        inv = data.get('inventory') or {}
        boot = data.get('bootstrap') or {}
        conv = data.get('convergence') or {}
        secrets = secrets or {}

        inventory = InventorySettings(
            url=str(inv.get('url', InventorySettings.url)).rstrip('/'),
            token=secrets.get('inventory_token', inv.get('token', '')),
            verify_ssl=bool(inv.get('verify_ssl', True)),
            timeout=_positive_int(inv.get('timeout', InventorySettings.timeout), 'inventory.timeout'),
        )
        bootstrap = BootstrapSettings(
            max_workers=_positive_int(boot.get('max_workers', BootstrapSettings.max_workers),
                                      'bootstrap.max_workers'),
            node_timeout=_non_negative_int(boot.get('node_timeout', BootstrapSettings.node_timeout),
                                           'bootstrap.node_timeout'),
            on_error=boot.get('on_error', BootstrapSettings.on_error),
            abandon_stragglers=bool(boot.get('abandon_stragglers', BootstrapSettings.abandon_stragglers)),
        )
        if bootstrap.on_error not in ON_ERROR_CHOICES:
            raise ConfigError(
                f"bootstrap.on_error must be one of {', '.join(ON_ERROR_CHOICES)}, "
                f"got '{bootstrap.on_error}'"
            )
        convergence = ConvergenceSettings(
            max_workers=_positive_int(conv.get('max_workers', ConvergenceSettings.max_workers),
                                      'convergence.max_workers'),
            node_timeout=_non_negative_int(conv.get('node_timeout', ConvergenceSettings.node_timeout),
                                           'convergence.node_timeout'),
        )

        plugins_dir = None
        if plugins := data.get('plugins_dir'):
            plugins_dir = Path(plugins).expanduser()
            if not plugins_dir.is_absolute() and config_dir is not None:
                plugins_dir = config_dir / plugins_dir

        return cls(
            inventory=inventory,
            bootstrap=bootstrap,
            convergence=convergence,
            plugins_dir=plugins_dir,
            config_dir=config_dir,
        )


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    return value


def _non_negative_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
    return value


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must be a YAML object (dict)")
    return data


def get_config_dir() -> Optional[Path]:
    """Discover the config directory, or None when nothing is configured.

    Raises:
        ConfigError: If $CONDUCTOR_CONFIG points at a missing directory
    """
    if env_path := os.environ.get('CONDUCTOR_CONFIG'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"CONDUCTOR_CONFIG={env_path} does not exist")

    home = Path.home() / '.conductor'
    if home.exists():
        return home

    system = Path('/etc/conductor')
    if system.exists():
        return system

    return None


def load_config(config_dir: Optional[Path] = None) -> DriverConfig:
    """Load driver configuration.

    Args:
        config_dir: Explicit config directory. If None, uses discovery.

    Returns:
        DriverConfig (defaults when no config directory is found)
    """
    if config_dir is None:
        config_dir = get_config_dir()
    if config_dir is None:
        return DriverConfig()

    config_dir = Path(config_dir)
    config_file = config_dir / 'config.yaml'
    data = _parse_yaml(config_file) if config_file.exists() else {}

    secrets_file = config_dir / 'secrets.yaml'
    secrets = _parse_yaml(secrets_file) if secrets_file.exists() else None

    return DriverConfig.from_dict(data, secrets=secrets, config_dir=config_dir)
