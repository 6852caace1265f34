#!/usr/bin/env python3
"""Tests for config.py - driver configuration and discovery.

Tests verify:
1. Config directory discovery (env var, home directory)
2. Loading config.yaml with secrets.yaml resolution
3. Defaults when no config exists
4. Validation errors for bad values
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from config import (
    BootstrapSettings,
    ConfigError,
    DriverConfig,
    InventorySettings,
    _parse_yaml,
    get_config_dir,
    load_config,
)


class TestGetConfigDir:
    """Test config directory discovery."""

    def test_env_var_takes_precedence(self, tmp_path):
        env_dir = tmp_path / 'env-config'
        env_dir.mkdir()

        with patch.dict(os.environ, {'CONDUCTOR_CONFIG': str(env_dir)}):
            assert get_config_dir() == env_dir

    def test_env_var_missing_raises(self):
        with patch.dict(os.environ, {'CONDUCTOR_CONFIG': '/nonexistent/path'}):
            with pytest.raises(ConfigError) as exc_info:
                get_config_dir()
            assert 'does not exist' in str(exc_info.value)

    def test_home_fallback(self, tmp_path, monkeypatch):
        monkeypatch.delenv('CONDUCTOR_CONFIG', raising=False)
        (tmp_path / '.conductor').mkdir()
        monkeypatch.setattr(Path, 'home', classmethod(lambda cls: tmp_path))
        assert get_config_dir() == tmp_path / '.conductor'


class TestLoadConfig:
    """Test loading config.yaml and secrets.yaml."""

    def test_defaults_without_config_dir(self, monkeypatch):
        monkeypatch.setattr('config.get_config_dir', lambda: None)
        config = load_config()
        assert config == DriverConfig()
        assert config.inventory.url == 'http://localhost:8889'
        assert config.bootstrap.on_error == 'stop'

    def test_empty_dir_uses_defaults(self, tmp_path):
        config = load_config(tmp_path)
        assert config.bootstrap == BootstrapSettings()
        assert config.config_dir == tmp_path

    def test_full_config(self, tmp_path):
        (tmp_path / 'config.yaml').write_text("""
inventory:
  url: https://inventory.example.com/
  verify_ssl: false
  timeout: 10
bootstrap:
  max_workers: 4
  node_timeout: 0
  on_error: continue
  abandon_stragglers: true
convergence:
  max_workers: 2
  node_timeout: 120
plugins_dir: plugins
""")
        (tmp_path / 'secrets.yaml').write_text("inventory_token: s3cret\n")

        config = load_config(tmp_path)
        assert config.inventory == InventorySettings(
            url='https://inventory.example.com',
            token='s3cret',
            verify_ssl=False,
            timeout=10,
        )
        assert config.bootstrap.max_workers == 4
        assert config.bootstrap.node_timeout == 0
        assert config.bootstrap.on_error == 'continue'
        assert config.bootstrap.abandon_stragglers is True
        assert config.convergence.max_workers == 2
        assert config.convergence.node_timeout == 120
        assert config.plugins_dir == tmp_path / 'plugins'

    def test_absolute_plugins_dir_kept(self, tmp_path):
        (tmp_path / 'config.yaml').write_text("plugins_dir: /srv/plugins\n")
        assert load_config(tmp_path).plugins_dir == Path('/srv/plugins')


class TestConfigValidation:
    """Test rejection of invalid values."""

    def test_bad_on_error(self):
        with pytest.raises(ConfigError, match='on_error'):
            DriverConfig.from_dict({'bootstrap': {'on_error': 'retry'}})

    @pytest.mark.parametrize('value', [0, -1, 'eight', True])
    def test_bad_max_workers(self, value):
        with pytest.raises(ConfigError, match='bootstrap.max_workers'):
            DriverConfig.from_dict({'bootstrap': {'max_workers': value}})

    def test_negative_timeout(self):
        with pytest.raises(ConfigError, match='convergence.node_timeout'):
            DriverConfig.from_dict({'convergence': {'node_timeout': -5}})

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("inventory: [unclosed\n")
        with pytest.raises(ConfigError, match='Invalid YAML'):
            _parse_yaml(path)

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError, match='must be a YAML object'):
            _parse_yaml(path)
