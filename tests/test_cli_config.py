"""Tests for client configuration."""

import json

import pytest

from client.config import Config, default_home
from common.exceptions import ConfigError


def test_config_creates_default_file(tmp_path):
    """Test that config file is created with defaults if missing."""
    config_path = tmp_path / '.bkp' / 'config.json'
    config = Config(config_path)

    assert config_path.exists()

    assert config.data['remotes'] == {}
    assert config.data['groups'] == {}
    assert config.data['default_group'] is None
    assert config.data['timeout'] == 30
    assert config.data['max_retries'] == 3
    assert config.data['retry_backoff_multiplier'] == 2
    assert config.home == config_path.parent


def test_config_loads_existing_file(tmp_path):
    """Test loading existing config file."""
    config_path = tmp_path / '.bkp' / 'config.json'
    config_path.parent.mkdir(parents=True)

    existing_data = {
        'node_name': 'laptop',
        'remotes': {'usb': {'url': 'file:///mnt/usb', 'upload_cost': 1, 'download_cost': 1}},
        'timeout': 10,
    }
    with open(config_path, 'w') as f:
        json.dump(existing_data, f)

    config = Config(config_path)

    assert config.data['node_name'] == 'laptop'
    assert config.get_remote('usb')['url'] == 'file:///mnt/usb'
    assert config.get_timeout() == 10
    assert config.data['max_retries'] == 3


def test_config_handles_corrupted_file(tmp_path):
    """Test recovery from corrupted config file."""
    config_path = tmp_path / '.bkp' / 'config.json'
    config_path.parent.mkdir(parents=True)

    with open(config_path, 'w') as f:
        f.write('{ invalid json content')

    config = Config(config_path)
    assert config.data['remotes'] == {}

    backup_path = config_path.with_suffix('.json.bak')
    assert backup_path.exists()


def test_config_default_home_from_env(tmp_path, monkeypatch):
    """BKP_HOME overrides the default state directory."""
    monkeypatch.setenv('BKP_HOME', str(tmp_path / 'state'))
    assert default_home() == tmp_path / 'state'
    assert Config().config_path == tmp_path / 'state' / 'config.json'


def test_add_remote_persists(temp_config):
    """Test adding a remote writes it to disk."""
    temp_config.add_remote('usb', 'file:///mnt/usb', upload_cost=2, download_cost=3, reliable=True)

    with open(temp_config.config_path, 'r') as f:
        data = json.load(f)
    assert data['remotes']['usb'] == {
        'url': 'file:///mnt/usb',
        'upload_cost': 2,
        'download_cost': 3,
        'reliable': True,
    }


@pytest.mark.parametrize("name, url, costs", [
    ('', 'file:///x', (1, 1)),
    ('bad', 'ftp://x', (1, 1)),
    ('neg', 'file:///x', (-1, 1)),
])
def test_add_remote_rejects_invalid(temp_config, name, url, costs):
    with pytest.raises(ConfigError):
        temp_config.add_remote(name, url, upload_cost=costs[0], download_cost=costs[1])


def test_add_remote_rejects_duplicate(temp_config):
    temp_config.add_remote('usb', 'file:///mnt/usb')
    with pytest.raises(ConfigError):
        temp_config.add_remote('usb', 'file:///mnt/other')


def test_remove_remote(temp_config):
    temp_config.add_remote('usb', 'file:///mnt/usb')
    temp_config.remove_remote('usb')
    assert temp_config.get_remotes() == {}
    with pytest.raises(ConfigError):
        temp_config.remove_remote('usb')


def test_remove_remote_still_in_group(temp_config):
    temp_config.add_remote('usb', 'file:///mnt/usb')
    temp_config.add_group('all', ['usb'])
    with pytest.raises(ConfigError, match="still a member"):
        temp_config.remove_remote('usb')


def test_first_group_becomes_default(temp_config):
    """Test that the first group added is the default."""
    temp_config.add_remote('a', 'file:///a')
    temp_config.add_remote('b', 'file:///b')
    temp_config.add_group('first', ['a'])
    temp_config.add_group('second', ['a', 'b'])

    assert temp_config.get_default_group() == 'first'
    assert temp_config.get_group() == ['a']
    assert temp_config.get_group('second') == ['a', 'b']


@pytest.mark.parametrize("members", [[], ['a', 'a'], ['missing']])
def test_add_group_rejects_invalid_members(temp_config, members):
    temp_config.add_remote('a', 'file:///a')
    with pytest.raises(ConfigError):
        temp_config.add_group('g', members)


def test_group_name_cannot_shadow_remote(temp_config):
    temp_config.add_remote('a', 'file:///a')
    with pytest.raises(ConfigError):
        temp_config.add_group('a', ['a'])


def test_get_group_without_any(temp_config):
    with pytest.raises(ConfigError):
        temp_config.get_group()


def test_head_per_node(temp_config):
    """Heads are tracked per node name."""
    assert temp_config.get_head() is None

    temp_config.set_head('ab' * 32)
    temp_config.set_head('cd' * 32, node_name='other')

    reloaded = Config(temp_config.config_path)
    assert reloaded.get_head() == 'ab' * 32
    assert reloaded.get_head('other') == 'cd' * 32


def test_config_get_retry_config(temp_config):
    """Test retry configuration retrieval."""
    retry_config = temp_config.get_retry_config()

    assert retry_config['max_retries'] == 3
    assert retry_config['retry_backoff_multiplier'] == 2
    assert retry_config['retry_base_delay'] == 1.0

    temp_config.data['max_retries'] = 5
    temp_config.data['retry_backoff_multiplier'] = 3

    retry_config = temp_config.get_retry_config()
    assert retry_config['max_retries'] == 5
    assert retry_config['retry_backoff_multiplier'] == 3


def test_config_directory_created_if_missing(tmp_path):
    """Test that config directory is created if it doesn't exist."""
    config_path = tmp_path / 'nested' / 'deep' / '.bkp' / 'config.json'

    assert not config_path.parent.exists()

    Config(config_path)
    assert config_path.parent.exists()
    assert config_path.exists()
