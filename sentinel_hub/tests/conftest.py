"""
Shared fixtures for hub tests.
"""

import json
from unittest.mock import Mock

import pytest

from sentinel_hub.directory import AgentDirectory
from sentinel_hub.fetcher import AgentFetcher


def _payload(hostname='web-1'):
    return {
        'timestamp': '2026-10-19T10:00:00Z',
        'hostname': hostname,
        'uptime': 3600,
        'cpu': {'usage_percent': 12.5, 'core_count': 4, 'load_avg': [0.1, 0.2, 0.3]},
        'memory': {'total': 8000, 'used': 4000, 'available': 4000, 'used_percent': 50.0},
        'disk': [
            {'device': '/dev/sda1', 'mount_point': '/', 'fs_type': 'ext4',
             'total': 1000, 'used': 250, 'free': 750, 'used_percent': 25.0},
        ],
        'network': [
            {'interface': 'eth0', 'bytes_sent': 10, 'bytes_recv': 20,
             'packets_sent': 1, 'packets_recv': 2},
        ],
    }


@pytest.fixture
def agent_payload():
    """Factory for a valid agent /metrics document"""
    return _payload


@pytest.fixture
def make_response():
    """Factory for fake requests.Response objects"""
    def factory(status_code=200, payload=None, body=None):
        response = Mock()
        response.status_code = status_code
        if body is None:
            body = json.dumps(payload if payload is not None else _payload()).encode()
        response.content = body
        response.headers = {'Content-Type': 'application/json'}
        return response
    return factory


@pytest.fixture
def registry_path(tmp_path):
    return tmp_path / 'agents.json'


@pytest.fixture
def directory(registry_path):
    return AgentDirectory(registry_path)


@pytest.fixture
def fetcher(directory):
    return AgentFetcher(directory, timeout=2.0)
