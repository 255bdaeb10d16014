"""
Tests for the sentinel-hub command
"""
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from sentinel_hub.__main__ import API_CONNECTIONS, main
from sentinel_hub.sinks import create_sink


def _write_config(tmp_path, sink_output='file'):
    path = tmp_path / 'config.yml'
    path.write_text(
        "hub:\n"
        f"  data_file: {tmp_path / 'agents.json'}\n"
        "  collection_interval: 15\n"
        "logging:\n"
        "  format: text\n"
        "sink:\n"
        f"  output: {sink_output}\n"
        f"  output_dir: {tmp_path / 'samples'}\n"
    )
    return path


@pytest.fixture(autouse=True)
def mock_setup_logging():
    with patch('sentinel_hub.__main__.setup_logging') as mock:
        yield mock


class TestHubCLI:

    @patch('sentinel_hub.__main__.run_server')
    def test_starts_with_file_sink(self, mock_run_server, tmp_path, mock_setup_logging):
        """Should wire the app from config and CLI overrides, then serve"""
        config = _write_config(tmp_path)

        result = CliRunner().invoke(main, ['--config', str(config), '--port', '8181'])

        assert result.exit_code == 0, result.output
        app = mock_run_server.call_args[0][0]
        assert mock_run_server.call_args.kwargs == {'host': '0.0.0.0', 'port': 8181}
        assert app.state.scheduler.interval == 15.0
        assert len(app.state.directory) == 0
        assert (tmp_path / 'samples').is_dir()
        mock_setup_logging.assert_called_once_with('sentinel-hub', level='INFO', log_file=None, use_json=False)

    @patch('sentinel_hub.__main__.run_server')
    def test_config_error_exits(self, mock_run_server, tmp_path, monkeypatch):
        """Should exit 1 when the postgres sink has no URL"""
        monkeypatch.delenv('SENTINEL_DB_URL', raising=False)
        config = _write_config(tmp_path, sink_output='postgres')

        result = CliRunner().invoke(main, ['--config', str(config)])

        assert result.exit_code == 1
        assert 'postgres_url' in result.output
        mock_run_server.assert_not_called()

    @patch('sentinel_hub.__main__.run_server')
    def test_corrupt_registry_exits(self, mock_run_server, tmp_path):
        """Should refuse to start over a malformed registry file"""
        config = _write_config(tmp_path)
        (tmp_path / 'agents.json').write_text('[{"broken": ')

        result = CliRunner().invoke(main, ['--config', str(config)])

        assert result.exit_code == 1
        assert 'Malformed registry file' in result.output
        mock_run_server.assert_not_called()

    @patch('sentinel_hub.__main__.run_server')
    def test_sink_pool_covers_collector_workers(self, mock_run_server, tmp_path):
        """Should size the sink's connection pool above the collector's worker count"""
        config = _write_config(tmp_path)

        with patch('sentinel_hub.__main__.create_sink', wraps=create_sink) as mock_create_sink:
            result = CliRunner().invoke(main, ['--config', str(config)])

        assert result.exit_code == 0, result.output
        scheduler = mock_run_server.call_args[0][0].state.scheduler
        assert mock_create_sink.call_args.kwargs['max_connections'] == scheduler.max_workers + API_CONNECTIONS
