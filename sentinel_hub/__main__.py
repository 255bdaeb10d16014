"""
Allow running Sentinel Hub as a module: python -m sentinel_hub
"""
import sys
from typing import Optional

import click

from logcore import setup_logging
from sentinel_hub.api import create_app, run_server
from sentinel_hub.config import load_config
from sentinel_hub.directory import AgentDirectory
from sentinel_hub.discovery import Scanner
from sentinel_hub.errors import ConfigError, DirectoryLoadError, SinkError
from sentinel_hub.fetcher import AgentFetcher
from sentinel_hub.scheduler import CollectionScheduler
from sentinel_hub.sinks import create_sink

# Pool connections reserved for API history queries on top of the collector's workers
API_CONNECTIONS = 4


def build_app(config):
    """Wire the hub components together from a validated config"""
    directory = AgentDirectory(config.data_file)
    fetcher = AgentFetcher(directory, timeout=config.fetch_timeout)
    sink = create_sink(config.sink, max_connections=config.max_workers + API_CONNECTIONS)
    scheduler = CollectionScheduler(
        directory,
        fetcher,
        sink,
        interval=config.collection_interval,
        max_workers=config.max_workers
    )
    return create_app(
        directory,
        fetcher,
        sink,
        scanner=Scanner(),
        scheduler=scheduler,
        discovery_timeout=config.discovery_timeout,
        cors_origins=config.cors_origins
    )


@click.command()
@click.option('--config', 'config_path', type=click.Path(exists=True), default=None, help='Path to config.yml')
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', type=int, default=None, help='Port to bind to')
@click.option('--data', 'data_file', default=None, help='Agent registry file')
@click.option('--interval', 'collection_interval', type=float, default=None, help='Collection interval in seconds')
@click.option('--log-level', default=None, help='Log level (DEBUG, INFO, WARNING, ...)')
def main(
    config_path: Optional[str],
    host: Optional[str],
    port: Optional[int],
    data_file: Optional[str],
    collection_interval: Optional[float],
    log_level: Optional[str]
):
    """Run the Sentinel hub: agent registry, collector and API"""
    try:
        config = load_config(config_path).with_overrides(
            host=host,
            port=port,
            data_file=data_file,
            collection_interval=collection_interval,
            log_level=log_level
        ).validate()
        setup_logging(
            'sentinel-hub',
            level=config.logging.level,
            log_file=config.logging.file,
            use_json=config.logging.format == 'json'
        )
        app = build_app(config)
    except (ConfigError, DirectoryLoadError, SinkError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f'Starting Sentinel Hub on {config.host}:{config.port}')
    click.echo(f'Collection interval: {config.collection_interval}s, registry: {config.data_file}')
    click.echo(f'API documentation at http://localhost:{config.port}/docs')
    run_server(app, host=config.host, port=config.port)


if __name__ == '__main__':
    main()
