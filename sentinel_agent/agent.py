#!/usr/bin/env python3
"""
Sentinel agent daemon - serves this host's metrics and advertises itself over mDNS.
"""

import socket
from typing import Optional

import click

from logcore import setup_logging
from sentinel_agent.broadcaster import Broadcaster
from sentinel_agent.collectors import SystemMetrics
from sentinel_agent.server import create_app, run_server


class SentinelAgent:
    """Metrics server plus optional mDNS advertisement"""

    def __init__(
        self,
        port: int = 9100,
        host: str = '0.0.0.0',
        broadcast: bool = True,
        cpu_interval: float = 1.0,
        hostname: Optional[str] = None
    ):
        self.port = port
        self.host = host
        self.hostname = hostname or socket.gethostname()
        self.collector = SystemMetrics(hostname=self.hostname, cpu_interval=cpu_interval)
        self.broadcaster = Broadcaster(port, hostname=self.hostname) if broadcast else None
        self.app = create_app(self.collector)

    def run(self):
        """Serve until interrupted; uvicorn handles SIGINT/SIGTERM"""
        click.echo(f"Starting Sentinel agent on {self.host}:{self.port} (hostname: {self.hostname})")

        if self.broadcaster is not None:
            self.broadcaster.start()

        try:
            run_server(self.app, host=self.host, port=self.port)
        finally:
            self._cleanup()

    def _cleanup(self):
        if self.broadcaster is not None:
            self.broadcaster.stop()
        click.echo("Agent stopped")


@click.command()
@click.option('--port', default=9100, type=click.IntRange(1, 65535), help='Port to listen on')
@click.option('--host', default='0.0.0.0', help='Host to bind to')
@click.option('--no-broadcast', is_flag=True, help='Do not advertise over mDNS')
@click.option('--cpu-interval', default=1.0, type=float, help='Seconds to sample CPU usage per request')
@click.option('--log-level', default='INFO', help='Log level')
def main(port: int, host: str, no_broadcast: bool, cpu_interval: float, log_level: str):
    """Run the Sentinel metrics agent"""
    setup_logging('sentinel-agent', level=log_level)

    agent = SentinelAgent(
        port=port,
        host=host,
        broadcast=not no_broadcast,
        cpu_interval=cpu_interval
    )
    agent.run()


if __name__ == '__main__':
    main()
