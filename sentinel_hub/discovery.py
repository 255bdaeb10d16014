"""
mDNS discovery of Sentinel agents on the local network.
"""
import logging
import threading
from typing import List

from zeroconf import IPVersion, ServiceBrowser, ServiceListener, Zeroconf

from sentinel_hub.errors import DiscoveryError
from sentinel_hub.models import DiscoveredAgent

logger = logging.getLogger(__name__)

SERVICE_TYPE = '_sentinel._tcp.local.'
DEFAULT_SCAN_TIMEOUT = 3.0
RESOLVE_TIMEOUT_MS = 1000


def instance_name(service_name: str) -> str:
    """'web-1._sentinel._tcp.local.' -> 'web-1'"""
    suffix = '.' + SERVICE_TYPE
    if service_name.endswith(suffix):
        return service_name[:-len(suffix)]
    return service_name


class _BrowseCollector(ServiceListener):
    """Remembers every service name announced during a browse"""

    def __init__(self):
        self._lock = threading.Lock()
        self.names: List[str] = []

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        with self._lock:
            if name not in self.names:
                self.names.append(name)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.add_service(zc, type_, name)

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        pass

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self.names)


class Scanner:
    """Browses for agents advertising SERVICE_TYPE"""

    def __init__(self, resolve_timeout_ms: int = RESOLVE_TIMEOUT_MS):
        self.resolve_timeout_ms = resolve_timeout_ms

    def scan(self, timeout: float = DEFAULT_SCAN_TIMEOUT) -> List[DiscoveredAgent]:
        """
        Browse for `timeout` seconds and resolve what was seen.

        Entries without an IPv4 address are dropped. Raises DiscoveryError when
        the multicast socket cannot be opened.
        """
        try:
            zc = Zeroconf(ip_version=IPVersion.V4Only)
        except OSError as e:
            raise DiscoveryError(f"Cannot open mDNS socket: {e}") from e

        agents = []
        try:
            collector = _BrowseCollector()
            browser = ServiceBrowser(zc, SERVICE_TYPE, collector)
            threading.Event().wait(timeout)
            browser.cancel()

            for name in collector.snapshot():
                info = zc.get_service_info(SERVICE_TYPE, name, timeout=self.resolve_timeout_ms)
                if info is None:
                    continue

                ips = info.parsed_addresses(IPVersion.V4Only)
                if not ips:
                    continue

                agent = DiscoveredAgent(
                    hostname=info.server or '',
                    instance=instance_name(name),
                    port=info.port,
                    ips=ips,
                )
                agents.append(agent)
                logger.info(
                    "Discovered agent",
                    extra={'context': {'instance': agent.instance, 'ips': agent.ips, 'port': agent.port}}
                )
        finally:
            zc.close()

        return agents
