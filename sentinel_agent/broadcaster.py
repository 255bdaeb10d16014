"""
mDNS advertisement so the hub can discover this agent.
"""
import logging
import socket
from typing import Optional

from zeroconf import IPVersion, ServiceInfo, Zeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = '_sentinel._tcp.local.'
TXT_RECORDS = {'txtv': '0', 'version': '1.0'}


def detect_ip() -> str:
    """Address of the interface that routes outward, loopback if none"""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            # UDP connect sends nothing; it only selects a route
            sock.connect(('8.8.8.8', 80))
            ip = sock.getsockname()[0]
            if ip:
                return ip
        except OSError:
            pass
    return '127.0.0.1'


class Broadcaster:
    """Registers `<hostname>._sentinel._tcp.local.` for the agent's port"""

    def __init__(self, port: int, hostname: Optional[str] = None, ip_address: Optional[str] = None):
        self.port = port
        self.hostname = hostname or socket.gethostname()
        self.ip_address = ip_address or detect_ip()
        self._zeroconf: Optional[Zeroconf] = None
        self._info: Optional[ServiceInfo] = None

    def service_info(self) -> ServiceInfo:
        return ServiceInfo(
            SERVICE_TYPE,
            f"{self.hostname}.{SERVICE_TYPE}",
            addresses=[socket.inet_aton(self.ip_address)],
            port=self.port,
            properties=TXT_RECORDS,
            server=f"{self.hostname}.local.",
        )

    def start(self) -> None:
        self._info = self.service_info()
        self._zeroconf = Zeroconf(ip_version=IPVersion.V4Only)
        self._zeroconf.register_service(self._info)
        logger.info(
            "mDNS service registered",
            extra={'context': {'instance': self.hostname, 'ip': self.ip_address, 'port': self.port}}
        )

    def stop(self) -> None:
        if self._zeroconf is None:
            return
        try:
            if self._info is not None:
                self._zeroconf.unregister_service(self._info)
        finally:
            self._zeroconf.close()
            self._zeroconf = None
            self._info = None
        logger.info("mDNS service stopped")
