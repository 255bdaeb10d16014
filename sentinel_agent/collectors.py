"""
System metrics collection for the /metrics endpoint.
"""

import os
import socket
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import psutil

LOOPBACK_INTERFACES = ('lo', 'lo0')


@dataclass
class CPUMetrics:
    usage_percent: float
    core_count: int
    load_avg: Optional[List[float]] = None


@dataclass
class MemoryMetrics:
    total: int
    available: int
    used: int
    used_percent: float


@dataclass
class DiskMetrics:
    device: str
    mount_point: str
    fs_type: str
    total: int
    used: int
    free: int
    used_percent: float


@dataclass
class NetworkMetrics:
    interface: str
    bytes_sent: int
    bytes_recv: int
    packets_sent: int
    packets_recv: int


@dataclass
class MetricsSnapshot:
    """Everything an agent reports in one GET /metrics"""
    timestamp: datetime
    hostname: str
    uptime: int
    cpu: CPUMetrics
    memory: MemoryMetrics
    disk: List[DiskMetrics] = field(default_factory=list)
    network: List[NetworkMetrics] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        if data['cpu']['load_avg'] is None:
            del data['cpu']['load_avg']
        return data


class SystemMetrics:
    """Collects system-level metrics using psutil"""

    def __init__(self, hostname: Optional[str] = None, cpu_interval: float = 1.0):
        self.hostname = hostname or socket.gethostname()
        self.cpu_interval = cpu_interval

    def collect(self) -> MetricsSnapshot:
        """Collect current system metrics"""
        return MetricsSnapshot(
            timestamp=datetime.now(timezone.utc),
            hostname=self.hostname,
            uptime=int(time.time() - psutil.boot_time()),
            cpu=self._cpu(),
            memory=self._memory(),
            disk=self._disks(),
            network=self._network(),
        )

    def _cpu(self) -> CPUMetrics:
        # Blocks for cpu_interval seconds to measure usage
        usage = psutil.cpu_percent(interval=self.cpu_interval)

        load_avg = None
        if os.name != 'nt':
            load_avg = list(psutil.getloadavg())

        return CPUMetrics(
            usage_percent=usage,
            core_count=psutil.cpu_count(logical=True) or 0,
            load_avg=load_avg,
        )

    def _memory(self) -> MemoryMetrics:
        mem = psutil.virtual_memory()
        return MemoryMetrics(
            total=mem.total,
            available=mem.available,
            used=mem.used,
            used_percent=mem.percent,
        )

    def _disks(self) -> List[DiskMetrics]:
        disks = []
        for partition in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError):
                # Unmounted media, restricted mounts
                continue

            disks.append(DiskMetrics(
                device=partition.device,
                mount_point=partition.mountpoint,
                fs_type=partition.fstype,
                total=usage.total,
                used=usage.used,
                free=usage.free,
                used_percent=usage.percent,
            ))
        return disks

    def _network(self) -> List[NetworkMetrics]:
        counters = psutil.net_io_counters(pernic=True)
        return [
            NetworkMetrics(
                interface=name,
                bytes_sent=io.bytes_sent,
                bytes_recv=io.bytes_recv,
                packets_sent=io.packets_sent,
                packets_recv=io.packets_recv,
            )
            for name, io in counters.items()
            if name not in LOOPBACK_INTERFACES
        ]
