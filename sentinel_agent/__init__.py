"""
sentinel_agent: lightweight metrics agent

Serves a point-in-time snapshot of CPU, memory, disk and network usage over
HTTP and advertises itself on the local network for the Sentinel hub.
"""

from sentinel_agent.agent import SentinelAgent
from sentinel_agent.collectors import SystemMetrics, MetricsSnapshot

__all__ = ['SentinelAgent', 'SystemMetrics', 'MetricsSnapshot']
__version__ = '1.0.0'
