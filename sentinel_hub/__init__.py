"""
sentinel_hub: central registry and metrics collector for Sentinel agents

Keeps a durable directory of agents, polls each one on a schedule, tracks
whether it is reachable and stores its samples for historical queries.
"""

from sentinel_hub.directory import AgentDirectory
from sentinel_hub.fetcher import AgentFetcher
from sentinel_hub.reconcile import reconcile
from sentinel_hub.scheduler import CollectionScheduler

__all__ = ['AgentDirectory', 'AgentFetcher', 'CollectionScheduler', 'reconcile']
__version__ = '1.0.0'
