"""
Exception types raised by the Sentinel hub.
"""


class SentinelError(Exception):
    """Base class for hub errors"""


class ConfigError(SentinelError):
    """Configuration is missing or invalid"""


class AgentNotFoundError(SentinelError, LookupError):
    """No agent with the given id is registered"""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}")
        self.agent_id = agent_id


class DirectoryError(SentinelError):
    """Agent directory storage failure"""


class DirectoryLoadError(DirectoryError):
    """Registry file exists but cannot be parsed"""


class DirectoryPersistenceError(DirectoryError):
    """Registry file could not be written; the mutation was rolled back"""


class AgentUnreachableError(SentinelError):
    """Transport-level failure talking to an agent"""


class InvalidAgentResponseError(SentinelError):
    """Agent answered with a payload that could not be understood"""


class DiscoveryError(SentinelError):
    """Network discovery scan failed"""


class SinkError(SentinelError):
    """Time-series backend rejected a write or query"""
