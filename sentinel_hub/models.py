"""
Data model for the hub: registry records, discovery candidates and samples.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_agent_id(hostname: str, port: int) -> str:
    return f"{hostname}:{port}"


class AgentStatus(str, Enum):
    ONLINE = 'online'
    OFFLINE = 'offline'
    UNKNOWN = 'unknown'


class AgentRecord(BaseModel):
    """A registered agent. Only AgentDirectory creates or mutates these."""
    id: str = Field(min_length=1)
    hostname: str = Field(min_length=1)
    ip_address: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    added_at: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)
    status: AgentStatus = AgentStatus.UNKNOWN


class DiscoveredAgent(BaseModel):
    """An agent seen during a discovery scan. Never persisted."""
    hostname: str
    instance: str
    port: int
    ips: List[str] = Field(default_factory=list)


# Wire format of an agent's GET /metrics response. Missing numbers decode as 0
# and missing lists as empty; wrong types fail validation.

class CPUSample(BaseModel):
    usage_percent: float = 0.0
    core_count: int = 0


class MemorySample(BaseModel):
    total: int = 0
    used: int = 0
    available: int = 0
    used_percent: float = 0.0


class DiskSample(BaseModel):
    device: str = ''
    mount_point: str = ''
    total: int = 0
    used: int = 0
    free: int = 0
    used_percent: float = 0.0


class NetworkSample(BaseModel):
    interface: str = ''
    bytes_sent: int = 0
    bytes_recv: int = 0
    packets_sent: int = 0
    packets_recv: int = 0


class SampleSet(BaseModel):
    """One agent's metrics snapshot, parsed from its /metrics response"""
    hostname: str = Field(min_length=1)
    cpu: CPUSample = Field(default_factory=CPUSample)
    memory: MemorySample = Field(default_factory=MemorySample)
    disk: List[DiskSample] = Field(default_factory=list)
    network: List[NetworkSample] = Field(default_factory=list)

    @field_validator('cpu', 'memory', 'disk', 'network', mode='before')
    @classmethod
    def _null_as_default(cls, value, info):
        if value is None:
            return [] if info.field_name in ('disk', 'network') else {}
        return value


class AgentCreateRequest(BaseModel):
    ip_address: str = Field(min_length=1, max_length=255)
    port: int = Field(ge=1, le=65535)


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime


class DeleteResponse(BaseModel):
    status: str = 'deleted'


class CycleReport(BaseModel):
    """Outcome of one collection cycle"""
    started_at: datetime
    agents: int = 0
    online: int = 0
    offline: int = 0
    samples_written: int = 0
    duration_ms: Optional[float] = None
