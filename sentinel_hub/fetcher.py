"""
HTTP client side of the hub: fetching agent snapshots and recording liveness.

The collection scheduler and the on-demand metrics proxy both record outcomes
through AgentFetcher.record_outcome(), so an agent's status is judged the same
way on both paths: any HTTP answer means the agent is online, a transport
failure means it is offline. Whether the body is a usable sample is decided separately.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import requests
from pydantic import ValidationError

from sentinel_hub.errors import (
    AgentNotFoundError,
    AgentUnreachableError,
    InvalidAgentResponseError,
)
from sentinel_hub.models import AgentRecord, AgentStatus, SampleSet

logger = logging.getLogger(__name__)

METRICS_PATH = '/metrics'
DEFAULT_FETCH_TIMEOUT = 5.0


def metrics_url(host: str, port: int) -> str:
    return f"http://{host}:{port}{METRICS_PATH}"


@dataclass
class FetchResult:
    """Outcome of one GET /metrics against an agent"""
    agent_id: str
    reachable: bool
    status_code: Optional[int] = None
    body: bytes = b''
    content_type: Optional[str] = None
    sample: Optional[SampleSet] = None
    error: Optional[str] = None

    @property
    def status(self) -> AgentStatus:
        return AgentStatus.ONLINE if self.reachable else AgentStatus.OFFLINE


def parse_sample(body: bytes) -> SampleSet:
    """Decode an agent's /metrics body. Raises InvalidAgentResponseError."""
    try:
        return SampleSet.model_validate_json(body)
    except ValidationError as e:
        raise InvalidAgentResponseError(f"Invalid metrics payload: {e.error_count()} error(s)") from e


class AgentFetcher:
    """Fetches metrics from agents with a bounded per-request timeout"""

    def __init__(self, directory, timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.directory = directory
        self.timeout = timeout

    def fetch(self, record: AgentRecord) -> FetchResult:
        """GET the agent's metrics. Never raises for agent-side problems."""
        url = metrics_url(record.ip_address, record.port)

        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.exceptions.Timeout:
            return FetchResult(
                agent_id=record.id,
                reachable=False,
                error=f"Timeout after {self.timeout}s"
            )
        except requests.exceptions.RequestException as e:
            return FetchResult(agent_id=record.id, reachable=False, error=str(e))

        result = FetchResult(
            agent_id=record.id,
            reachable=True,
            status_code=response.status_code,
            body=response.content,
            content_type=response.headers.get('Content-Type'),
        )

        if not 200 <= response.status_code < 300:
            result.error = f"HTTP {response.status_code}"
            return result

        try:
            result.sample = parse_sample(response.content)
        except InvalidAgentResponseError as e:
            result.error = str(e)

        return result

    def record_outcome(self, result: FetchResult) -> None:
        """
        Write the fetch outcome into the directory as a status transition.

        DirectoryPersistenceError propagates; an agent removed while the fetch
        was in flight is ignored.
        """
        if not result.reachable:
            logger.warning(
                "Agent unreachable",
                extra={'context': {'agent_id': result.agent_id, 'error': result.error}}
            )
        elif result.sample is None:
            logger.warning(
                "Agent returned unusable metrics",
                extra={'context': {'agent_id': result.agent_id, 'status_code': result.status_code, 'error': result.error}}
            )

        try:
            self.directory.update_status(result.agent_id, result.status)
        except AgentNotFoundError:
            logger.debug("Agent vanished before status update", extra={'context': {'agent_id': result.agent_id}})

    def poll(self, record: AgentRecord) -> FetchResult:
        """Fetch and record liveness"""
        result = self.fetch(record)
        self.record_outcome(result)
        return result

    def resolve_hostname(self, ip_address: str, port: int) -> str:
        """
        Ask an agent who it is before registering it.

        Raises:
            AgentUnreachableError: Nothing answered at ip_address:port
            InvalidAgentResponseError: Something answered but not like an agent
        """
        url = metrics_url(ip_address, port)
        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise AgentUnreachableError(f"Cannot reach agent at {url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise InvalidAgentResponseError(f"Agent at {url} answered HTTP {response.status_code}")

        return parse_sample(response.content).hostname
