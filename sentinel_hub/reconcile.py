"""
Filter discovery results down to agents the registry does not know yet.
"""
from typing import Iterable, List

from sentinel_hub.models import AgentRecord, DiscoveredAgent


def same_hostname(candidate: DiscoveredAgent, record: AgentRecord) -> bool:
    # The advertised instance name is the agent's hostname.
    return candidate.instance == record.hostname


def same_endpoint(candidate: DiscoveredAgent, record: AgentRecord) -> bool:
    return candidate.port == record.port and record.ip_address in candidate.ips


def is_registered(candidate: DiscoveredAgent, registered: Iterable[AgentRecord]) -> bool:
    return any(
        same_hostname(candidate, record) or same_endpoint(candidate, record)
        for record in registered
    )


def reconcile(discovered: List[DiscoveredAgent], registered: List[AgentRecord]) -> List[DiscoveredAgent]:
    """
    Return the discovered agents that match no registered record, in input order.

    A candidate matches a record when its instance name equals the record's
    hostname, or when one of its IPs and its port equal the record's address.
    """
    registered = list(registered)
    return [candidate for candidate in discovered if not is_registered(candidate, registered)]
