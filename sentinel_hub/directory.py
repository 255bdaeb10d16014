"""
Agent directory: the hub's durable, thread-safe registry of agents.

The full set of records is rewritten to a JSON file after every mutation. Writes
go to a temporary file in the same directory which is then renamed over the old
one, so a crash mid-write leaves the previous version intact.
"""
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from sentinel_hub.errors import (
    AgentNotFoundError,
    DirectoryLoadError,
    DirectoryPersistenceError,
)
from sentinel_hub.models import AgentRecord, AgentStatus, make_agent_id, utc_now

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class AgentDirectory:
    """
    Registry of agents keyed by id.

    Callers only ever receive copies of records; the underlying mapping is never
    exposed. Every mutating call holds the exclusive lock while it updates memory
    and rewrites the file, so concurrent status updates from the scheduler and
    from request handlers are serialized.
    """

    def __init__(self, path):
        self.path = Path(path)
        self._agents: Dict[str, AgentRecord] = {}
        self._lock = ReadWriteLock()
        self._load()

    def _load(self) -> None:
        try:
            raw = self.path.read_text(encoding='utf-8')
        except FileNotFoundError:
            logger.info("No registry file, starting empty", extra={'context': {'path': str(self.path)}})
            return
        except (OSError, UnicodeDecodeError) as e:
            raise DirectoryLoadError(f"Cannot read registry file {self.path}: {e}") from e

        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise DirectoryLoadError(f"Registry file {self.path} must contain a JSON array")
            records = [AgentRecord.model_validate(item) for item in data]
        except (json.JSONDecodeError, ValidationError) as e:
            raise DirectoryLoadError(f"Malformed registry file {self.path}: {e}") from e

        for record in records:
            self._agents[record.id] = record

        logger.info(
            "Loaded agent registry",
            extra={'context': {'path': str(self.path), 'agents': len(self._agents)}}
        )

    def _save(self) -> None:
        """Rewrite the registry file from the in-memory set. Caller holds the write lock."""
        payload = json.dumps(
            [record.model_dump(mode='json') for record in self._agents.values()],
            indent=2
        )

        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix='.tmp', dir=directory)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise DirectoryPersistenceError(f"Cannot write registry file {self.path}: {e}") from e

    def _commit(self, agent_id: str, previous: Optional[AgentRecord]) -> None:
        """Persist, restoring `previous` for agent_id if the write fails."""
        try:
            self._save()
        except DirectoryPersistenceError:
            if previous is None:
                self._agents.pop(agent_id, None)
            else:
                self._agents[agent_id] = previous
            logger.error(
                "Registry write failed, change rolled back",
                exc_info=True,
                extra={'context': {'agent_id': agent_id}}
            )
            raise

    def add(self, hostname: str, ip_address: str, port: int, agent_id: Optional[str] = None) -> AgentRecord:
        """Insert or overwrite an agent. The id defaults to hostname:port."""
        now = utc_now()
        record = AgentRecord(
            id=agent_id or make_agent_id(hostname, port),
            hostname=hostname,
            ip_address=ip_address,
            port=port,
            added_at=now,
            last_seen=now,
            status=AgentStatus.ONLINE,
        )

        with self._lock.write():
            previous = self._agents.get(record.id)
            self._agents[record.id] = record
            self._commit(record.id, previous)

        logger.info(
            "Agent added",
            extra={'context': {
                'agent_id': record.id,
                'ip_address': record.ip_address,
                'port': record.port,
                'replaced': previous is not None,
            }}
        )
        return record.model_copy()

    def get(self, agent_id: str) -> AgentRecord:
        with self._lock.read():
            record = self._agents.get(agent_id)
            if record is None:
                raise AgentNotFoundError(agent_id)
            return record.model_copy()

    def list(self) -> List[AgentRecord]:
        with self._lock.read():
            return [record.model_copy() for record in self._agents.values()]

    def remove(self, agent_id: str) -> None:
        """Remove an agent. Unknown ids are ignored; the file is rewritten either way."""
        with self._lock.write():
            previous = self._agents.pop(agent_id, None)
            self._commit(agent_id, previous)

        if previous is not None:
            logger.info("Agent removed", extra={'context': {'agent_id': agent_id}})

    def update_status(self, agent_id: str, status: AgentStatus) -> AgentRecord:
        status = AgentStatus(status)

        with self._lock.write():
            previous = self._agents.get(agent_id)
            if previous is None:
                raise AgentNotFoundError(agent_id)
            updated = previous.model_copy(update={'status': status, 'last_seen': utc_now()})
            self._agents[agent_id] = updated
            self._commit(agent_id, previous)

        if previous.status != status:
            logger.info(
                "Agent status changed",
                extra={'context': {'agent_id': agent_id, 'from': previous.status.value, 'to': status.value}}
            )
        return updated.model_copy()

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._agents)
