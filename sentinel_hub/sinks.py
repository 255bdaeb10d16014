"""
Time-series sinks for agent samples.

PostgresSink writes one row per measurement group into PostgreSQL tables;
FileSink appends the same rows to daily-rotated JSONL files for setups without
a database. Both answer history queries for the /api/history endpoint.
"""
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List

import psycopg2
from psycopg2.extras import RealDictCursor, execute_batch
from psycopg2.pool import ThreadedConnectionPool

from sentinel_hub.errors import SinkError
from sentinel_hub.models import SampleSet
from sentinel_hub.queries import (
    AGGREGATE_WINDOW_SECONDS,
    MEASUREMENT_COLUMNS,
    MEASUREMENTS,
    get_measurement_history,
    insert_sql,
)

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / 'schema.sql'
DEFAULT_MAX_CONNECTIONS = 5


def sample_rows(agent_id: str, sample: SampleSet, timestamp: datetime) -> Dict[str, List[dict]]:
    """
    Split a sample into per-measurement rows sharing one timestamp.

    Returns: {'cpu': [row], 'memory': [row], 'disk': [row per fs], 'network': [row per iface]}
    """
    base = {'timestamp': timestamp, 'agent_id': agent_id, 'hostname': sample.hostname}

    return {
        'cpu': [dict(base, **sample.cpu.model_dump())],
        'memory': [dict(base, **sample.memory.model_dump())],
        'disk': [dict(base, **disk.model_dump()) for disk in sample.disk],
        'network': [dict(base, **net.model_dump()) for net in sample.network],
    }


def window_means(records: List[dict], measurement: str, window: int = AGGREGATE_WINDOW_SECONDS) -> List[dict]:
    """
    Collapse raw records into per-series means over fixed `window`-second buckets.

    Series are told apart by agent_id, hostname and the measurement's tags. Each
    output row is stamped with the end of its bucket; rows are oldest first.
    """
    _, tags, fields = MEASUREMENT_COLUMNS[measurement]
    group_columns = ('agent_id', 'hostname') + tags

    buckets: Dict[tuple, List[dict]] = {}
    for record in records:
        epoch = record['time'].timestamp()
        end = datetime.fromtimestamp(epoch - epoch % window + window, tz=timezone.utc)
        key = (end,) + tuple(record.get(column) for column in group_columns)
        buckets.setdefault(key, []).append(record)

    rows = []
    for key, members in buckets.items():
        row = dict(zip(('time',) + group_columns, key))
        for name in fields:
            row[name] = sum(member.get(name, 0) for member in members) / len(members)
        rows.append(row)

    rows.sort(key=lambda r: r['time'])
    return rows


def _check_measurement(measurement: str) -> None:
    if measurement not in MEASUREMENT_COLUMNS:
        raise ValueError(
            f"Unknown measurement: {measurement}. Must be one of {list(MEASUREMENTS)}"
        )


class TimeSeriesSink:
    """Interface shared by the sinks"""

    def write(self, agent_id: str, sample: SampleSet, timestamp: datetime) -> int:
        """Store one sample; returns the number of records written"""
        raise NotImplementedError

    def query(self, agent_id: str, measurement: str, duration: timedelta) -> List[dict]:
        """Window means for one agent and measurement over the last `duration`, oldest first"""
        raise NotImplementedError

    def close(self) -> None:
        pass


class PostgresSink(TimeSeriesSink):
    """
    Writes samples to PostgreSQL with connection pooling.

    ThreadedConnectionPool raises PoolError when every connection is out, so
    callers first take one of `max_connections` slots and block until a
    connection is free.
    """

    def __init__(self, database_url: str, min_connections: int = 1, max_connections: int = DEFAULT_MAX_CONNECTIONS):
        self._slots = threading.BoundedSemaphore(max_connections)
        try:
            self.pool = ThreadedConnectionPool(
                min_connections,
                max_connections,
                database_url,
                cursor_factory=RealDictCursor
            )
        except psycopg2.Error as e:
            raise SinkError(f"Cannot connect to PostgreSQL: {e}") from e

    @contextmanager
    def get_connection(self):
        """Get a connection from the pool, waiting while all are in use"""
        with self._slots:
            conn = self.pool.getconn()
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                self.pool.putconn(conn)

    def ensure_schema(self) -> None:
        """Create the sample tables if they do not exist"""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(SCHEMA_PATH.read_text())
        except psycopg2.Error as e:
            raise SinkError(f"Cannot apply schema: {e}") from e

    def write(self, agent_id: str, sample: SampleSet, timestamp: datetime) -> int:
        rows = sample_rows(agent_id, sample, timestamp)
        written = 0

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    for measurement, records in rows.items():
                        if not records:
                            continue
                        _, tags, fields = MEASUREMENT_COLUMNS[measurement]
                        columns = ('timestamp', 'agent_id', 'hostname') + tags + fields
                        values = [tuple(r[c] for c in columns) for r in records]
                        execute_batch(cur, insert_sql(measurement), values)
                        written += len(values)
        except psycopg2.Error as e:
            raise SinkError(f"Failed to write samples for {agent_id}: {e}") from e

        return written

    def query(self, agent_id: str, measurement: str, duration: timedelta) -> List[dict]:
        _check_measurement(measurement)
        since = datetime.now(timezone.utc) - duration

        try:
            with self.get_connection() as conn:
                return get_measurement_history(conn, agent_id, measurement, since)
        except psycopg2.Error as e:
            raise SinkError(f"Failed to query {measurement} for {agent_id}: {e}") from e

    def close(self):
        """Close all connections in the pool"""
        self.pool.closeall()


class FileSink(TimeSeriesSink):
    """Appends samples to daily-rotated JSONL files, one file per measurement per day"""

    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)
        self._lock = threading.Lock()
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"Cannot create output directory {self.output_dir}: {e}") from e

    def _get_path(self, measurement: str, day: datetime) -> Path:
        return self.output_dir / f"{measurement}-{day.strftime('%Y-%m-%d')}.jsonl"

    def write(self, agent_id: str, sample: SampleSet, timestamp: datetime) -> int:
        rows = sample_rows(agent_id, sample, timestamp)
        written = 0

        try:
            with self._lock:
                for measurement, records in rows.items():
                    if not records:
                        continue
                    with open(self._get_path(measurement, timestamp), 'a') as f:
                        for record in records:
                            f.write(json.dumps(record, default=str) + '\n')
                    written += len(records)
        except OSError as e:
            raise SinkError(f"Failed to write samples for {agent_id}: {e}") from e

        return written

    def query(self, agent_id: str, measurement: str, duration: timedelta) -> List[dict]:
        _check_measurement(measurement)
        now = datetime.now(timezone.utc)
        since = now - duration

        records = []
        day = since
        while day.date() <= now.date():
            path = self._get_path(measurement, day)
            day += timedelta(days=1)
            if not path.exists():
                continue
            try:
                with open(path) as f:
                    lines = f.readlines()
            except OSError as e:
                raise SinkError(f"Failed to read {path}: {e}") from e

            for line in lines:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                    record_time = datetime.fromisoformat(record.pop('timestamp'))
                except (ValueError, KeyError):
                    logger.warning("Skipping corrupt sample line", extra={'context': {'path': str(path)}})
                    continue
                if record.get('agent_id') != agent_id or record_time < since:
                    continue
                records.append(dict(time=record_time, **record))

        return window_means(records, measurement)


def create_sink(sink_config, max_connections: int = DEFAULT_MAX_CONNECTIONS) -> TimeSeriesSink:
    """
    Build the sink selected by the `sink` config section.

    max_connections bounds the PostgreSQL pool; size it for every thread that
    may write or query at once.
    """
    if sink_config.output == 'file':
        logger.info("Using JSONL file sink", extra={'context': {'output_dir': sink_config.output_dir}})
        return FileSink(sink_config.output_dir)

    sink = PostgresSink(sink_config.postgres_url, max_connections=max_connections)
    sink.ensure_schema()
    logger.info("Using PostgreSQL sink")
    return sink
