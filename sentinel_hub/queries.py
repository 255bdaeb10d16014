"""
SQL for the PostgreSQL time-series sink.

One table per measurement. Every row carries agent_id and hostname tags plus
the measurement's own tag columns (device, interface, ...) and value columns.
"""
from datetime import datetime
from typing import Dict, List, Tuple

# measurement -> (table, tag columns, field columns)
MEASUREMENT_COLUMNS: Dict[str, Tuple[str, Tuple[str, ...], Tuple[str, ...]]] = {
    'cpu': (
        'cpu_samples',
        (),
        ('usage_percent', 'core_count'),
    ),
    'memory': (
        'memory_samples',
        (),
        ('total', 'used', 'available', 'used_percent'),
    ),
    'disk': (
        'disk_samples',
        ('device', 'mount_point'),
        ('total', 'used', 'free', 'used_percent'),
    ),
    'network': (
        'network_samples',
        ('interface',),
        ('bytes_sent', 'bytes_recv', 'packets_sent', 'packets_recv'),
    ),
}

MEASUREMENTS = tuple(MEASUREMENT_COLUMNS)

# History rows are means over fixed windows, stamped with the window end
AGGREGATE_WINDOW_SECONDS = 30


def _parts(measurement: str) -> Tuple[str, Tuple[str, ...], Tuple[str, ...]]:
    try:
        return MEASUREMENT_COLUMNS[measurement]
    except KeyError:
        raise ValueError(
            f"Unknown measurement: {measurement}. Must be one of {list(MEASUREMENTS)}"
        ) from None


def _columns(measurement: str) -> Tuple[str, Tuple[str, ...]]:
    table, tags, fields = _parts(measurement)
    return table, tags + fields


def insert_sql(measurement: str) -> str:
    """INSERT statement for one measurement's rows"""
    table, columns = _columns(measurement)
    all_columns = ('timestamp', 'agent_id', 'hostname') + columns
    placeholders = ', '.join(['%s'] * len(all_columns))
    return f"INSERT INTO {table} ({', '.join(all_columns)}) VALUES ({placeholders})"


def get_measurement_history(conn, agent_id: str, measurement: str, since: datetime) -> List[dict]:
    """
    Get one agent's samples for a measurement as window means, oldest first

    Args:
        conn: Database connection (RealDictCursor rows)
        agent_id: Registry id the samples were written under
        measurement: One of MEASUREMENTS
        since: Start of the window

    Returns: List of rows with a `time` key (window end) plus tag columns and
        the mean of each field column
    """
    table, tags, fields = _parts(measurement)
    window = AGGREGATE_WINDOW_SECONDS
    group_columns = ('agent_id', 'hostname') + tags
    averages = ', '.join(f"AVG({field})::double precision AS {field}" for field in fields)

    query = f"""
        SELECT
            to_timestamp(floor(extract(epoch FROM timestamp) / {window}) * {window} + {window}) AS time,
            {', '.join(group_columns)},
            {averages}
        FROM {table}
        WHERE agent_id = %s
          AND timestamp >= %s
        GROUP BY 1, {', '.join(group_columns)}
        ORDER BY 1 ASC
    """

    with conn.cursor() as cur:
        cur.execute(query, (agent_id, since))
        return [dict(row) for row in cur.fetchall()]
