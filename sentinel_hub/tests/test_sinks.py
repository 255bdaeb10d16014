"""
Tests for the time-series sinks and their SQL
"""
import json
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from sentinel_hub.config import SinkConfig
from sentinel_hub.errors import SinkError
from sentinel_hub.fetcher import parse_sample
from sentinel_hub.queries import MEASUREMENTS, get_measurement_history, insert_sql
from sentinel_hub.sinks import FileSink, PostgresSink, create_sink, sample_rows, window_means


@pytest.fixture
def sample(agent_payload):
    return parse_sample(json.dumps(agent_payload('web-1')).encode())


def _now():
    return datetime.now(timezone.utc)


class TestSampleRows:

    def test_rows_share_tags_and_timestamp(self, sample):
        ts = _now()

        rows = sample_rows('web-1:9100', sample, ts)

        assert set(rows) == set(MEASUREMENTS)
        for records in rows.values():
            for record in records:
                assert record['timestamp'] == ts
                assert record['agent_id'] == 'web-1:9100'
                assert record['hostname'] == 'web-1'

    def test_one_row_per_disk_and_interface(self, sample):
        rows = sample_rows('web-1:9100', sample, _now())

        assert len(rows['cpu']) == 1
        assert rows['disk'][0]['mount_point'] == '/'
        assert rows['network'][0]['bytes_recv'] == 20


class TestWindowMeans:

    def test_series_kept_apart_by_tags(self):
        """Should average per disk, not across disks"""
        start = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
        records = [
            {'time': start + timedelta(seconds=s), 'agent_id': 'a', 'hostname': 'a',
             'device': dev, 'mount_point': mount, 'total': 100, 'used': used, 'free': 100 - used,
             'used_percent': float(used)}
            for s, dev, mount, used in [
                (5, '/dev/sda1', '/', 10),
                (25, '/dev/sda1', '/', 30),
                (10, '/dev/sdb1', '/data', 80),
                (35, '/dev/sda1', '/', 50),
            ]
        ]

        rows = window_means(records, 'disk')

        first_window = [r for r in rows if r['time'] == start + timedelta(seconds=30)]
        assert {r['device']: r['used'] for r in first_window} == {'/dev/sda1': 20.0, '/dev/sdb1': 80.0}
        assert rows[-1]['time'] == start + timedelta(seconds=60)
        assert rows[-1]['used'] == 50.0
        assert [r['time'] for r in rows] == sorted(r['time'] for r in rows)

    def test_empty(self):
        assert window_means([], 'cpu') == []


class TestQueries:

    def test_insert_sql(self):
        sql = insert_sql('network')

        assert sql.startswith('INSERT INTO network_samples (timestamp, agent_id, hostname, interface, bytes_sent')
        assert sql.count('%s') == 8

    def test_insert_unknown_measurement(self):
        with pytest.raises(ValueError, match='Unknown measurement'):
            insert_sql('gpu')

    def test_history_query(self):
        conn = MagicMock()
        cursor = conn.cursor.return_value.__enter__.return_value
        since = _now() - timedelta(hours=1)
        cursor.fetchall.return_value = [{'time': since, 'agent_id': 'a', 'hostname': 'a', 'usage_percent': 1.0}]

        rows = get_measurement_history(conn, 'a', 'cpu', since)

        query, params = cursor.execute.call_args[0]
        assert 'FROM cpu_samples' in query
        assert 'AVG(usage_percent)::double precision AS usage_percent' in query
        assert 'GROUP BY 1, agent_id, hostname' in query
        assert 'ORDER BY 1 ASC' in query
        assert params == ('a', since)
        assert rows[0]['usage_percent'] == 1.0


class TestFileSink:
    """Test the JSONL file sink"""

    def test_write_creates_daily_files(self, tmp_path, sample):
        sink = FileSink(str(tmp_path))
        ts = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

        written = sink.write('web-1:9100', sample, ts)

        assert written == 4
        assert (tmp_path / 'cpu-2026-10-19.jsonl').exists()
        assert (tmp_path / 'network-2026-10-19.jsonl').exists()

    def test_query_filters_by_agent_and_window(self, tmp_path, sample):
        sink = FileSink(str(tmp_path))
        now = _now()
        sink.write('web-1:9100', sample, now - timedelta(hours=3))
        sink.write('web-1:9100', sample, now - timedelta(minutes=10))
        sink.write('other:9100', sample, now - timedelta(minutes=5))

        records = sink.query('web-1:9100', 'cpu', timedelta(hours=1))

        assert len(records) == 1
        assert records[0]['agent_id'] == 'web-1:9100'
        assert records[0]['usage_percent'] == 12.5
        assert records[0]['time'] >= now - timedelta(hours=1)

    def test_query_sorted_oldest_first(self, tmp_path, sample):
        sink = FileSink(str(tmp_path))
        now = _now()
        sink.write('web-1:9100', sample, now - timedelta(minutes=1))
        sink.write('web-1:9100', sample, now - timedelta(minutes=20))

        times = [r['time'] for r in sink.query('web-1:9100', 'memory', timedelta(hours=1))]

        assert times == sorted(times)
        assert len(times) == 2

    def test_query_skips_corrupt_lines(self, tmp_path, sample):
        sink = FileSink(str(tmp_path))
        now = _now()
        sink.write('web-1:9100', sample, now)
        with open(tmp_path / f"cpu-{now.strftime('%Y-%m-%d')}.jsonl", 'a') as f:
            f.write('garbage\n{"no_timestamp": true}\n')

        assert len(sink.query('web-1:9100', 'cpu', timedelta(hours=1))) == 1

    def test_query_averages_within_window(self, tmp_path, sample):
        """Should return one mean row per 30 second window"""
        sink = FileSink(str(tmp_path))
        epoch = (_now() - timedelta(minutes=10)).timestamp()
        window_start = datetime.fromtimestamp(epoch - epoch % 30, tz=timezone.utc)
        busy = sample.model_copy(update={'cpu': sample.cpu.model_copy(update={'usage_percent': 37.5})})
        sink.write('web-1:9100', sample, window_start + timedelta(seconds=1))
        sink.write('web-1:9100', busy, window_start + timedelta(seconds=20))

        records = sink.query('web-1:9100', 'cpu', timedelta(hours=1))

        assert len(records) == 1
        assert records[0]['usage_percent'] == 25.0
        assert records[0]['time'] == window_start + timedelta(seconds=30)

    def test_query_unknown_measurement(self, tmp_path):
        with pytest.raises(ValueError):
            FileSink(str(tmp_path)).query('web-1:9100', 'gpu', timedelta(hours=1))

    def test_query_without_data(self, tmp_path):
        assert FileSink(str(tmp_path)).query('web-1:9100', 'disk', timedelta(days=2)) == []


class TestPostgresSink:
    """Test the PostgreSQL sink against a mocked pool"""

    @patch('sentinel_hub.sinks.ThreadedConnectionPool')
    def test_connect_failure(self, mock_pool):
        mock_pool.side_effect = psycopg2.OperationalError('no route')

        with pytest.raises(SinkError, match='Cannot connect'):
            PostgresSink('postgresql://localhost/sentinel')

    @patch('sentinel_hub.sinks.execute_batch')
    @patch('sentinel_hub.sinks.ThreadedConnectionPool')
    def test_write_batches_each_measurement(self, mock_pool, mock_batch, sample):
        conn = mock_pool.return_value.getconn.return_value
        sink = PostgresSink('postgresql://localhost/sentinel')
        ts = _now()

        written = sink.write('web-1:9100', sample, ts)

        assert written == 4
        assert mock_batch.call_count == 4
        statements = [c.args[1] for c in mock_batch.call_args_list]
        assert any('INTO disk_samples' in s for s in statements)
        disk_values = next(c.args[2] for c in mock_batch.call_args_list if 'disk_samples' in c.args[1])
        assert disk_values[0][:5] == (ts, 'web-1:9100', 'web-1', '/dev/sda1', '/')
        conn.commit.assert_called_once()
        mock_pool.return_value.putconn.assert_called_once_with(conn)

    @patch('sentinel_hub.sinks.execute_batch')
    @patch('sentinel_hub.sinks.ThreadedConnectionPool')
    def test_write_error_rolls_back(self, mock_pool, mock_batch, sample):
        conn = mock_pool.return_value.getconn.return_value
        mock_batch.side_effect = psycopg2.DatabaseError('relation missing')
        sink = PostgresSink('postgresql://localhost/sentinel')

        with pytest.raises(SinkError):
            sink.write('web-1:9100', sample, _now())

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    @patch('sentinel_hub.sinks.execute_batch')
    @patch('psycopg2.connect')
    def test_concurrent_writes_beyond_pool_size_wait(self, mock_connect, mock_batch, sample):
        """Should queue writers for a connection instead of failing when the pool is exhausted"""
        mock_connect.side_effect = lambda *args, **kwargs: MagicMock()
        sink = PostgresSink('postgresql://localhost/sentinel', max_connections=2)
        lock = threading.Lock()
        state = {'active': 0, 'peak': 0}

        def slow_batch(cur, sql, values):
            with lock:
                state['active'] += 1
                state['peak'] = max(state['peak'], state['active'])
            threading.Event().wait(0.02)
            with lock:
                state['active'] -= 1

        mock_batch.side_effect = slow_batch
        errors = []

        def write(n):
            try:
                sink.write(f"a{n}:9100", sample, _now())
            except SinkError as e:
                errors.append(str(e))

        threads = [threading.Thread(target=write, args=(n,)) for n in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert mock_batch.call_count == 6 * 4
        assert state['peak'] <= 2

    @patch('sentinel_hub.sinks.ThreadedConnectionPool')
    def test_query_uses_window(self, mock_pool):
        conn = mock_pool.return_value.getconn.return_value
        cursor = conn.cursor.return_value.__enter__.return_value
        cursor.fetchall.return_value = []
        sink = PostgresSink('postgresql://localhost/sentinel')

        before = _now()
        assert sink.query('web-1:9100', 'cpu', timedelta(minutes=15)) == []

        _, params = cursor.execute.call_args[0]
        assert params[0] == 'web-1:9100'
        assert before - timedelta(minutes=15, seconds=1) <= params[1] <= _now() - timedelta(minutes=15)

    @patch('sentinel_hub.sinks.ThreadedConnectionPool')
    def test_query_unknown_measurement(self, mock_pool):
        sink = PostgresSink('postgresql://localhost/sentinel')

        with pytest.raises(ValueError):
            sink.query('web-1:9100', 'gpu', timedelta(hours=1))

    @patch('sentinel_hub.sinks.ThreadedConnectionPool')
    def test_ensure_schema_executes_ddl(self, mock_pool):
        conn = mock_pool.return_value.getconn.return_value
        cursor = conn.cursor.return_value.__enter__.return_value

        PostgresSink('postgresql://localhost/sentinel').ensure_schema()

        ddl = cursor.execute.call_args[0][0]
        assert 'CREATE TABLE IF NOT EXISTS cpu_samples' in ddl

    @patch('sentinel_hub.sinks.ThreadedConnectionPool')
    def test_close(self, mock_pool):
        PostgresSink('postgresql://localhost/sentinel').close()

        mock_pool.return_value.closeall.assert_called_once()


class TestCreateSink:

    def test_file_output(self, tmp_path):
        sink = create_sink(SinkConfig(output='file', output_dir=str(tmp_path / 'samples')))

        assert isinstance(sink, FileSink)
        assert (tmp_path / 'samples').is_dir()

    @patch('sentinel_hub.sinks.ThreadedConnectionPool')
    def test_postgres_output_applies_schema(self, mock_pool):
        conn = mock_pool.return_value.getconn.return_value
        cursor = conn.cursor.return_value.__enter__.return_value

        sink = create_sink(
            SinkConfig(output='postgres', postgres_url='postgresql://localhost/sentinel'),
            max_connections=20
        )

        assert isinstance(sink, PostgresSink)
        cursor.execute.assert_called_once()
        assert mock_pool.call_args[0][:2] == (1, 20)
