"""Connection manager tests."""
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from pgpool2_exporter.infrastructure.db import (
    ConnectionManager,
    PgpoolConnectionError,
    connect,
    probe,
)

from conftest import DSN, FakeConnection, FakeConnector


def test_connect_enables_autocommit():
    raw = MagicMock()
    with patch("pgpool2_exporter.infrastructure.db.psycopg2.connect", return_value=raw) as mock_connect:
        conn = connect(DSN)

    mock_connect.assert_called_once_with(DSN)
    assert conn is raw
    assert raw.autocommit is True


def test_connect_wraps_driver_errors():
    with patch("pgpool2_exporter.infrastructure.db.psycopg2.connect",
               side_effect=psycopg2.OperationalError("could not connect to server")):
        with pytest.raises(PgpoolConnectionError, match="could not connect to server"):
            connect(DSN)


def test_probe_runs_ping(fake_connection):
    conn = fake_connection()
    probe(conn)
    assert conn.executed == ["SHOW POOL_VERSION;"]


def test_probe_without_connection():
    with pytest.raises(PgpoolConnectionError):
        probe(None)


def test_open_probes_new_connection(fake_connection):
    conn = fake_connection()
    manager = ConnectionManager(DSN, connect_fn=FakeConnector(conn))
    manager.open()

    assert manager.connection is conn
    assert conn.executed == ["SHOW POOL_VERSION;"]


def test_ensure_live_keeps_healthy_connection(fake_connection):
    conn = fake_connection()
    connector = FakeConnector(conn)
    manager = ConnectionManager(DSN, connect_fn=connector)
    manager.open()

    manager.ensure_live()

    assert manager.connection is conn
    assert connector.calls == 1


def test_ensure_live_reconnects_once(fake_connection):
    stale, fresh = fake_connection(), fake_connection()
    manager = ConnectionManager(DSN, connect_fn=FakeConnector(stale, fresh))
    manager.open()
    stale.responses["SHOW POOL_VERSION;"] = psycopg2.OperationalError("server closed the connection")

    manager.ensure_live()

    assert stale.closed
    assert manager.connection is fresh


def test_ensure_live_raises_when_reconnect_fails(fake_connection):
    stale = fake_connection()
    manager = ConnectionManager(DSN, connect_fn=FakeConnector(stale))
    manager.open()
    stale.close()

    with pytest.raises(PgpoolConnectionError):
        manager.ensure_live()
    assert manager.connection is None


def test_failed_probe_after_reconnect_closes_new_connection(fake_connection):
    broken = FakeConnection({"SHOW POOL_VERSION;": psycopg2.OperationalError("not ready")})
    manager = ConnectionManager(DSN, connect_fn=FakeConnector(broken))

    with pytest.raises(PgpoolConnectionError):
        manager.ensure_live()
    assert broken.closed
    assert manager.connection is None


def test_open_with_retry_sleeps_between_attempts(fake_connection):
    conn = fake_connection()
    connector = FakeConnector(PgpoolConnectionError("refused"), PgpoolConnectionError("refused"), conn)
    sleeps = []
    manager = ConnectionManager(DSN, connect_fn=connector)

    manager.open_with_retry(2.5, sleep=sleeps.append)

    assert manager.connection is conn
    assert connector.calls == 3
    assert sleeps == [2.5, 2.5]


def test_open_with_retry_gives_up_after_max_attempts():
    connector = FakeConnector()
    sleeps = []
    manager = ConnectionManager(DSN, connect_fn=connector)

    with pytest.raises(PgpoolConnectionError):
        manager.open_with_retry(1.0, max_attempts=3, sleep=sleeps.append)
    assert connector.calls == 3
    assert sleeps == [1.0, 1.0]


def test_close_is_idempotent(fake_connection):
    conn = fake_connection()
    manager = ConnectionManager(DSN, connect_fn=FakeConnector(conn))
    manager.open()

    manager.close()
    manager.close()

    assert conn.closed
    assert manager.connection is None
