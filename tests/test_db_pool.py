import threading

import psycopg2
import pytest
from psycopg2.pool import PoolError

from api import db as api_db
from api.store import StoreUnavailable


class FakePooledConn:
    def __init__(self, fail_rollback=False):
        self.closed = 0
        self.rollbacks = 0
        self.fail_rollback = fail_rollback

    def rollback(self):
        if self.fail_rollback:
            raise psycopg2.InterfaceError("connection already closed")
        self.rollbacks += 1


class FakePool:
    """Mirrors ThreadedConnectionPool: getconn fails fast once maxconn are out."""

    def __init__(self, minconn, maxconn, dsn, **kwargs):
        self.maxconn = maxconn
        self.kwargs = kwargs
        self.used = []
        self.returned = []
        self.fail = None
        self.fail_rollback = False
        self.closed_all = False

    def getconn(self):
        if self.fail is not None:
            raise self.fail
        if len(self.used) >= self.maxconn:
            raise PoolError("connection pool exhausted")
        conn = FakePooledConn(self.fail_rollback)
        self.used.append(conn)
        return conn

    def putconn(self, conn, close=False):
        self.used.remove(conn)
        self.returned.append((conn, close))

    def closeall(self):
        self.closed_all = True


@pytest.fixture
def fake_pool(monkeypatch):
    monkeypatch.setattr(api_db, "ThreadedConnectionPool", FakePool)
    api_db.init_pool("postgresql://test", minconn=1, maxconn=1)
    p = api_db.pool()
    yield p
    api_db.close_pool()
    assert p.closed_all


def test_pool_must_be_initialized():
    with pytest.raises(RuntimeError):
        api_db.pool()


def test_connection_is_rolled_back_and_returned(fake_pool):
    with api_db.connection() as conn:
        assert fake_pool.used == [conn]

    assert fake_pool.used == []
    assert fake_pool.returned == [(conn, False)]
    assert conn.rollbacks == 1


def test_connection_is_returned_after_an_error(fake_pool):
    with pytest.raises(ValueError):
        with api_db.connection():
            raise ValueError("boom")

    assert fake_pool.used == []
    assert len(fake_pool.returned) == 1


def test_connection_that_cannot_roll_back_is_discarded(fake_pool):
    fake_pool.fail_rollback = True

    with api_db.connection() as conn:
        pass

    assert fake_pool.returned == [(conn, True)]


def test_exhausted_pool_waits_then_reports_unavailable(fake_pool):
    with api_db.connection():
        with pytest.raises(StoreUnavailable):
            with api_db.connection(timeout=0.05):
                pass

    with api_db.connection() as conn:
        assert fake_pool.used == [conn]


def test_waiting_borrower_gets_the_released_connection(fake_pool):
    got = []
    errors = []

    def borrow():
        try:
            with api_db.connection(timeout=5) as conn:
                got.append(conn)
        except StoreUnavailable as exc:
            errors.append(exc)

    with api_db.connection():
        waiter = threading.Thread(target=borrow)
        waiter.start()
    waiter.join(timeout=10)

    assert errors == []
    assert len(got) == 1
    assert fake_pool.used == []


def test_driver_error_while_acquiring_is_unavailable(fake_pool):
    fake_pool.fail = psycopg2.OperationalError("could not connect to server")

    with pytest.raises(StoreUnavailable) as exc_info:
        with api_db.connection():
            pass
    assert isinstance(exc_info.value.__cause__, psycopg2.OperationalError)

    fake_pool.fail = None
    with api_db.connection(timeout=0.05):
        pass
