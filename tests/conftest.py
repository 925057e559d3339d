"""Pytest configuration and fixtures."""

import json

import pytest

from odata_sql_gateway.config.settings import GatewayConfig
from odata_sql_gateway.models import EnvironmentTarget


class FakeCursor:
    """Cursor double answering statements from a FakeDatabase script."""

    def __init__(self, database):
        self.database = database
        self.description = None
        self.rowcount = -1
        self._rows = []

    def execute(self, sql, *params):
        self.database.executed.append((sql, params))
        columns, rows, error, rowcount = self.database.respond(sql)
        if error is not None:
            raise error
        self.description = [(name, None, None, None, None, None, True) for name in columns] if columns else None
        self._rows = list(rows)
        self.rowcount = rowcount
        return self

    def fetchall(self):
        rows, self._rows = self._rows, []
        return rows

    def fetchmany(self, size):
        rows, self._rows = self._rows[:size], self._rows[size:]
        return rows

    def fetchone(self):
        return self._rows.pop(0) if self._rows else None

    def nextset(self):
        return False

    def setinputsizes(self, sizes):
        self.database.input_sizes.append(sizes)

    def close(self):
        pass


class FakeConnection:
    def __init__(self, database):
        self.database = database
        self.timeout = 0
        self.closed = False

    def cursor(self):
        return FakeCursor(self.database)

    def close(self):
        self.closed = True


class FakeDatabase:
    """
    Scripted stand-in for pyodbc.connect.

    ``on(fragment, ...)`` registers the result for any statement containing
    ``fragment``; the first matching registration wins.
    """

    def __init__(self):
        self.handlers = []
        self.executed = []
        self.input_sizes = []
        self.connections = []
        self.connect_calls = []

    def on(self, fragment, columns=None, rows=(), error=None, rowcount=-1):
        self.handlers.append((fragment, columns, list(rows), error, rowcount))
        return self

    def respond(self, sql):
        for fragment, columns, rows, error, rowcount in self.handlers:
            if fragment in sql:
                return columns, rows, error, rowcount
        return None, [], None, -1

    def connect(self, connection_string, **kwargs):
        self.connect_calls.append((connection_string, kwargs))
        connection = FakeConnection(self)
        self.connections.append(connection)
        return connection

    def statements(self, fragment):
        return [(sql, params) for sql, params in self.executed if fragment in sql]


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def endpoints_dir(tmp_path):
    path = tmp_path / "endpoints"
    path.mkdir()
    return path


@pytest.fixture
def environments_dir(tmp_path):
    path = tmp_path / "environments"
    path.mkdir()
    return path


@pytest.fixture
def write_endpoint(endpoints_dir):
    """Write endpoints/<name>/entity.json."""
    def _write(name, **entity):
        folder = endpoints_dir / name
        folder.mkdir(parents=True, exist_ok=True)
        (folder / "entity.json").write_text(json.dumps(entity), encoding="utf-8")
        return folder
    return _write


@pytest.fixture
def write_environment(environments_dir):
    """Write environments/<name>/settings.json."""
    def _write(name, connection_string="Server=sql01;Database=AdventureWorks;Uid=svc;Pwd=s3cret", **extra):
        folder = environments_dir / name
        folder.mkdir(parents=True, exist_ok=True)
        settings = {"ConnectionString": connection_string, "ServerName": "sql01"}
        settings.update(extra)
        (folder / "settings.json").write_text(json.dumps(settings), encoding="utf-8")
        return folder
    return _write


@pytest.fixture
def gateway_config(tmp_path, endpoints_dir, environments_dir):
    """Gateway configuration pointing at temporary folders, auth and throttling off."""
    return GatewayConfig(
        endpoints_dir=str(endpoints_dir),
        environments_dir=str(environments_dir),
        auth_enabled=False,
        token_db=str(tmp_path / "auth.db"),
        tokens_dir=str(tmp_path / "tokens"),
        rate_limit_enabled=False,
        log_level="DEBUG",
    )


@pytest.fixture
def target():
    return EnvironmentTarget(
        name="AdventureWorks",
        connection_string="Server=sql01;Database=AdventureWorks;Uid=svc;Pwd=s3cret",
        server_name="sql01",
    )
