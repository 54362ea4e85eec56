import pytest

from mssql_exporter.config import Config
from mssql_exporter.metrics import MetricRegistry


class FakeSession:
    """Answers queries from a dict of query text -> rows, or raises the mapped exception."""

    def __init__(self, results=None, default=None):
        self.results = dict(results or {})
        self.default = default if default is not None else []
        self.executed = []
        self.closed = False

    async def execute(self, query):
        self.executed.append(query)
        result = self.results.get(query, self.default)
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def close(self):
        self.closed = True


class FakeConnections:
    def __init__(self, session=None, error=None):
        self.session = session or FakeSession()
        self.error = error
        self.acquired = 0
        self.released = 0

    async def acquire(self):
        self.acquired += 1
        if self.error is not None:
            raise self.error
        return self.session

    async def release(self, session):
        self.released += 1
        await session.close()


@pytest.fixture
def metrics():
    return MetricRegistry()


@pytest.fixture
def cfg():
    return Config(server="db.local", username="sa", password="secret")
