from unittest.mock import MagicMock

import pytest

from gcp_mcp_server.main import ServerConfig
from gcp_mcp_server.registry import ToolContext


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClients:
    """Stands in for ``GCPClients`` with mock Google clients."""

    def __init__(self, config, project_id="test-project"):
        self.config = config
        self.default_project = project_id
        self.bigquery = MagicMock(name="bigquery")
        self.storage = MagicMock(name="storage")
        self.instances = MagicMock(name="instances")
        self.zones = MagicMock(name="zones")
        self.run_services = MagicMock(name="run_services")
        self.projects = MagicMock(name="projects")

    async def resolve_project_id(self, provided=None):
        return provided or self.default_project


@pytest.fixture
def config():
    return ServerConfig(project_id="test-project", mcp_secret="s3cret")


@pytest.fixture
def clients(config):
    return FakeClients(config)


@pytest.fixture
def ctx(clients, config):
    return ToolContext(clients, config)


def query_job(rows=(), **attributes):
    """A mock query job whose ``result()`` yields ``rows``."""
    job = MagicMock(name="query_job")
    job.result.return_value = list(rows)
    for name, value in attributes.items():
        setattr(job, name, value)
    return job


def text_of(result):
    return result["content"][0]["text"]
