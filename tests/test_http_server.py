from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from conftest import FakeClients
from gcp_mcp_server.http_server import MCPHTTPServer
from gcp_mcp_server.main import GCPMCPServer, ServerConfig

AUTH = {"Authorization": "Bearer s3cret"}


def make_app(**overrides):
    config = ServerConfig(project_id="test-project", mcp_secret="s3cret", **overrides)
    mcp_server = GCPMCPServer(config, clients=FakeClients(config))
    return mcp_server, MCPHTTPServer(mcp_server).app


@pytest.fixture
def server():
    return make_app()


@pytest.fixture
def client(server):
    return TestClient(server[1])


def rpc(client, method, params=None, request_id=1):
    payload = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        payload["params"] = params
    if request_id is not None:
        payload["id"] = request_id
    return client.post("/mcp", json=payload, headers=AUTH)


def test_health_needs_no_auth(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_mcp_requires_bearer_token(client):
    assert client.get("/mcp").status_code == 401
    assert client.post("/mcp", json={}, headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/mcp", headers=AUTH).json()["transport"] == "http"


def test_initialize_echoes_protocol_version(client):
    result = rpc(client, "initialize", {"protocolVersion": "2024-11-05"}).json()["result"]
    assert result["protocolVersion"] == "2024-11-05"
    assert result["serverInfo"]["name"] == "gcp-mcp"

    result = rpc(client, "initialize", {}).json()["result"]
    assert result["protocolVersion"] == "2025-03-26"


def test_ping(client):
    assert rpc(client, "ping").json() == {"jsonrpc": "2.0", "id": 1, "result": {}}


def test_tools_list_includes_all_families(client):
    tools = {t["name"]: t for t in rpc(client, "tools/list").json()["result"]["tools"]}
    for name in ("bq_list_datasets", "bq-trend-analysis", "gcp-sql", "gcs_list_buckets", "gcloud_command", "echo"):
        assert name in tools
    assert "message" in tools["echo"]["inputSchema"]["properties"]


def test_tools_call_echo(client):
    body = rpc(client, "tools/call", {"name": "echo", "arguments": {"message": "hi"}}, request_id="abc").json()
    assert body["id"] == "abc"
    assert body["result"]["content"] == [{"type": "text", "text": "Echo: hi"}]


def test_invalid_tool_arguments_are_tool_errors(client):
    result = rpc(client, "tools/call", {"name": "echo", "arguments": {}}).json()["result"]
    assert result["isError"] is True


def test_unknown_tool_is_invalid_params(client):
    error = rpc(client, "tools/call", {"name": "nope"}).json()["error"]
    assert error["code"] == -32602
    assert "Unknown tool: nope" in error["message"]
    assert rpc(client, "tools/call", {}).json()["error"]["code"] == -32602


def test_unknown_method(client):
    error = rpc(client, "tools/destroy").json()["error"]
    assert error == {"code": -32601, "message": "Method not found: tools/destroy"}


def test_notifications_are_accepted_without_body(client):
    response = rpc(client, "notifications/initialized", request_id=None)
    assert response.status_code == 202


def test_malformed_requests(client):
    response = client.post("/mcp", content="not json", headers={**AUTH, "Content-Type": "application/json"})
    assert response.json()["error"]["code"] == -32700
    response = client.post("/mcp", json=[1, 2], headers=AUTH)
    assert response.json()["error"]["code"] == -32600


def test_invalid_utf8_body_is_parse_error(client):
    response = client.post("/mcp", content=b'{"jsonrpc": "\xff"}', headers={**AUTH, "Content-Type": "application/json"})
    assert response.status_code == 200
    assert response.json()["error"]["code"] == -32700


def test_resources_list(server, client):
    mcp_server = server[0]
    bigquery = mcp_server.clients.bigquery
    bigquery.list_datasets.return_value = [SimpleNamespace(dataset_id="sales", reference="sales-ref")]
    bigquery.list_tables.return_value = [
        SimpleNamespace(table_id="orders", table_type="TABLE"),
        SimpleNamespace(table_id="daily", table_type="VIEW"),
    ]

    resources = rpc(client, "resources/list").json()["result"]["resources"]
    assert [r["uri"] for r in resources] == [
        "bigquery://test-project/sales/orders/schema",
        "bigquery://test-project/sales/daily/schema",
    ]
    assert resources[1]["name"] == '"sales.daily" view schema'
    bigquery.list_tables.assert_called_with("sales-ref")


def test_resources_read(server, client):
    bigquery = server[0].clients.bigquery
    bigquery.get_table.return_value = SimpleNamespace(schema=[
        SimpleNamespace(name="id", field_type="INT64", mode="REQUIRED", description=None),
    ])
    uri = "bigquery://test-project/sales/orders/schema"
    contents = rpc(client, "resources/read", {"uri": uri}).json()["result"]["contents"]
    assert contents[0]["uri"] == uri
    assert '"type": "INT64"' in contents[0]["text"]
    bigquery.get_table.assert_called_with("test-project.sales.orders")


@pytest.mark.parametrize("uri", ["bigquery://p/d", "gs://p/d/t/schema", "bigquery://p/d/t/rows"])
def test_resources_read_rejects_bad_uris(client, uri):
    assert rpc(client, "resources/read", {"uri": uri}).json()["error"]["code"] == -32602


def test_resources_read_backend_failure_is_internal_error(server, client):
    server[0].clients.bigquery.get_table.side_effect = RuntimeError("backend down")
    error = rpc(client, "resources/read", {"uri": "bigquery://p/d/t/schema"}).json()["error"]
    assert error == {"code": -32603, "message": "Internal error", "data": "backend down"}


def test_oauth_routes_disabled_by_default(client):
    assert client.get("/.well-known/oauth-authorization-server").status_code == 404


def test_oauth_routes():
    client = TestClient(make_app(use_oauth=True)[1])

    metadata = client.get("/.well-known/oauth-authorization-server").json()
    assert metadata["issuer"] == "https://testserver"
    assert metadata["token_endpoint"] == "https://testserver/token"

    registered = client.post("/register", json={"redirect_uris": ["http://localhost/cb"]})
    assert registered.status_code == 201
    assert registered.json()["redirect_uris"] == ["http://localhost/cb"]

    redirect = client.get(
        "/authorize",
        params={"redirect_uri": "http://localhost/cb", "state": "xyz"},
        follow_redirects=False,
    )
    assert redirect.status_code == 307
    assert redirect.headers["location"] == "http://localhost/cb?code=dummy-code&state=xyz"
    assert client.get("/authorize").status_code == 400

    assert client.post("/token").json()["token_type"] == "Bearer"
