import base64
import json

import pytest

from gcp_mcp_server import main

SERVICE_ACCOUNT = {"type": "service_account", "project_id": "demo-project"}

ENV_VARS = (
    "GOOGLE_CLOUD_PROJECT",
    "GCP_PROJECT",
    "PORT",
    "MCP_SECRET",
    "USE_OAUTH",
    "DEBUG_GCP_MCP",
    "GOOGLE_APPLICATION_CREDENTIALS_JSON",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment():
    config = main.parse_args([])
    assert config.project_id is None
    assert config.location == "US"
    assert config.mcp_secret == main.DEFAULT_SECRET
    assert config.http_port == 8080
    assert not config.use_http
    assert not config.use_oauth


def test_environment_fallbacks(monkeypatch):
    monkeypatch.setenv("GCP_PROJECT", "env-project")
    monkeypatch.setenv("PORT", "9090")
    monkeypatch.setenv("MCP_SECRET", "token")
    monkeypatch.setenv("USE_OAUTH", "TRUE")
    monkeypatch.setenv("DEBUG_GCP_MCP", "true")

    config = main.parse_args(["--http", "--location", "EU"])
    assert config.project_id == "env-project"
    assert config.http_port == 9090
    assert config.mcp_secret == "token"
    assert config.use_oauth
    assert config.debug
    assert config.use_http
    assert config.location == "EU"


def test_flags_override_environment(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "env-project")
    monkeypatch.setenv("PORT", "9090")
    config = main.parse_args(["--project-id", "flag-project", "--port", "7000"])
    assert config.project_id == "flag-project"
    assert config.http_port == 7000


def test_credentials_json_accepts_base64(monkeypatch):
    raw = json.dumps(SERVICE_ACCOUNT)
    monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS_JSON", base64.b64encode(raw.encode()).decode())
    assert main.parse_args([]).credentials_json == raw


def test_logging_is_configured_before_credentials_are_decoded(monkeypatch):
    calls = []
    decode = main.decode_credentials_json
    monkeypatch.setattr(main, "setup_logging", lambda debug=False: calls.append(("logging", debug)))
    monkeypatch.setattr(main, "decode_credentials_json", lambda value: calls.append(("decode", value)) or decode(value))
    monkeypatch.setenv("DEBUG_GCP_MCP", "true")

    main.parse_args([])
    assert calls == [("logging", True), ("decode", None)]


def test_decode_credentials_json():
    raw = json.dumps(SERVICE_ACCOUNT)
    assert main.decode_credentials_json(raw) == raw
    assert main.decode_credentials_json("not json or base64!") is None
    assert main.decode_credentials_json(None) is None


@pytest.mark.anyio
async def test_validate_accepts_key_file(tmp_path):
    key_file = tmp_path / "key.json"
    key_file.write_text(json.dumps(SERVICE_ACCOUNT))
    config = main.ServerConfig(project_id="demo-project", key_filename=str(key_file))
    await main.validate_config(config)
    assert config.key_filename == str(key_file.resolve())


@pytest.mark.anyio
async def test_validate_rejects_missing_key_file(tmp_path):
    config = main.ServerConfig(key_filename=str(tmp_path / "missing.json"))
    with pytest.raises(FileNotFoundError):
        await main.validate_config(config)


@pytest.mark.anyio
async def test_validate_rejects_non_service_account_key(tmp_path):
    key_file = tmp_path / "key.json"
    key_file.write_text(json.dumps({"type": "authorized_user"}))
    with pytest.raises(ValueError, match="Invalid service account key file format"):
        await main.validate_config(main.ServerConfig(key_filename=str(key_file)))


@pytest.mark.anyio
async def test_validate_rejects_bad_credentials_json():
    with pytest.raises(ValueError, match="Invalid JSON"):
        await main.validate_config(main.ServerConfig(credentials_json="{nope"))


@pytest.mark.anyio
async def test_validate_rejects_bad_project_id():
    with pytest.raises(ValueError, match="Invalid project ID format"):
        await main.validate_config(main.ServerConfig(project_id="Bad_Project"))
    await main.validate_config(main.ServerConfig())
