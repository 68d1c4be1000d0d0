import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gcp_exceptions

from conftest import query_job, text_of
from gcp_mcp_server.errors import UnknownToolError
from gcp_mcp_server.registry import registry
from gcp_mcp_server.tools import cloud

pytestmark = pytest.mark.anyio


def body_of(result):
    return json.loads(text_of(result))


def table_with(metadata):
    table = MagicMock(name="table")
    table.to_api_repr.return_value = metadata
    return table


async def test_unknown_tool_raises(ctx):
    with pytest.raises(UnknownToolError):
        await registry.call("bq-does-not-exist", {}, ctx)


# gcp-sql and BigQuery

async def test_gcp_sql_operation_uses_region_qualifier(ctx, clients):
    clients.bigquery.query.return_value = query_job(rows=[{"schema_name": "sales"}])
    result = await registry.call("gcp-sql", {"operation": "list-datasets"}, ctx)

    assert "isError" not in result
    assert text_of(result).startswith("Query returned 1 rows:")
    sql = clients.bigquery.query.call_args[0][0]
    assert "`test-project.region-us.INFORMATION_SCHEMA.SCHEMATA`" in sql


async def test_gcp_sql_requires_operation_or_query(ctx):
    result = await registry.call("gcp-sql", {}, ctx)
    assert result["isError"] is True
    assert body_of(result)["error"]["type"] == "validation_error"


async def test_gcp_sql_raw_query_as_csv(ctx, clients):
    clients.bigquery.query.return_value = query_job(rows=[{"a": 1}])
    result = await registry.call("gcp-sql", {"query": "SELECT 1 AS a", "format": "csv"}, ctx)
    assert text_of(result) == "```csv\na\n1\n```"


async def test_stream_insert_reports_row_errors(ctx, clients):
    clients.bigquery.insert_rows_json.return_value = [
        {"index": 0, "errors": [{"message": "no such field: x"}]},
    ]
    result = await registry.call(
        "bq_stream_insert", {"datasetId": "d", "tableId": "t", "rows": [{"x": 1}]}, ctx
    )
    assert result["isError"] is True
    assert "Row 0: no such field: x" in body_of(result)["error"]["message"]


async def test_stream_insert_success(ctx, clients):
    clients.bigquery.insert_rows_json.return_value = []
    result = await registry.call(
        "bq_stream_insert", {"datasetId": "d", "tableId": "t", "rows": [{"x": 1}, {"x": 2}]}, ctx
    )
    assert text_of(result) == "Successfully inserted 2 rows into d.t"
    assert clients.bigquery.insert_rows_json.call_args[0][0] == "test-project.d.t"


async def test_get_job_includes_results_for_finished_queries(ctx, clients):
    job = query_job(
        rows=[{"n": 1}],
        state="DONE",
        error_result=None,
        job_type="query",
        created=None,
        started=None,
        ended=None,
        total_bytes_processed=10,
        slot_millis=5,
    )
    clients.bigquery.get_job.return_value = job
    body = body_of(await registry.call("bq_get_job", {"jobId": "job_1"}, ctx))
    assert body["state"] == "DONE"
    assert body["resultCount"] == 1
    assert body["results"] == [{"n": 1}]


async def test_not_found_becomes_tool_error(ctx, clients):
    clients.bigquery.get_job.side_effect = gcp_exceptions.NotFound("Job job_1")
    result = await registry.call("bq_get_job", {"jobId": "job_1"}, ctx)
    assert result["isError"] is True
    assert body_of(result)["error"]["type"] == "not_found"


async def test_validate_query_records_dry_run_failure(ctx, clients):
    clients.bigquery.query.side_effect = gcp_exceptions.BadRequest("Syntax error at [1:8]")
    result = await registry.call("bq-validate-query", {"query": "SELECT a FROM `d.t` LIMIT 1"}, ctx)
    assert "isError" not in result
    validation = body_of(result)["validation"]
    assert validation["isValid"] is False
    assert validation["dryRunResult"]["isValid"] is False


# templates and indexing

async def test_template_library_unknown_use_case(ctx):
    result = await registry.call(
        "bq-template-library", {"templateCategory": "reporting", "useCase": "nope"}, ctx
    )
    assert result["isError"] is True


async def test_template_library_renders_query(ctx):
    result = await registry.call(
        "bq-template-library",
        {
            "templateCategory": "reporting",
            "useCase": "daily_summary",
            "customization": {"dataset": "sales", "table": "orders", "timeColumn": "ts"},
        },
        ctx,
    )
    text = text_of(result)
    assert text.startswith("Generated ")
    assert "`sales.orders`" in text
    assert "Available templates in 'reporting' category:" in text


async def test_auto_index_recommends_clustering(ctx, clients):
    clients.bigquery.get_table.return_value = table_with({"numRows": "1000", "numBytes": str(2 * 1024 ** 3)})
    result = await registry.call(
        "bq-auto-index",
        {
            "datasetId": "d",
            "tableId": "events",
            "queryPatterns": [
                {"query": "SELECT * FROM t WHERE event_date > '2024-01-01' AND status = 'ok'", "frequency": 5},
            ],
            "recommendationType": "clustering",
        },
        ctx,
    )
    text = text_of(result)
    assert text.startswith("Index Recommendation Analysis for test-project.d.events")
    assert "- Currently partitioned: No" in text
    assert "- Most filtered columns: event_date (5), status (5)" in text
    assert "CLUSTERING Recommendation" in text
    assert "PARTITIONING Recommendation" not in text
    assert "CLUSTER BY event_date, status" in text
    assert "- Total size: 2.00 GB" in text


async def test_partition_analysis_profiles_a_sample(ctx, clients):
    clients.bigquery.get_table.return_value = table_with({
        "numRows": "2000000",
        "numBytes": "1024",
        "schema": {"fields": [{"name": "order_id", "type": "INT64"}, {"name": "created_at", "type": "STRING"}]},
    })
    rows = [{"order_id": i, "created_at": f"2024-01-{i + 1:02d}"} for i in range(10)]
    clients.bigquery.query.return_value = query_job(rows=rows)

    result = await registry.call(
        "bq-partition-analysis",
        {"datasetId": "d", "tableId": "orders", "dataProfile": {"timeColumn": "created_at"}},
        ctx,
    )
    body = body_of(result)
    assert body["success"] is True
    analysis = body["result"]
    assert analysis["currentPartitioning"]["isPartitioned"] is False
    assert [r["strategy"] for r in analysis["recommendations"]] == ["time_partitioning", "range_partitioning"]
    assert analysis["dataProfile"]["distribution"]["sampledRows"] == 10

    sql = clients.bigquery.query.call_args[0][0]
    assert "FROM `test-project.d.orders`" in sql
    assert "TABLESAMPLE SYSTEM" in sql


async def test_partition_analysis_survives_sampling_failure(ctx, clients):
    clients.bigquery.get_table.return_value = table_with({
        "numRows": "2000000",
        "numBytes": "1024",
        "timePartitioning": {"type": "DAY", "field": "created_at"},
    })
    clients.bigquery.query.side_effect = gcp_exceptions.BadRequest("TABLESAMPLE is not supported for views")

    result = await registry.call("bq-partition-analysis", {"datasetId": "d", "tableId": "orders"}, ctx)
    assert "isError" not in result
    analysis = body_of(result)["result"]
    assert analysis["currentPartitioning"]["isPartitioned"] is True
    distribution = analysis["dataProfile"]["distribution"]
    assert distribution["sampledRows"] == 0
    assert "TABLESAMPLE is not supported" in distribution["error"]
    assert analysis["recommendations"] == []


# cloud tools

async def test_gcs_list_buckets(ctx, clients):
    clients.storage.list_buckets.return_value = [
        SimpleNamespace(name="assets", location="US", storage_class="STANDARD"),
    ]
    result = await registry.call("gcs_list_buckets", {}, ctx)
    assert text_of(result) == "Found 1 buckets:\n- gs://assets (US, STANDARD)"
    clients.storage.list_buckets.assert_called_with(project="test-project")


async def test_gcs_read_file_refuses_large_files(ctx, clients):
    clients.storage.bucket.return_value.get_blob.return_value = SimpleNamespace(size=20 * 1024 * 1024)
    result = await registry.call("gcs_read_file", {"bucketName": "b", "fileName": "big.bin"}, ctx)
    assert text_of(result) == "File big.bin is too large (20.00MB). Maximum size for reading is 10MB."


async def test_gcs_read_file_missing(ctx, clients):
    clients.storage.bucket.return_value.get_blob.return_value = None
    result = await registry.call("gcs_read_file", {"bucketName": "b", "fileName": "nope.txt"}, ctx)
    assert result["isError"] is True
    assert body_of(result)["error"]["type"] == "not_found"


async def test_gcs_read_file_contents(ctx, clients):
    blob = MagicMock(size=5)
    blob.download_as_bytes.return_value = b"hello"
    clients.storage.bucket.return_value.get_blob.return_value = blob
    result = await registry.call("gcs_read_file", {"bucketName": "b", "fileName": "a.txt"}, ctx)
    assert text_of(result) == "Contents of gs://b/a.txt:\n```\nhello\n```"


async def test_compute_without_zone_lists_zones(ctx, clients):
    clients.zones.list.return_value = [
        SimpleNamespace(name="us-central1-a", status="UP"),
        SimpleNamespace(name="us-central1-z", status="DOWN"),
    ]
    text = text_of(await registry.call("compute_list_instances", {}, ctx))
    assert text.startswith("Please specify a zone. Available zones:")
    assert "- us-central1-a" in text
    assert "us-central1-z" not in text


async def test_compute_instance_action(ctx, clients):
    result = await registry.call(
        "compute_instance_action", {"instanceName": "vm1", "zone": "us-central1-a", "action": "stop"}, ctx
    )
    assert text_of(result) == "Successfully initiated stop operation for instance vm1 in zone us-central1-a"
    clients.instances.stop.assert_called_once_with(project="test-project", zone="us-central1-a", instance="vm1")


async def test_run_list_services_invalid_region(ctx, clients):
    clients.run_services.list_services.side_effect = gcp_exceptions.InvalidArgument("bad location")
    text = text_of(await registry.call("run_list_services", {"region": "mars-1"}, ctx))
    assert text.startswith("Invalid region: mars-1.")


async def test_list_projects(ctx, clients):
    clients.projects.search_projects.return_value = [
        SimpleNamespace(project_id="p1", display_name="Prod", state=SimpleNamespace(name="ACTIVE")),
    ]
    text = text_of(await registry.call("list_projects", {}, ctx))
    assert text == 'Accessible GCP Projects:\n- p1 "Prod" (ACTIVE)'


@pytest.mark.parametrize(
    "command",
    [
        "compute instances delete vm1",
        "projects get-iam-policy p",
        "iam roles list",
        "compute instance-groups managed delete-instances g --instances=a",
        "compute instances delete-access-config vm1",
        "storage RM gs://b/o",
    ],
)
async def test_gcloud_blocks_destructive_commands(ctx, command):
    text = text_of(await registry.call("gcloud_command", {"command": command}, ctx))
    assert text == "This command has been blocked for safety. Please use specific MCP tools instead."


async def test_gcloud_runs_without_shell(ctx, monkeypatch):
    calls = []

    async def fake_run_process(command, check=True):
        calls.append(command)
        return SimpleNamespace(returncode=0, stdout=b"account = me", stderr=b"")

    monkeypatch.setattr(cloud.anyio, "run_process", fake_run_process)
    result = await registry.call("gcloud_command", {"command": "gcloud config list --format='value(core)'"}, ctx)
    assert calls == [["gcloud", "config", "list", "--format=value(core)"]]
    assert text_of(result) == "```\naccount = me\n```"


async def test_gcloud_failure_is_error(ctx, monkeypatch):
    async def fake_run_process(command, check=True):
        return SimpleNamespace(returncode=1, stdout=b"", stderr=b"ERROR: bad flag\n")

    monkeypatch.setattr(cloud.anyio, "run_process", fake_run_process)
    result = await registry.call("gcloud_command", {"command": "config list --nope"}, ctx)
    assert result["isError"] is True
    assert text_of(result) == "Command failed: ERROR: bad flag"


async def test_echo(ctx):
    assert text_of(await registry.call("echo", {"message": "ping"}, ctx)) == "Echo: ping"
