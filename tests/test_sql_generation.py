import pytest

from gcp_mcp_server.errors import ToolValidationError
from gcp_mcp_server.sql import composer, information_schema, templates, trends


# trends

def test_all_trend_type_expands_to_linear_and_seasonal():
    queries = trends.build_trend_queries(
        ["p.d.events"], "ts", {"granularity": "DAY", "lookbackPeriods": 30}, "all"
    )
    assert [q["type"] for q in queries] == ["linear", "seasonal"]
    assert all(q["table"] == "p.d.events" for q in queries)
    assert "DATE(ts) AS time_period" in queries[0]["sql"]
    assert "INTERVAL 30 DAY" in queries[0]["sql"]
    assert "MOD(ROW_NUMBER() OVER (ORDER BY time_period), 7)" in queries[1]["sql"]


def test_trend_queries_analyse_first_metric():
    metrics = [{"field": "amount", "aggregation": "SUM"}, {"field": "qty", "aggregation": "AVG"}]
    (query,) = trends.build_trend_queries(["t"], "ts", {"granularity": "WEEK"}, "linear", metrics)
    assert "SUM(amount) AS sum_amount" in query["sql"]
    assert "AVG(qty) AS avg_qty" in query["sql"]
    assert "AVG(sum_amount) OVER()" in query["sql"]
    assert "DATE_TRUNC(DATE(ts), WEEK)" in query["sql"]


def test_metric_alias_is_a_valid_identifier():
    assert trends.metric_alias({"field": "*", "aggregation": "COUNT"}) == "count_all"
    assert trends.metric_alias({"field": "order.total", "aggregation": "SUM"}) == "sum_order_total"
    (query,) = trends.build_trend_queries(["t"], "ts", {}, "linear", [{"field": "*", "aggregation": "COUNT"}])
    assert "COUNT(*) AS count_all" in query["sql"]


def test_time_filter_prefers_explicit_start():
    clause = trends.time_filter("ts", {"start": "2024-01-01", "lookbackPeriods": 7})
    assert clause == "TIMESTAMP(ts) >= TIMESTAMP('2024-01-01')"
    assert trends.time_filter("ts", {}) == "1=1"


def test_monitoring_queries_by_category():
    queries = trends.monitoring_queries("p.d.t", "ts", ["trend", "anomalies"])
    assert [q["schedule"] for q in queries] == ["daily", "hourly"]
    assert trends.monitoring_queries("p.d.t", "ts", []) == []


# templates

def test_render_template_substitutes_customization():
    rendered = templates.render_template(
        "reporting",
        "daily_summary",
        {
            "dataset": "sales",
            "table": "orders",
            "timeColumn": "created_at",
            "dimensions": ["region", "channel"],
            "metrics": ["SUM(amount) AS revenue"],
            "timeRange": {"start": "2024-01-01", "end": "2024-01-31", "interval": 7},
        },
        "my-proj",
    )
    assert rendered["missingParameters"] == []
    assert "`my-proj.sales.orders`" in rendered["query"]
    assert "GROUP BY report_date, region, channel" in rendered["query"]
    assert "INTERVAL 7 DAY" in rendered["query"]
    assert rendered["availableUseCases"] == list(templates.TEMPLATE_LIBRARY["reporting"])


def test_render_template_reports_unresolved_placeholders():
    rendered = templates.render_template("reporting", "daily_summary", {"dataset": "sales"})
    assert rendered["missingParameters"][0] == "timeColumn"
    assert "dataset" not in rendered["missingParameters"]
    assert "table" in rendered["missingParameters"]


def test_unknown_template_raises_key_error():
    with pytest.raises(KeyError):
        templates.get_template("reporting", "nope")
    with pytest.raises(KeyError):
        templates.get_template("nope", "daily_summary")


def test_qualify_with_project_leaves_three_part_names():
    sql = "SELECT * FROM `a.b` JOIN `x.y.z` USING (id)"
    assert templates.qualify_with_project(sql, "p") == "SELECT * FROM `p.a.b` JOIN `x.y.z` USING (id)"


# composer

def components():
    return [
        {"id": "totals", "query": "SELECT id, SUM(v) AS v FROM base GROUP BY id", "dependencies": ["base"]},
        {"id": "base", "query": "SELECT * FROM `d.events`"},
    ]


def test_cte_composition_orders_dependencies_first():
    sql = composer.compose(components(), "cte")
    assert sql == (
        "WITH base AS (\nSELECT * FROM `d.events`\n),\n"
        "totals AS (\nSELECT id, SUM(v) AS v FROM base GROUP BY id\n)\n"
        "SELECT * FROM totals"
    )


def test_subquery_composition_inlines_dependencies():
    sql = composer.compose(components(), "subquery")
    assert sql == "SELECT id, SUM(v) AS v FROM (SELECT * FROM `d.events`) GROUP BY id"


def test_join_composition_uses_join_key():
    parts = [
        {"id": "a", "query": "SELECT user_id, x FROM t1"},
        {"id": "b", "query": "SELECT user_id, y FROM t2", "joinKey": "user_id"},
    ]
    sql = composer.compose(parts, "join")
    assert sql.endswith("JOIN (SELECT user_id, y FROM t2) AS b USING (user_id)")


def test_materialized_composition_targets_dataset():
    sql = composer.compose(components(), "materialized", dataset="analytics")
    assert "CREATE OR REPLACE VIEW `analytics.base_view`" in sql
    assert sql.endswith("SELECT * FROM `analytics.totals_view`;")


def test_composer_rejects_cycles_and_unknown_dependencies():
    cyclic = [
        {"id": "a", "query": "SELECT 1", "dependencies": ["b"]},
        {"id": "b", "query": "SELECT 2", "dependencies": ["a"]},
    ]
    with pytest.raises(ToolValidationError):
        composer.compose(cyclic, "cte")
    with pytest.raises(ToolValidationError):
        composer.compose([{"id": "a", "query": "SELECT 1", "dependencies": ["zzz"]}], "cte")


def test_every_strategy_has_performance_hints():
    assert set(composer.PERFORMANCE_HINTS) == {"cte", "subquery", "join", "union", "materialized"}


# information schema

def test_describe_table_operation():
    sql = information_schema.render_operation("describe-table", "my-proj", dataset="sales", table="orders")
    assert "`my-proj.sales.INFORMATION_SCHEMA.COLUMNS`" in sql
    assert "WHERE table_name = 'orders'" in sql


def test_region_scoped_operations_use_location():
    sql = information_schema.render_operation("list-datasets", "p", location="EU")
    assert "`p.region-eu.INFORMATION_SCHEMA.SCHEMATA`" in sql
    sql = information_schema.render_operation("job-history", "p", hours=48, limit=5)
    assert "INTERVAL 48 HOUR" in sql
    assert sql.endswith("LIMIT 5")


@pytest.mark.parametrize("kwargs", [
    {"operation": "describe-table", "dataset": "sales"},
    {"operation": "list-tables"},
    {"operation": "describe-table", "dataset": "sales", "table": "x'; DROP TABLE y; --"},
    {"operation": "drop-everything"},
])
def test_invalid_operations_are_rejected(kwargs):
    with pytest.raises(ToolValidationError):
        information_schema.render_operation(project="p", **kwargs)
