from gcp_mcp_server.analysis import natural_language, patterns, schema


NESTED_FIELDS = [
    {"name": "event_id", "type": "STRING", "mode": "REQUIRED"},
    {
        "name": "user",
        "type": "RECORD",
        "fields": [
            {"name": "user_id", "type": "STRING"},
            {"name": "tags", "type": "STRING", "mode": "REPEATED"},
        ],
    },
    {"name": "click_count", "type": "FLOAT64"},
]


# schema

def test_analyze_fields_walks_nested_records():
    analyzed = schema.analyze_fields(NESTED_FIELDS)
    user = analyzed[1]
    assert user["analysis"]["isNested"]
    assert [f["path"] for f in user["nestedFields"]] == ["user.user_id", "user.tags"]
    assert user["nestedFields"][1]["analysis"]["isRepeated"]
    assert analyzed[0]["analysis"]["isRequired"]


def test_id_suffix_only_matches_whole_word():
    assert schema.data_type_efficiency({"name": "order_id", "type": "STRING"}) == "inefficient"
    assert schema.data_type_efficiency({"name": "id", "type": "STRING"}) == "inefficient"
    assert schema.data_type_efficiency({"name": "paid", "type": "STRING"}) == "efficient"
    assert schema.data_type_suggestion({"name": "click_count", "type": "FLOAT64"}) == (
        "Consider using INT64 instead of FLOAT64 for click_count"
    )


def test_schema_complexity_counts_depth_and_repeats():
    assert schema.count_total_fields(NESTED_FIELDS) == 5
    assert schema.schema_depth(NESTED_FIELDS) == 1
    complexity = schema.schema_complexity(NESTED_FIELDS)
    assert complexity == {"score": 1, "factors": ["Repeated fields: 1"], "level": "simple"}


def test_find_field_by_path():
    assert schema.find_field(NESTED_FIELDS, "user.tags")["mode"] == "REPEATED"
    assert schema.find_field(NESTED_FIELDS, "missing") is None


def test_ingestion_time_partitioning():
    result = schema.analyze_partitioning({"numRows": "20000000", "timePartitioning": {"type": "DAY"}})
    assert result["type"] == "TIME"
    assert result["field"] == "_PARTITIONTIME"
    assert result["effectiveness"]["level"] == "high"


def test_large_unpartitioned_table_gets_recommendation():
    result = schema.analyze_partitioning({"numRows": "5000000"})
    assert result["type"] is None
    assert result["recommendations"][0]["type"] == "ADD_PARTITIONING"


def test_clustering_reorder_for_late_string_columns():
    fields = [{"name": n, "type": "STRING"} for n in "abcde"]
    result = schema.analyze_clustering(["a", "b", "c", "d", "e"], fields)
    assert result["effectiveness"]["score"] == 50
    assert [r["field"] for r in result["recommendations"]] == ["d", "e"]


def test_optimization_recommendations_flag_inefficient_nested_fields():
    analysis = {
        "tableInfo": {"numRows": "20000000"},
        "schema": {"fields": schema.analyze_fields(NESTED_FIELDS), "complexity": None},
        "partitioning": None,
        "clustering": None,
    }
    result = schema.optimization_recommendations(analysis, advanced=True)
    assert [i["field"] for i in result["dataQualityIssues"]] == ["event_id", "user.user_id", "click_count"]
    assert [h["type"] for h in result["performanceHints"]] == ["ADD_PARTITIONING", "ADD_CLUSTERING"]
    assert result["recommendations"][-1]["type"] == "MATERIALIZED_VIEW"


def test_partition_clause_reproduces_layout():
    assert schema.partition_clause(None) is None
    assert schema.partition_clause({"type": "TIME", "field": "_PARTITIONTIME"}) == "_PARTITIONDATE"
    assert schema.partition_clause({"type": "TIME", "field": "ts"}) == "DATE(ts)"
    clause = schema.partition_clause({"type": "RANGE", "field": "id", "range": {"start": 0, "end": 100, "interval": 10}})
    assert clause == "RANGE_BUCKET(id, GENERATE_ARRAY(0, 100, 10))"


def test_partitioning_recommendations_for_large_table():
    distribution = {
        "temporalDistribution": {"min": "2024-01-01", "max": "2024-02-01"},
        "cardinality": {
            "created_at": {"unique": 500, "total": 1000, "ratio": 0.5},
            "order_id": {"unique": 990, "total": 1000, "ratio": 0.99},
        },
    }
    recs = schema.partitioning_recommendations(
        "p.d.orders",
        2000000,
        None,
        False,
        distribution,
        {},
        time_column="created_at",
        column_types={"order_id": "INT64", "created_at": "TIMESTAMP"},
    )
    assert [r["strategy"] for r in recs] == ["time_partitioning", "range_partitioning"]
    assert recs[0]["field"] == "created_at"
    assert "PARTITION BY DATE(created_at)" in recs[0]["implementationSQL"]
    assert recs[1]["field"] == "order_id"


def test_no_range_partitioning_for_string_ids():
    distribution = {"cardinality": {"id": {"unique": 999, "total": 1000, "ratio": 0.999}}}
    recs = schema.partitioning_recommendations(
        "p.d.events", 2000000, None, False, distribution, {}, column_types={"id": "STRING"}
    )
    assert recs == []
    assert schema.partitioning_recommendations("p.d.events", 2000000, None, False, distribution, {}) == []


def test_clustering_recommendation_keeps_existing_partitioning():
    distribution = {"cardinality": {"status": {"ratio": 0.4}, "note": {"ratio": 0.9}}}
    query_patterns = {"filters": [{"fields": ["status"]}]}
    (rec,) = schema.partitioning_recommendations(
        "p.d.orders", 10, {"type": "TIME", "field": "ts"}, False, distribution, query_patterns
    )
    assert rec["strategy"] == "clustering"
    assert rec["field"] == "status"
    assert "PARTITION BY DATE(ts)" in rec["implementationSQL"]


def test_relationship_detection_by_table_name():
    tables = [
        {"datasetId": "s", "tableId": "orders", "fields": [{"name": "customer_id", "type": "INT64"}]},
        {"datasetId": "s", "tableId": "customer", "fields": [{"name": "id", "type": "INT64"}]},
    ]
    (relationship,) = schema.detect_table_relationships(tables)
    assert relationship["from"] == "s.orders.customer_id"
    assert relationship["to"] == "s.customer.id"
    assert relationship["confidence"] == 0.7


# natural language

SCHEMA_CONTEXT = {
    "datasets": {
        "sales": {
            "tables": {
                "orders": {
                    "fields": [
                        {"name": "region", "type": "STRING"},
                        {"name": "amount", "type": "FLOAT64"},
                        {"name": "created_at", "type": "TIMESTAMP"},
                    ],
                },
            },
        },
    },
}


def test_intent_matches_whole_words():
    assert natural_language.detect_intent("show account status") == "select"
    assert natural_language.detect_intent("total sales by region") == "aggregate"
    assert natural_language.detect_intent("combine orders and customers") == "join"
    assert natural_language.detect_intent("revenue trend") == "timeseries"


def test_conditions_become_where_clauses():
    conditions = natural_language.extract_conditions("orders in the last 7 days where status = 'paid'")
    assert {c["type"] for c in conditions} == {"equals", "time_range"}
    clause = natural_language.build_where_clause(conditions, "created_at")
    assert "status = 'paid'" in clause
    assert "DATE(created_at) >= DATE_SUB(CURRENT_DATE(), INTERVAL 7 DAY)" in clause


def test_generate_aggregate_query():
    result = natural_language.generate_sql("total amount in orders", SCHEMA_CONTEXT)
    assert result["query"] == (
        "SELECT region,\n  created_at,\n  SUM(amount) AS sum_amount\n"
        "FROM `sales.orders`\nGROUP BY region, created_at"
    )
    assert result["confidence"] == 0.75
    assert result["alternatives"] == []


def test_generate_without_known_table_has_low_confidence():
    result = natural_language.generate_sql("total things", SCHEMA_CONTEXT, "explained")
    assert result["query"] == natural_language.UNRESOLVED_TABLE
    assert result["confidence"] == 0.1
    assert result["alternatives"] == []
    assert result["breakdown"]["intent"] == "aggregate"


def test_select_query_alternatives():
    result = natural_language.generate_sql("show orders", SCHEMA_CONTEXT, "optimized")
    assert result["query"] == "SELECT *\nFROM `sales.orders`"
    assert result["alternatives"][0]["description"] == "Added LIMIT clause for safety"


def test_optimize_generated_replaces_select_star():
    optimized = natural_language.optimize_generated("SELECT * FROM t")
    assert optimized["query"] == "SELECT /* specify needed columns */ FROM t"
    assert len(optimized["appliedOptimizations"]) == 2


# patterns

def test_join_patterns_from_naming():
    found = patterns.join_patterns(["fact_sales", "dim_sales", "users"])
    assert [p["tables"] for p in found] == [["fact_sales", "dim_sales"]]


def test_aggregation_patterns_for_raw_tables():
    found = patterns.aggregation_patterns(["raw_clicks", "orders", "app_logs"])
    assert [p["table"] for p in found] == ["raw_clicks", "app_logs"]


def test_large_unpartitioned_table_is_reported():
    found = patterns.table_layout_patterns({"tableId": "big", "numRows": "2000000"}, ["partition", "cluster"])
    assert len(found) == 1
    (rec,) = patterns.pattern_recommendations(found)
    assert rec["type"] == "cost_optimization"
    assert rec["description"] == "1 tables could benefit from partitioning"


def test_layout_patterns_for_partitioned_and_clustered_table():
    table = {
        "tableId": "events",
        "numRows": "10",
        "timePartitioning": {"type": "DAY", "field": "ts"},
        "clustering": {"fields": ["user_id"]},
    }
    found = patterns.table_layout_patterns(table, ["partition", "cluster"])
    assert [p["type"] for p in found] == ["partition", "cluster"]
    assert patterns.pattern_recommendations(found) == []


def test_smart_suggestions_fall_back_to_placeholder_table():
    result = patterns.smart_suggestions("ds", [], "analytics")
    assert [s["id"] for s in result["suggestions"]] == ["analytics_1", "analytics_2"]
    assert "`ds.your_table`" in result["suggestions"][0]["query"]
    assert result["suggestions"][0]["estimatedComplexity"] == "simple"
    assert result["suggestions"][1]["estimatedComplexity"] == "complex"
    assert result["context"] == "general"

    result = patterns.smart_suggestions("ds", ["events"], "exploration", "churn")
    assert "`ds.events`" in result["suggestions"][0]["query"]


def test_score_patterns():
    scored = patterns.score_patterns(
        patterns.join_patterns(["fact_sales", "dim_sales"]) + patterns.aggregation_patterns(["raw"])
    )
    assert [p["confidence"] for p in scored] == [0.7, 0.8]
    assert scored[1]["impact"]["performance"] == "high"
