from gcp_mcp_server.analysis import queries


def test_syntax_check_requires_select_and_balanced_parens():
    assert queries.validate_sql_syntax("SELECT 1")["isValid"]
    result = queries.validate_sql_syntax("DELETE FROM t WHERE (a = 1")
    assert not result["isValid"]
    assert "Query must start with SELECT or WITH statement" in result["errors"]
    assert "Unbalanced parentheses in query" in result["errors"]


def test_table_references_are_extracted_once():
    refs = queries.check_table_references(
        "SELECT * FROM `p.sales.orders` o JOIN sales.customers c ON o.cid = c.id JOIN sales.customers x ON TRUE"
    )
    assert refs["tables"] == ["p.sales.orders", "sales.customers"]
    assert refs["warnings"] == []


def test_structure_hints_for_unbounded_select_star():
    hints = queries.structure_hints("SELECT * FROM t ORDER BY a")
    assert [h["type"] for h in hints] == ["performance", "cost", "performance"]
    assert queries.structure_hints("SELECT a FROM t WHERE a > 1 LIMIT 5") == []


def test_cross_join_is_not_flagged_as_cartesian_mistake():
    cross = queries.advanced_structure_hints("SELECT * FROM a CROSS JOIN b")
    bare = queries.advanced_structure_hints("SELECT * FROM a JOIN b")
    assert not any(h["type"] == "correctness" for h in cross)
    assert any(h["type"] == "correctness" for h in bare)


def test_prioritize_hints_orders_by_level():
    hints = [{"level": "info", "n": 1}, {"level": "error", "n": 2}, {"level": "warning", "n": 3}]
    ordered = queries.prioritize_hints(hints)
    assert [h["n"] for h in ordered] == [2, 3, 1]
    assert [h["priority"] for h in ordered] == ["high", "medium", "low"]


def test_function_in_where_prevents_pruning_hint():
    hints = queries.performance_hints("SELECT a FROM t WHERE DATE(ts) = '2024-01-01'")
    assert len(hints) == 1
    assert queries.performance_hints("SELECT a FROM t WHERE ts IN (1, 2)") == []


def test_partitioning_opportunity_for_date_filters():
    assert queries.partitioning_opportunities("SELECT a FROM t WHERE event_date > '2024-01-01'")
    assert queries.partitioning_opportunities("SELECT a FROM t WHERE status = 'ok'") == []


def test_bottlenecks_include_expensive_plan_stages():
    plan = [{"id": 1, "name": "S01: Join", "computeMsAvg": 2500, "shuffleOutputBytes": 0}]
    bottlenecks = queries.identify_bottlenecks("SELECT * FROM t", plan)
    kinds = [b["type"] for b in bottlenecks]
    assert kinds == ["wide_select", "full_table_scan", "expensive_stage"]

    fixes = queries.performance_optimizations(bottlenecks + bottlenecks, bytes_processed=200 * 1024 ** 3)
    categories = [f["category"] for f in fixes]
    assert categories == ["column_selection", "filtering", "execution_stage", "partitioning"]


def test_complexity_is_capped():
    assert queries.query_complexity("SELECT 1") < 1
    heavy = "WITH a AS (SELECT 1) " + " ".join("JOIN t ON TRUE" for _ in range(10))
    assert queries.query_complexity(heavy) == 10.0


NESTED = "SELECT * FROM (SELECT a FROM t) WHERE b IN (SELECT b FROM u) AND c IN (SELECT c FROM v)"


def test_parenthesized_subqueries_are_counted():
    assert queries.count_subqueries("SELECT 1") == 0
    assert queries.count_subqueries(NESTED) == 3


def test_nested_subqueries_bottleneck():
    bottlenecks = queries.identify_bottlenecks(NESTED)
    nested = [b for b in bottlenecks if b["type"] == "nested_subqueries"]
    assert len(nested) == 1
    assert nested[0]["description"] == "Query contains 3 nested subqueries"


def test_column_usage_weights_by_frequency():
    usage = queries.column_usage([
        {
            "query": "SELECT region, SUM(x) FROM t WHERE event_date > '2024-01-01' AND status = 'ok' "
                     "GROUP BY region ORDER BY region",
            "frequency": 3,
        },
        {"query": "SELECT * FROM t JOIN u ON t.uid = u.user_id WHERE status = 'new'"},
    ])
    assert usage["filter"]["event_date"] == 3
    assert usage["filter"]["status"] == 4
    assert usage["groupBy"]["region"] == 3
    assert usage["orderBy"]["region"] == 3
    assert usage["join"]["user_id"] == 1


def test_index_recommendations_from_usage():
    usage = queries.column_usage([{
        "query": "SELECT region FROM t WHERE event_date > '2024-01-01' AND status = 'ok' GROUP BY region",
        "frequency": 2,
    }])
    recommendations = queries.index_recommendations(usage, partitioned=False)
    assert [r["type"] for r in recommendations] == ["clustering", "clustering", "partitioning"]
    assert recommendations[0]["columns"] == ["event_date", "status"]
    assert recommendations[2]["columns"] == ["event_date"]

    partitioned = queries.index_recommendations(usage, partitioned=True)
    assert all(r["type"] == "clustering" for r in partitioned)


def test_extract_query_patterns():
    patterns = queries.extract_query_patterns([
        "SELECT a FROM t WHERE user_id = 5 AND ts >= CURRENT_DATE() GROUP BY a",
    ])
    assert patterns["filters"][0]["fields"] == ["user_id", "ts"]
    assert patterns["aggregations"][0]["fields"] == ["a"]
    assert len(patterns["timeRanges"]) == 1
