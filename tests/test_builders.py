import pytest

from gcp_mcp_server.errors import ToolValidationError
from gcp_mcp_server.sql import builders


def test_procedure_call_formats_literals_by_type():
    sql = builders.build_procedure_call("proj", "ds", "refresh", [
        {"value": "2024-01-01", "type": "DATE"},
        {"value": "O'Brien", "type": "STRING"},
        {"value": 5, "type": "INT64"},
        {"value": [1, 2], "type": "ARRAY", "elementType": "INT64"},
    ])
    assert sql == "CALL `proj.ds.refresh`(DATE '2024-01-01', 'O''Brien', 5, [1, 2])"


def test_procedure_call_without_parameters():
    assert builders.build_procedure_call("p", "d", "noop") == "CALL `p.d.noop`()"


def test_array_parameter_requires_list():
    with pytest.raises(ToolValidationError):
        builders.format_parameter("x", "ARRAY", "STRING")


def test_build_script_normalises_terminators():
    assert builders.build_script(["SELECT 1;", "  ", "SELECT 2"]) == "SELECT 1;\nSELECT 2;"
    with pytest.raises(ToolValidationError):
        builders.build_script(["", " "])


def test_build_select_query_with_all_clauses():
    sql = builders.build_select_query(
        ["proj.ds.orders"],
        fields=["region", "amount"],
        conditions=[
            {"field": "region", "operator": "IN", "value": ["EU", "US"]},
            {"field": "amount", "operator": "IS NOT NULL"},
        ],
        joins=[{"type": "LEFT", "table": "proj.ds.customers", "on": "orders.cid = customers.id"}],
        order_by=[{"field": "amount", "direction": "DESC"}],
        limit=10,
    )
    assert sql == (
        "SELECT region, amount\n"
        "FROM `proj.ds.orders`\n"
        "LEFT JOIN `proj.ds.customers` ON orders.cid = customers.id\n"
        "WHERE region IN ('EU', 'US') AND amount IS NOT NULL\n"
        "ORDER BY amount DESC\n"
        "LIMIT 10"
    )


def test_in_condition_requires_list():
    with pytest.raises(ToolValidationError):
        builders.build_condition("region", "IN", "EU")


def test_like_condition_quotes_value():
    assert builders.build_condition("name", "LIKE", "a%") == "name LIKE 'a%'"


def cross_references():
    return builders.build_table_references([
        {"datasetId": "sales", "tableId": "orders"},
        {"projectId": "other", "datasetId": "crm", "tableId": "customers", "alias": "c"},
    ])


def test_table_references_default_aliases():
    refs = cross_references()
    assert [r["alias"] for r in refs] == ["t1", "c"]
    assert [r["fullReference"] for r in refs] == ["sales.orders", "other.crm.customers"]


def test_cross_dataset_query_qualifies_join_conditions():
    sql = builders.build_cross_dataset_query(cross_references(), {
        "joins": [{
            "leftTable": "t1",
            "rightTable": "c",
            "joinType": "LEFT",
            "conditions": [{"leftField": "customer_id", "rightField": "id"}],
        }],
        "limit": 5,
    })
    assert sql == (
        "SELECT t1.*, c.*\n"
        "FROM `sales.orders` AS t1\n"
        "LEFT JOIN `other.crm.customers` AS c ON t1.customer_id = c.id\n"
        "LIMIT 5"
    )


def test_cross_join_has_no_on_clause():
    sql = builders.build_cross_dataset_query(cross_references(), {
        "joins": [{"leftTable": "t1", "rightTable": "c", "joinType": "CROSS", "conditions": []}],
    })
    assert sql.endswith("CROSS JOIN `other.crm.customers` AS c")


def test_inner_join_without_conditions_is_rejected():
    with pytest.raises(ToolValidationError):
        builders.build_cross_dataset_query(cross_references(), {
            "joins": [{"leftTable": "t1", "rightTable": "c", "joinType": "INNER", "conditions": []}],
        })


def test_join_to_unknown_table_is_rejected():
    with pytest.raises(ToolValidationError):
        builders.build_cross_dataset_query(cross_references(), {
            "joins": [{"leftTable": "t1", "rightTable": "nope", "joinType": "INNER",
                       "conditions": [{"leftField": "a", "rightField": "b"}]}],
        })


def test_join_complexity_counts_outer_and_cross_project_joins():
    datasets = [
        {"projectId": "a", "datasetId": "d", "tableId": "t"},
        {"projectId": "b", "datasetId": "d", "tableId": "u"},
    ]
    result = builders.analyze_join_complexity(datasets, [{"joinType": "FULL OUTER"}])
    assert result["score"] == 4
    assert result["complexity"] == "medium"
    assert result["estimatedCost"] == 2.0


def test_advanced_optimizations_flag_materialized_views_for_complex_joins():
    sql = builders.apply_join_optimizations("SELECT 1\nORDER BY x", "high", "advanced")
    assert sql.startswith("-- Consider creating materialized view")
    assert "-- Leverage clustering if available\nORDER BY x" in sql


def test_clustering_ddl_keeps_partitioning_and_caps_columns():
    sql = builders.clustering_ddl("p.d.t", ["a", "b", "c", "d", "e"], "DATE(ts)")
    assert "PARTITION BY DATE(ts)\nCLUSTER BY a, b, c, d\n" in sql
    with pytest.raises(ToolValidationError):
        builders.clustering_ddl("p.d.t", [])


def test_time_partitioning_ddl_swaps_tables():
    sql = builders.time_partitioning_ddl("p.d.events", "created_at")
    assert "PARTITION BY DATE(created_at)" in sql
    assert "RENAME TO `events_backup`" in sql
