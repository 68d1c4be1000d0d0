"""Cross-dataset joins, partition analysis, performance profiling and trend analysis."""

import logging
from typing import Any, Dict, List, Literal, Optional

from google.api_core import exceptions as gcp_exceptions
from google.cloud import bigquery
from pydantic import BaseModel, Field

from ..analysis import queries, statistics
from ..analysis.schema import partitioning_recommendations
from ..content import json_result
from ..errors import ToolValidationError, format_error_message
from ..registry import registry
from ..sql.builders import (
    analyze_join_complexity,
    apply_join_optimizations,
    build_cross_dataset_query,
    build_table_references,
)
from ..sql.information_schema import region_qualifier
from ..sql.trends import build_trend_queries, metric_alias, monitoring_queries, value_column
from .common import (
    DEFAULT_JOB_TIMEOUT_MS,
    ProjectParams,
    dry_run,
    envelope,
    run_query,
    schema_fields,
    table_metadata,
    table_path,
    wait_for_job,
)

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10000
TREND_TABLE_LIMIT = 5


# Cross-dataset join

class DatasetTable(BaseModel):
    projectId: Optional[str] = None
    datasetId: str
    tableId: str
    alias: Optional[str] = None


class JoinCondition(BaseModel):
    leftField: str
    rightField: str
    operator: Literal["=", "!=", ">", "<", ">=", "<="] = "="


class JoinSpec(BaseModel):
    leftTable: str = Field(..., description="Alias or full table reference")
    rightTable: str = Field(..., description="Alias or full table reference")
    joinType: Literal["INNER", "LEFT", "RIGHT", "FULL OUTER", "CROSS"]
    conditions: List[JoinCondition] = Field(default_factory=list)


class WhereCondition(BaseModel):
    field: str
    operator: str
    value: Any = None


class OrderSpec(BaseModel):
    field: str
    direction: Literal["ASC", "DESC"] = "ASC"


class JoinConfig(BaseModel):
    joins: List[JoinSpec] = Field(..., description="Join configurations")
    selectFields: Optional[List[str]] = Field(None, description="Fields to select (default: all)")
    whereConditions: Optional[List[WhereCondition]] = None
    groupBy: Optional[List[str]] = None
    orderBy: Optional[List[OrderSpec]] = None
    limit: Optional[int] = Field(None, gt=0)


class OutputConfig(BaseModel):
    destinationDataset: Optional[str] = None
    destinationTable: Optional[str] = None
    writeDisposition: Optional[Literal["WRITE_TRUNCATE", "WRITE_APPEND", "WRITE_EMPTY"]] = None
    createDisposition: Optional[Literal["CREATE_IF_NEEDED", "CREATE_NEVER"]] = None


class CrossDatasetJoinParams(BaseModel):
    datasets: List[DatasetTable] = Field(..., min_length=2, description="Datasets/tables to join")
    joinConfig: JoinConfig = Field(..., description="Join query configuration")
    outputConfig: Optional[OutputConfig] = Field(None, description="Output configuration for results")
    optimizationLevel: Literal["none", "basic", "advanced"] = Field("basic", description="Query optimization level")


def execution_plan(ctx, query: str, project_id: str) -> Dict[str, Any]:
    try:
        job = dry_run(ctx, query, project_id)
    except gcp_exceptions.GoogleAPICallError as error:
        logger.error(f"Dry run of generated join failed: {error}")
        return {"error": str(error), "bytesProcessed": 0, "slotMilliseconds": 0, "cacheEligible": False}
    statement_type = job.statement_type or "SELECT"
    return {
        "bytesProcessed": int(job.total_bytes_processed or 0),
        "slotMilliseconds": int(getattr(job, "slot_millis", None) or 0),
        "cacheEligible": statement_type == "SELECT",
        "statementType": statement_type,
    }


@registry.tool(
    "bq-cross-dataset-join",
    "Build and plan JOIN queries across datasets and projects with optimisation hints",
    CrossDatasetJoinParams,
)
async def cross_dataset_join(ctx, params: CrossDatasetJoinParams):
    datasets = [d.model_dump() for d in params.datasets]
    join_config = params.joinConfig.model_dump()

    references = build_table_references(datasets)
    analysis = analyze_join_complexity(datasets, join_config["joins"])
    query = build_cross_dataset_query(references, join_config)
    if params.optimizationLevel != "none":
        query = apply_join_optimizations(query, analysis["complexity"], params.optimizationLevel)
    logger.debug(f"Cross-dataset query: {query}")

    project_id = await ctx.project_id(params.datasets[0].projectId)
    plan = execution_plan(ctx, query, project_id)

    result: Dict[str, Any] = {
        "generatedQuery": query,
        "joinAnalysis": {
            "tablesInvolved": len(datasets),
            "joinComplexity": analysis["complexity"],
            "complexityFactors": analysis["factors"],
            "estimatedCost": analysis["estimatedCost"],
            "optimizationsApplied": analysis["optimizations"],
        },
        "executionPlan": plan,
        "performanceEstimate": {
            "estimatedBytesProcessed": plan["bytesProcessed"],
            "estimatedSlotMilliseconds": plan["slotMilliseconds"],
            "cacheEligible": plan["cacheEligible"],
        },
    }
    output = params.outputConfig
    if output and output.destinationTable:
        result["outputConfiguration"] = {
            "destination": f"{output.destinationDataset}.{output.destinationTable}",
            "writeDisposition": output.writeDisposition or "WRITE_TRUNCATE",
            "createDisposition": output.createDisposition or "CREATE_IF_NEEDED",
        }
    return json_result(envelope(
        "bq-cross-dataset-join",
        result=result,
        metadata={"optimizationLevel": params.optimizationLevel},
    ))


# Partition analysis

class DataProfile(BaseModel):
    sampleSize: Optional[int] = Field(None, gt=0, description="Number of rows to sample for analysis")
    timeColumn: Optional[str] = Field(None, description="Time column for temporal analysis")
    includeStatistics: bool = Field(True, description="Include detailed statistics")


class PartitionAnalysisParams(ProjectParams):
    datasetId: str = Field(..., description="Dataset to analyze")
    tableId: str = Field(..., description="Table to analyze")
    dataProfile: Optional[DataProfile] = Field(None, description="Data profiling options")
    targetQueries: Optional[List[str]] = Field(None, description="Sample queries to optimize for")


def require_partition_filter(metadata: Dict[str, Any]) -> bool:
    time_partitioning = metadata.get("timePartitioning") or {}
    return bool(metadata.get("requirePartitionFilter") or time_partitioning.get("requirePartitionFilter"))


def current_partitioning(metadata: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    num_rows = int(metadata.get("numRows") or 0)
    effectiveness = statistics.partitioning_effectiveness(
        num_rows, bool(metadata.get("clustering")), require_partition_filter(metadata)
    )
    time_partitioning = metadata.get("timePartitioning")
    if time_partitioning:
        return {
            "type": "TIME",
            "field": time_partitioning.get("field"),
            "granularity": time_partitioning.get("type"),
            "expirationMs": time_partitioning.get("expirationMs"),
            "effectiveness": effectiveness,
        }
    range_partitioning = metadata.get("rangePartitioning")
    if range_partitioning:
        return {
            "type": "RANGE",
            "field": range_partitioning.get("field"),
            "range": range_partitioning.get("range"),
            "effectiveness": effectiveness,
        }
    return None


def sample_percent(sample_size: int, num_rows: int) -> float:
    """TABLESAMPLE percentage expected to yield ``sample_size`` rows."""
    if num_rows <= sample_size:
        return 100.0
    return round(max(sample_size * 100.0 / num_rows, 0.0001), 4)


async def profile_distribution(
    ctx, project_id: str, table_name: str, num_rows: int, profile: DataProfile
) -> Dict[str, Any]:
    sample_size = profile.sampleSize or DEFAULT_SAMPLE_SIZE
    sql = (
        f"SELECT *\nFROM `{table_name}`\n"
        f"TABLESAMPLE SYSTEM ({sample_percent(sample_size, num_rows)} PERCENT)\n"
        f"LIMIT {sample_size}"
    )
    try:
        rows = await run_query(ctx, sql, project_id)
    except gcp_exceptions.GoogleAPICallError as error:
        logger.warning(f"Sampling {table_name} failed, continuing without a data profile: {format_error_message(error)}")
        return {"sampledRows": 0, "cardinality": {}, "temporalDistribution": None, "error": str(error)}
    distribution: Dict[str, Any] = {
        "sampledRows": len(rows),
        "cardinality": statistics.cardinality(rows),
        "temporalDistribution": None,
    }
    if profile.timeColumn and rows:
        distribution["temporalDistribution"] = statistics.temporal_distribution(rows, profile.timeColumn)
    return distribution


@registry.tool(
    "bq-partition-analysis",
    "Analyze table partitioning and recommend partitioning and clustering strategies",
    PartitionAnalysisParams,
)
async def partition_analysis(ctx, params: PartitionAnalysisParams):
    project_id = await ctx.project_id(params.projectId)
    table_name = table_path(project_id, params.datasetId, params.tableId)
    metadata = table_metadata(ctx.bigquery.get_table(table_name))
    num_rows = int(metadata.get("numRows") or 0)
    profile = params.dataProfile or DataProfile()

    current = current_partitioning(metadata)
    distribution = await profile_distribution(ctx, project_id, table_name, num_rows, profile)
    patterns = queries.extract_query_patterns(params.targetQueries) if params.targetQueries else None
    recommendations = partitioning_recommendations(
        table_name,
        num_rows,
        current,
        bool(metadata.get("clustering")),
        distribution,
        patterns or {},
        time_column=profile.timeColumn,
        column_types={field["name"]: field.get("type") for field in schema_fields(metadata)},
    )
    impact = statistics.partitioning_impact(recommendations, distribution)

    result: Dict[str, Any] = {
        "currentPartitioning": {
            "isPartitioned": current is not None,
            "type": current and current["type"],
            "field": current and current["field"],
            "effectiveness": current and current["effectiveness"],
        },
        "dataProfile": {
            "totalRows": num_rows,
            "totalBytes": int(metadata.get("numBytes") or 0),
            "distribution": distribution if profile.includeStatistics else None,
            "cardinality": distribution["cardinality"],
        },
        "recommendations": recommendations,
        "performanceImpact": {
            "estimatedQuerySpeedup": impact["querySpeedup"],
            "estimatedCostReduction": impact["costReduction"],
            "storageOverhead": impact["storageOverhead"],
        },
    }
    if patterns is not None:
        result["queryAnalysis"] = patterns
    return json_result(envelope(
        "bq-partition-analysis",
        result=result,
        metadata={"tableAnalyzed": f"{params.datasetId}.{params.tableId}"},
    ))


# Performance profile

class ProfilingOptions(BaseModel):
    executionMode: Literal["dry_run", "actual_run"] = "dry_run"
    includeExecutionPlan: bool = True
    includeResourceMetrics: bool = True
    includeOptimizationHints: bool = True
    timeout: Optional[int] = Field(None, description="Query timeout in milliseconds")


class HistoricalAnalysis(BaseModel):
    enabled: bool = False
    lookbackDays: int = Field(7, ge=1)
    compareWithBaseline: bool = True


class PerformanceProfileParams(ProjectParams):
    query: str = Field(..., min_length=1, description="SQL query to analyze")
    location: Optional[str] = Field(None, description="Job location (default: US)")
    profilingOptions: ProfilingOptions = Field(default_factory=ProfilingOptions, description="Profiling configuration")
    historicalAnalysis: Optional[HistoricalAnalysis] = Field(None, description="Historical performance comparison")


def plan_stages(job) -> List[Dict[str, Any]]:
    return [
        {
            "id": entry.entry_id,
            "name": entry.name,
            "computeMsAvg": entry.compute_ms_avg,
            "shuffleOutputBytes": entry.shuffle_output_bytes,
            "parallelInputs": entry.parallel_inputs,
        }
        for entry in job.query_plan or ()
    ]


def execution_statistics(job) -> Dict[str, Any]:
    return {
        "totalBytesProcessed": job.total_bytes_processed,
        "totalBytesBilled": job.total_bytes_billed,
        "totalSlotMs": job.slot_millis,
        "cacheHit": bool(job.cache_hit),
        "statementType": job.statement_type,
        "numDmlAffectedRows": job.num_dml_affected_rows,
    }


def historical_query(project_id: str, location: str, lookback_days: int) -> str:
    return (
        "SELECT\n"
        "  COUNT(*) AS runs,\n"
        "  AVG(total_bytes_processed) AS avg_bytes_processed,\n"
        "  AVG(total_slot_ms) AS avg_slot_ms,\n"
        "  AVG(TIMESTAMP_DIFF(end_time, start_time, MILLISECOND)) AS avg_duration_ms\n"
        f"FROM `{project_id}`.`{region_qualifier(location)}`.INFORMATION_SCHEMA.JOBS_BY_PROJECT\n"
        f"WHERE creation_time >= TIMESTAMP_SUB(CURRENT_TIMESTAMP(), INTERVAL {int(lookback_days)} DAY)\n"
        "  AND job_type = 'QUERY'\n"
        "  AND state = 'DONE'\n"
        "  AND error_result IS NULL\n"
        "  AND query = @query"
    )


def percent_change(current: Optional[float], baseline: Optional[float]) -> Optional[float]:
    if current is None or not baseline:
        return None
    return round((float(current) - float(baseline)) / float(baseline) * 100, 2)


def compare_with_history(history: Dict[str, Any], current: Dict[str, Any], compare: bool) -> Dict[str, Any]:
    runs = int(history.get("runs") or 0)
    comparison: Dict[str, Any] = {
        "runs": runs,
        "historicalAverage": {
            "bytesProcessed": history.get("avg_bytes_processed"),
            "slotMilliseconds": history.get("avg_slot_ms"),
            "executionTimeMs": history.get("avg_duration_ms"),
        },
        "recommendations": [],
    }
    if not runs:
        comparison["recommendations"].append("No completed runs of this query in the lookback window")
        return comparison
    if not compare:
        return comparison

    current_bytes = current.get("totalBytesProcessed") or current.get("estimatedBytesProcessed")
    bytes_change = percent_change(current_bytes, history.get("avg_bytes_processed"))
    slot_change = percent_change(current.get("totalSlotMs"), history.get("avg_slot_ms"))
    signal = slot_change if slot_change is not None else bytes_change
    if signal is None:
        trend = "unknown"
    elif signal > 10:
        trend = "degrading"
    elif signal < -10:
        trend = "improving"
    else:
        trend = "stable"
    comparison["comparison"] = {
        "bytesProcessedChangePercent": bytes_change,
        "slotMsChangePercent": slot_change,
        "trend": trend,
    }
    if trend == "degrading":
        comparison["recommendations"].append(
            f"Query cost has grown by {signal}% against its historical average; check for table growth or lost partition pruning"
        )
    return comparison


@registry.tool(
    "bq-performance-profile",
    "Profile query performance, identify bottlenecks and compare with historical runs",
    PerformanceProfileParams,
)
async def performance_profile(ctx, params: PerformanceProfileParams):
    project_id = await ctx.project_id(params.projectId)
    location = ctx.location(params.location)
    options = params.profilingOptions
    plan: List[Dict[str, Any]] = []

    if options.executionMode == "actual_run":
        config = bigquery.QueryJobConfig(use_legacy_sql=False)
        config.job_timeout_ms = options.timeout or DEFAULT_JOB_TIMEOUT_MS
        job = ctx.bigquery.query(params.query, job_config=config, project=project_id, location=location)
        await wait_for_job(job)
        stats = execution_statistics(job)
        plan = plan_stages(job)
    else:
        job = dry_run(ctx, params.query, project_id, location)
        stats = {
            "estimatedBytesProcessed": job.total_bytes_processed,
            "estimatedSlotMilliseconds": None,
            "statementType": job.statement_type,
        }

    bytes_processed = stats.get("totalBytesProcessed") or stats.get("estimatedBytesProcessed")
    bottlenecks = queries.identify_bottlenecks(params.query, plan)
    result: Dict[str, Any] = {
        "executionStatistics": stats,
        "bottlenecks": bottlenecks,
        "queryComplexity": {
            "estimatedComplexity": queries.query_complexity(params.query),
            "subqueries": queries.count_subqueries(params.query),
            "joins": queries.count_joins(params.query),
            "aggregations": queries.count_aggregations(params.query),
        },
    }
    if options.includeOptimizationHints:
        result["optimizationRecommendations"] = queries.performance_optimizations(bottlenecks, bytes_processed)
    if options.includeExecutionPlan and plan:
        result["executionPlan"] = plan
    if options.includeResourceMetrics:
        result["resourceMetrics"] = {
            "estimatedCPUTime": stats.get("totalSlotMs") or stats.get("estimatedSlotMilliseconds"),
            "estimatedMemoryUsageMB": queries.estimate_memory_mb(params.query, bytes_processed),
            "parallelizationLevel": queries.estimate_parallelization(plan),
        }

    history_options = params.historicalAnalysis
    if history_options and history_options.enabled:
        config = bigquery.QueryJobConfig(
            use_legacy_sql=False,
            query_parameters=[bigquery.ScalarQueryParameter("query", "STRING", params.query)],
        )
        rows = await run_query(
            ctx,
            historical_query(project_id, location, history_options.lookbackDays),
            project_id,
            location,
            job_config=config,
        )
        result["historicalAnalysis"] = compare_with_history(
            rows[0] if rows else {}, stats, history_options.compareWithBaseline
        )

    return json_result(envelope(
        "bq-performance-profile",
        result=result,
        metadata={"profilingMode": options.executionMode},
    ))


# Trend analysis

class AnalysisWindow(BaseModel):
    start: Optional[str] = Field(None, description="Start date (ISO format)")
    end: Optional[str] = Field(None, description="End date (ISO format)")
    granularity: Literal["HOUR", "DAY", "WEEK", "MONTH", "QUARTER", "YEAR"] = "DAY"
    lookbackPeriods: Optional[int] = Field(None, gt=0, description="Number of periods to analyze")


class Metric(BaseModel):
    field: str
    aggregation: Literal["COUNT", "SUM", "AVG", "MIN", "MAX", "STDDEV"]


class TrendAnalysisParams(ProjectParams):
    datasetId: str = Field(..., description="Dataset containing time-series data")
    tableId: Optional[str] = Field(None, description="Table to analyze; defaults to dataset tables that have timeColumn")
    timeColumn: str = Field(..., description="Column containing time values")
    analysisWindow: AnalysisWindow = Field(..., description="Time window for analysis")
    trendType: Literal["linear", "exponential", "seasonal", "decomposition", "all"] = Field("all", description="Type of trend analysis")
    metrics: Optional[List[Metric]] = Field(None, description="Metrics to analyze for trends")
    groupBy: Optional[List[str]] = Field(None, description="Dimensions to group by")


def tables_with_column(ctx, project_id: str, dataset_id: str, column: str) -> List[str]:
    found = []
    for item in ctx.bigquery.list_tables(f"{project_id}.{dataset_id}"):
        metadata = table_metadata(ctx.bigquery.get_table(item.reference))
        if any(f.get("name") == column for f in schema_fields(metadata)):
            found.append(table_path(project_id, dataset_id, item.table_id))
            if len(found) >= TREND_TABLE_LIMIT:
                break
    return found


async def execute_trend_queries(ctx, trend_queries: List[Dict[str, str]], project_id: str) -> List[Dict[str, Any]]:
    results = []
    for trend_query in trend_queries:
        logger.debug(f"Trend query ({trend_query['type']}): {trend_query['sql']}")
        try:
            rows = await run_query(ctx, trend_query["sql"], project_id)
        except gcp_exceptions.GoogleAPICallError as error:
            logger.error(f"{trend_query['type']} trend query on {trend_query['table']} failed: {error}")
            results.append({"type": trend_query["type"], "table": trend_query["table"], "error": str(error)})
        else:
            results.append({"type": trend_query["type"], "table": trend_query["table"], "data": rows})
    return results


@registry.tool(
    "bq-trend-analysis",
    "Detect trends, seasonality, spikes and anomalies in time-series data",
    TrendAnalysisParams,
)
async def trend_analysis(ctx, params: TrendAnalysisParams):
    project_id = await ctx.project_id(params.projectId)
    if params.tableId:
        tables = [table_path(project_id, params.datasetId, params.tableId)]
    else:
        tables = tables_with_column(ctx, project_id, params.datasetId, params.timeColumn)
    if not tables:
        raise ToolValidationError(
            f"No tables in dataset {params.datasetId} have a column named {params.timeColumn}"
        )

    window = params.analysisWindow.model_dump()
    metrics = [m.model_dump() for m in params.metrics] if params.metrics else None
    trend_queries = build_trend_queries(tables, params.timeColumn, window, params.trendType, metrics, params.groupBy)
    results = await execute_trend_queries(ctx, trend_queries, project_id)

    column = value_column(metrics)
    primary = next((r["data"] for r in results if r.get("data")), [])
    analysis = statistics.statistical_analysis(primary, column, params.trendType)
    patterns = statistics.detect_patterns(results, column, params.analysisWindow.granularity)
    insights = statistics.trend_insights(analysis, patterns)
    value_columns = [metric_alias(m) for m in metrics] if metrics else [column]

    result = {
        "trendAnalysis": {
            "type": params.trendType,
            "window": window,
            "tables": tables,
            "dataPoints": len(primary),
            "timeRange": {
                "start": primary[0].get("time_period") if primary else None,
                "end": primary[-1].get("time_period") if primary else None,
            },
            "queryErrors": [
                {"type": r["type"], "table": r["table"], "error": r["error"]} for r in results if "error" in r
            ],
        },
        "statisticalInsights": dict(analysis, confidence=statistics.confidence_level(analysis)),
        "detectedPatterns": patterns,
        "insights": insights,
        "visualizationRecommendations": statistics.recommend_visualizations(params.trendType, patterns, value_columns),
        "monitoringQueries": monitoring_queries(
            tables[0], params.timeColumn, [i["category"] for i in insights], metrics
        ),
        "forecastingOpportunities": statistics.forecasting_opportunities(patterns, analysis),
    }
    return json_result(envelope(
        "bq-trend-analysis",
        result=result,
        metadata={"analysisType": params.trendType},
    ))
