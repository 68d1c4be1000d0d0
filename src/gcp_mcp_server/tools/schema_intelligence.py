"""Schema analysis, natural-language SQL drafting, query suggestions and pattern detection."""

import logging
from typing import Any, Dict, List, Literal, Optional

from google.api_core import exceptions as gcp_exceptions
from pydantic import Field

from ..analysis import natural_language, patterns, schema
from ..content import iso_or_none, json_result
from ..registry import registry
from .common import ProjectParams, dry_run, schema_fields, table_metadata, table_path

logger = logging.getLogger(__name__)

CONTEXT_TABLE_LIMIT = 10
PATTERN_TYPES = ["join", "aggregation", "filter", "partition", "cluster"]


class AnalyzeSchemaParams(ProjectParams):
    datasetId: str = Field(..., min_length=1, description="BigQuery dataset ID")
    tableId: str = Field(..., min_length=1, description="BigQuery table ID")
    analysisDepth: Literal["basic", "intermediate", "advanced"] = Field(
        "intermediate", description="Depth of analysis to perform"
    )


@registry.tool(
    "bq-analyze-schema",
    "Deep schema analysis: nesting, data types, partitioning and clustering effectiveness",
    AnalyzeSchemaParams,
)
async def analyze_schema(ctx, params: AnalyzeSchemaParams):
    project_id = await ctx.project_id(params.projectId)
    table = ctx.bigquery.get_table(table_path(project_id, params.datasetId, params.tableId))
    metadata = table_metadata(table)
    fields = schema_fields(metadata)

    analysis: Dict[str, Any] = {
        "tableInfo": {
            "name": params.tableId,
            "dataset": params.datasetId,
            "project": project_id,
            "creationTime": iso_or_none(table.created),
            "lastModifiedTime": iso_or_none(table.modified),
            "numBytes": int(metadata.get("numBytes") or 0),
            "numRows": int(metadata.get("numRows") or 0),
            "type": metadata.get("type"),
        },
        "schema": {
            "fields": schema.analyze_fields(fields),
            "complexity": schema.schema_complexity(fields),
            "depth": schema.schema_depth(fields),
        },
        "partitioning": schema.analyze_partitioning(metadata),
        "clustering": None,
        "optimization": {"recommendations": [], "dataQualityIssues": [], "performanceHints": []},
    }
    clustering = metadata.get("clustering")
    if clustering:
        analysis["clustering"] = schema.analyze_clustering(clustering.get("fields") or [], fields)
    if params.analysisDepth != "basic":
        analysis["optimization"] = schema.optimization_recommendations(
            analysis, params.analysisDepth == "advanced"
        )
    return json_result(analysis)


class GenerateSqlParams(ProjectParams):
    naturalLanguageQuery: str = Field(..., min_length=1, description="Natural language description of the query")
    targetDatasets: Optional[List[str]] = Field(None, description="Dataset IDs to consider for query generation")
    outputFormat: Literal["standard", "optimized", "explained"] = Field(
        "standard", description="Output format for generated SQL"
    )


def gather_schema_context(ctx, project_id: str, dataset_ids: List[str]) -> Dict[str, Any]:
    """Fields of the first tables in each dataset, plus likely foreign keys between them."""
    context: Dict[str, Any] = {"datasets": {}, "relationships": []}
    inspected = []
    for dataset_id in dataset_ids:
        tables: Dict[str, Any] = {}
        for item in list(ctx.bigquery.list_tables(f"{project_id}.{dataset_id}"))[:CONTEXT_TABLE_LIMIT]:
            metadata = table_metadata(ctx.bigquery.get_table(item.reference))
            fields = [
                {"name": f["name"], "type": f.get("type"), "mode": f.get("mode")}
                for f in schema_fields(metadata)
            ]
            if not fields:
                continue
            tables[item.table_id] = {
                "fields": fields,
                "rowCount": int(metadata.get("numRows") or 0),
                "sizeBytes": int(metadata.get("numBytes") or 0),
            }
            inspected.append({"datasetId": dataset_id, "tableId": item.table_id, "fields": fields})
        context["datasets"][dataset_id] = {"tables": tables}
    context["relationships"] = schema.detect_table_relationships(inspected)
    return context


def validate_generated(ctx, query: str, project_id: str) -> Dict[str, Any]:
    if query.startswith("--"):
        return {"isValid": False, "error": query.lstrip("- ")}
    try:
        job = dry_run(ctx, query, project_id)
    except gcp_exceptions.GoogleAPICallError as error:
        logger.info(f"Generated SQL failed dry run: {error}")
        return {"isValid": False, "error": str(error)}
    return {
        "isValid": True,
        "estimatedBytes": int(job.total_bytes_processed or 0),
        "referencedTables": [
            f"{ref.project}.{ref.dataset_id}.{ref.table_id}" for ref in getattr(job, "referenced_tables", None) or ()
        ],
    }


@registry.tool(
    "bq-generate-sql",
    "Generate BigQuery SQL from a natural language description",
    GenerateSqlParams,
)
async def generate_sql(ctx, params: GenerateSqlParams):
    project_id = await ctx.project_id(params.projectId)
    context: Dict[str, Any] = {"datasets": {}, "relationships": []}
    if params.targetDatasets:
        context = gather_schema_context(ctx, project_id, params.targetDatasets)

    generated = natural_language.generate_sql(params.naturalLanguageQuery, context, params.outputFormat)
    logger.debug(f"Generated SQL: {generated['query']}")
    validation = validate_generated(ctx, generated["query"], project_id)

    response = {
        "query": generated["query"],
        "confidence": generated["confidence"],
        "explanation": generated["explanation"],
        "validation": validation,
        "alternatives": generated["alternatives"],
    }
    if "breakdown" in generated:
        response["breakdown"] = generated["breakdown"]
    if params.outputFormat == "optimized" and validation["isValid"]:
        optimized = natural_language.optimize_generated(generated["query"])
        response["optimizedQuery"] = optimized["query"]
        response["optimizations"] = optimized["appliedOptimizations"]
    return json_result(response)


class SmartSuggestParams(ProjectParams):
    datasetId: str = Field(..., min_length=1, description="BigQuery dataset ID")
    queryContext: Optional[str] = Field(None, description="Context or goal for query suggestions")
    suggestionType: Literal["analytics", "reporting", "exploration", "optimization"] = Field(
        "analytics", description="Type of suggestions to generate"
    )


@registry.tool(
    "bq-smart-suggest",
    "Suggest starter queries for a dataset",
    SmartSuggestParams,
)
async def smart_suggest(ctx, params: SmartSuggestParams):
    project_id = await ctx.project_id(params.projectId)
    table_ids = [item.table_id for item in ctx.bigquery.list_tables(f"{project_id}.{params.datasetId}")]
    return json_result(
        patterns.smart_suggestions(params.datasetId, table_ids, params.suggestionType, params.queryContext)
    )


class PatternDetectorParams(ProjectParams):
    datasetId: str = Field(..., min_length=1, description="BigQuery dataset ID")
    analysisScope: Literal["table", "dataset", "project"] = Field("dataset", description="Scope of pattern analysis")
    patternTypes: Optional[List[Literal["join", "aggregation", "filter", "partition", "cluster"]]] = Field(
        None, description="Specific pattern types to detect"
    )


def layout_patterns(ctx, project_id: str, dataset_id: str, pattern_types: List[str]) -> List[Dict[str, Any]]:
    found = []
    for item in ctx.bigquery.list_tables(f"{project_id}.{dataset_id}"):
        metadata = table_metadata(ctx.bigquery.get_table(item.reference))
        found.extend(patterns.table_layout_patterns(dict(metadata, tableId=item.table_id), pattern_types))
    return found


def naming_patterns(table_ids: List[str], pattern_types: List[str]) -> List[Dict[str, Any]]:
    found = []
    if "join" in pattern_types:
        found.extend(patterns.join_patterns(table_ids))
    if "aggregation" in pattern_types:
        found.extend(patterns.aggregation_patterns(table_ids))
    return found


@registry.tool(
    "bq-pattern-detector",
    "Detect join, aggregation, partitioning and clustering patterns across tables",
    PatternDetectorParams,
)
async def pattern_detector(ctx, params: PatternDetectorParams):
    project_id = await ctx.project_id(params.projectId)
    pattern_types = list(params.patternTypes or PATTERN_TYPES)
    detected: List[Dict[str, Any]] = []

    if params.analysisScope == "table":
        detected = layout_patterns(ctx, project_id, params.datasetId, pattern_types)
    elif params.analysisScope == "dataset":
        table_ids = [item.table_id for item in ctx.bigquery.list_tables(f"{project_id}.{params.datasetId}")]
        detected = naming_patterns(table_ids, pattern_types)
        detected.extend(layout_patterns(ctx, project_id, params.datasetId, pattern_types))
    else:
        for dataset in ctx.bigquery.list_datasets(project=project_id):
            table_ids = [item.table_id for item in ctx.bigquery.list_tables(dataset.reference)]
            for pattern in naming_patterns(table_ids, pattern_types):
                pattern["dataset"] = dataset.dataset_id
                detected.append(pattern)

    return json_result({
        "scope": params.analysisScope,
        "detectedPatterns": patterns.score_patterns(detected),
        "recommendations": patterns.pattern_recommendations(detected),
    })
