"""Template library, query composition and clustering/partitioning recommendations."""

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..analysis.queries import column_usage, index_recommendations
from ..analysis.schema import partition_clause
from ..content import text_result
from ..errors import ToolValidationError
from ..registry import registry
from ..sql.builders import clustering_ddl, time_partitioning_ddl
from ..sql.composer import PERFORMANCE_HINTS, compose
from ..sql.templates import render_template
from .analytics import current_partitioning
from .common import TIB, ProjectParams, table_metadata, table_path

logger = logging.getLogger(__name__)

# USD per TiB per month of active logical storage
STORAGE_PRICE_PER_TIB = 20.0


class TimeRange(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    interval: Optional[str] = None


class Customization(BaseModel):
    dataset: Optional[str] = None
    table: Optional[str] = None
    timeColumn: Optional[str] = None
    dimensions: Optional[List[str]] = None
    metrics: Optional[List[str]] = None
    filters: Optional[Dict[str, Any]] = None
    timeRange: Optional[TimeRange] = None

    model_config = {"extra": "allow"}


class TemplateLibraryParams(BaseModel):
    templateCategory: Literal["reporting", "etl", "data_quality", "analytics", "ml_prep"]
    useCase: str = Field(..., description="Specific use case within the category")
    customization: Optional[Customization] = Field(None, description="Values substituted into template placeholders")
    projectContext: Optional[str] = Field(None, description="Project prefixed to dataset.table references")


@registry.tool(
    "bq-template-library",
    "Access common analytics query templates for reporting, ETL, data quality, analytics and ML preparation",
    TemplateLibraryParams,
)
async def template_library(ctx, params: TemplateLibraryParams):
    customization = params.customization.model_dump(exclude_none=True) if params.customization else {}
    try:
        rendered = render_template(params.templateCategory, params.useCase, customization, params.projectContext)
    except KeyError as error:
        raise ToolValidationError(error.args[0], error)

    text = (
        f"Generated {rendered['name']} template:\n```sql\n{rendered['query']}\n```\n\n"
        f"Description: {rendered['description']}\n"
        f"Category: {params.templateCategory}\n"
        f"Use Case: {params.useCase}\n"
    )
    if rendered["missingParameters"]:
        text += f"\nRequired parameters to customize: {', '.join(rendered['missingParameters'])}"
    text += (
        f"\n\nAvailable templates in '{params.templateCategory}' category: "
        f"{', '.join(rendered['availableUseCases'])}"
    )
    return text_result(text)


class Component(BaseModel):
    id: str
    type: Literal["source", "transformation", "aggregation", "filter", "join"]
    query: str
    dependencies: Optional[List[str]] = None
    alias: Optional[str] = None
    joinKey: Optional[str] = Field(None, description="USING column for the join strategy (default: id)")
    targetDataset: Optional[str] = Field(None, description="Dataset receiving views for the materialized strategy")


class ComposerOutput(BaseModel):
    includeExplanation: bool = False
    formatSql: bool = True
    includePerformanceHints: bool = True


class QueryComposerParams(BaseModel):
    components: List[Component] = Field(..., min_length=1)
    compositionStrategy: Literal["union", "join", "subquery", "cte", "materialized"]
    optimizationLevel: Literal["none", "basic", "advanced"] = "basic"
    outputFormat: ComposerOutput = Field(default_factory=ComposerOutput)


@registry.tool(
    "bq-query-composer",
    "Compose complex queries from dependent components",
    QueryComposerParams,
)
async def query_composer(ctx, params: QueryComposerParams):
    components = [c.model_dump() for c in params.components]
    dataset = next((c["targetDataset"] for c in components if c.get("targetDataset")), "{dataset}")
    query = compose(components, params.compositionStrategy, params.optimizationLevel, dataset)

    output = ""
    if params.outputFormat.includeExplanation:
        output += (
            f"Composition Strategy: {params.compositionStrategy}\n"
            f"Optimization Level: {params.optimizationLevel}\n"
            f"Components: {len(components)}\n\n"
        )
    if params.outputFormat.formatSql:
        output += f"Composed Query:\n```sql\n{query}\n```"
    else:
        output += f"Composed Query:\n{query}"
    if params.outputFormat.includePerformanceHints:
        output += "\n\nPerformance Hints:\n" + "\n".join(
            f"- {hint}" for hint in PERFORMANCE_HINTS[params.compositionStrategy]
        )
    return text_result(output)


class QueryPattern(BaseModel):
    query: str
    frequency: Optional[float] = None
    avgExecutionTime: Optional[float] = None


class AutoIndexParams(ProjectParams):
    datasetId: str
    tableId: str
    queryPatterns: List[QueryPattern] = Field(default_factory=list)
    recommendationType: Literal["clustering", "partitioning", "both"] = "both"
    costAnalysis: bool = True


def implementation_script(recommendation: Dict[str, Any], table_name: str, partitioning) -> str:
    header = f"-- {recommendation['type'].capitalize()} recommendation: {recommendation['reason']}\n"
    if recommendation["type"] == "clustering":
        return header + clustering_ddl(table_name, recommendation["columns"], partition_clause(partitioning))
    return header + time_partitioning_ddl(table_name, recommendation["columns"][0])


def top_columns(counter, count: int = 3) -> str:
    return ", ".join(f"{column} ({uses:g})" for column, uses in counter.most_common(count)) or "none"


@registry.tool(
    "bq-auto-index",
    "Recommend clustering and partitioning from observed query patterns",
    AutoIndexParams,
)
async def auto_index(ctx, params: AutoIndexParams):
    project_id = await ctx.project_id(params.projectId)
    table_name = table_path(project_id, params.datasetId, params.tableId)
    metadata = table_metadata(ctx.bigquery.get_table(table_name))

    num_rows = int(metadata.get("numRows") or 0)
    num_bytes = int(metadata.get("numBytes") or 0)
    partitioning = current_partitioning(metadata)
    clustering = (metadata.get("clustering") or {}).get("fields") or []

    usage = column_usage([p.model_dump() for p in params.queryPatterns])
    recommendations = [
        rec for rec in index_recommendations(usage, partitioning is not None)
        if params.recommendationType == "both" or rec["type"] == params.recommendationType
    ]
    scripts = [implementation_script(rec, table_name, partitioning) for rec in recommendations]

    size_gib = num_bytes / 1024 ** 3
    partitioned = f"Yes ({partitioning['field'] or '_PARTITIONTIME'})" if partitioning else "No"
    lines = [
        f"Index Recommendation Analysis for {table_name}",
        "",
        "Table Information:",
        f"- Total rows: {num_rows:,}",
        f"- Total size: {size_gib:.2f} GB",
        f"- Currently partitioned: {partitioned}",
        f"- Currently clustered: {'Yes (' + ', '.join(clustering) + ')' if clustering else 'No'}",
        "",
        "Query Pattern Analysis:",
        f"- Analyzed queries: {len(params.queryPatterns)}",
        f"- Most filtered columns: {top_columns(usage['filter'])}",
        f"- Most joined columns: {top_columns(usage['join'])}",
        f"- Most used in GROUP BY: {top_columns(usage['groupBy'])}",
        f"- Most used in ORDER BY: {top_columns(usage['orderBy'])}",
        "",
        f"Recommendations ({len(recommendations)}):",
    ]
    for index, rec in enumerate(recommendations, 1):
        lines.extend([
            f"{index}. {rec['type'].upper()} Recommendation",
            f"   - Columns: {', '.join(rec['columns'])}",
            f"   - Reason: {rec['reason']}",
            f"   - Impact: {rec['impact']}",
            f"   - Confidence: {rec['confidence'] * 100:.0f}%",
        ])
    if scripts:
        lines.extend(["", "Implementation Scripts:", "\n\n".join(scripts)])
    if params.costAnalysis:
        storage_cost = num_bytes / TIB * STORAGE_PRICE_PER_TIB
        lines.extend([
            "",
            "Cost Analysis:",
            f"- Current table size: {size_gib:.2f} GB",
            f"- Current storage cost: ${storage_cost:.2f}/month",
            "- Clustering overhead: ~5% temporary storage during rebuild",
            "- Partitioning can reduce query costs by 50-95% for time-filtered queries",
        ])
    return text_result("\n".join(lines))
