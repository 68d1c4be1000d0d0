"""Structured query building, validation, optimisation hints and cost estimates."""

import logging
from typing import Any, Dict, List, Literal, Optional, Union

from google.api_core import exceptions as gcp_exceptions
from pydantic import BaseModel, Field

from ..analysis import queries
from ..content import json_result
from ..registry import registry
from ..sql.builders import build_select_query
from .common import GIB, TIB, PRICE_PER_TIB, ProjectParams, dry_run, dry_run_summary, envelope

logger = logging.getLogger(__name__)

Scalar = Union[str, int, float, bool]


class Condition(BaseModel):
    field: str
    operator: Literal["=", "!=", ">", "<", ">=", "<=", "LIKE", "IN", "NOT IN", "IS NULL", "IS NOT NULL"]
    value: Optional[Union[Scalar, List[Scalar]]] = None


class Join(BaseModel):
    type: Literal["INNER", "LEFT", "RIGHT", "FULL OUTER"]
    table: str
    on: str = Field(..., description='JOIN condition (e.g. "t1.id = t2.id")')


class OrderBy(BaseModel):
    field: str
    direction: Literal["ASC", "DESC"] = "ASC"


class BuildQueryParams(ProjectParams):
    tables: List[str] = Field(..., min_length=1, description="Tables to query; the first one is the FROM table")
    fields: Optional[List[str]] = Field(None, description="Fields to select (defaults to *)")
    conditions: Optional[List[Condition]] = Field(None, description="WHERE clause conditions")
    joins: Optional[List[Join]] = Field(None, description="JOIN clauses")
    groupBy: Optional[List[str]] = Field(None, description="GROUP BY fields")
    orderBy: Optional[List[OrderBy]] = Field(None, description="ORDER BY clauses")
    limit: Optional[int] = Field(None, gt=0, description="LIMIT clause")


@registry.tool("bq-build-query", "Build BigQuery SQL queries from structured parameters", BuildQueryParams)
async def build_query(ctx, params: BuildQueryParams):
    query = build_select_query(
        params.tables,
        fields=params.fields,
        conditions=[c.model_dump() for c in params.conditions or ()],
        joins=[j.model_dump() for j in params.joins or ()],
        group_by=params.groupBy,
        order_by=[o.model_dump() for o in params.orderBy or ()],
        limit=params.limit,
    )
    logger.debug(f"Built query: {query}")
    return json_result(envelope(
        "bq-build-query",
        generatedQuery=query,
        queryInfo={
            "tables": len(params.tables),
            "joins": len(params.joins or ()),
            "conditions": len(params.conditions or ()),
            "hasGroupBy": bool(params.groupBy),
            "hasOrderBy": bool(params.orderBy),
            "hasLimit": bool(params.limit),
        },
        optimizationHints=queries.structure_hints(query),
        metadata={"queryLength": len(query)},
    ))


class ValidateQueryParams(ProjectParams):
    query: str = Field(..., min_length=1, description="SQL query string")
    dryRun: bool = Field(True, description="Use dry run for validation")
    checkSyntax: bool = Field(True, description="Check SQL syntax")
    checkTables: bool = Field(True, description="Check table reference format")
    location: Optional[str] = Field(None, description="BigQuery location for validation")


@registry.tool(
    "bq-validate-query",
    "Validate BigQuery SQL queries using dry run and syntax checking",
    ValidateQueryParams,
)
async def validate_query(ctx, params: ValidateQueryParams):
    validation: Dict[str, Any] = {
        "isValid": True,
        "errors": [],
        "warnings": [],
        "syntaxCheck": None,
        "tableCheck": None,
        "dryRunResult": None,
    }

    if params.checkSyntax:
        syntax = queries.validate_sql_syntax(params.query)
        validation["syntaxCheck"] = syntax
        validation["errors"].extend(syntax["errors"])
        validation["warnings"].extend(syntax["warnings"])
        validation["isValid"] = validation["isValid"] and syntax["isValid"]

    if params.checkTables:
        tables = queries.check_table_references(params.query)
        validation["tableCheck"] = tables
        validation["warnings"].extend(tables["warnings"])

    project_id = await ctx.project_id(params.projectId)
    if params.dryRun and validation["isValid"]:
        try:
            job = dry_run(ctx, params.query, project_id, params.location)
        except gcp_exceptions.GoogleAPICallError as error:
            logger.info(f"Dry run rejected query: {error}")
            validation["isValid"] = False
            validation["dryRunResult"] = {"isValid": False, "error": str(error)}
            validation["errors"].append(f"Dry run failed: {error}")
        else:
            validation["dryRunResult"] = dry_run_summary(job)

    return json_result(envelope(
        "bq-validate-query",
        validation=validation,
        query=params.query,
        metadata={"projectId": project_id},
    ))


class OptimizeQueryParams(ProjectParams):
    query: str = Field(..., min_length=1, description="SQL query string")
    analysisLevel: Literal["basic", "detailed", "comprehensive"] = Field("basic", description="Level of analysis to perform")
    includePerformanceHints: bool = Field(True, description="Include performance optimization hints")
    checkPartitioning: bool = Field(True, description="Check for partitioning opportunities")
    analyzeCosts: bool = Field(True, description="Include cost analysis in recommendations")


def structural_issues(query: str, level: str) -> List[Dict[str, str]]:
    issues = []
    if level == "comprehensive":
        issues.extend(queries.advanced_structure_hints(query))
    if level in ("comprehensive", "detailed"):
        issues.extend(queries.detailed_structure_hints(query))
    issues.extend(queries.structure_hints(query))
    return issues


@registry.tool("bq-optimize-query", "Analyze queries and provide optimization suggestions", OptimizeQueryParams)
async def optimize_query(ctx, params: OptimizeQueryParams):
    optimizations: Dict[str, Any] = {
        "performanceHints": queries.performance_hints(params.query) if params.includePerformanceHints else [],
        "partitioningOpportunities": (
            queries.partitioning_opportunities(params.query) if params.checkPartitioning else []
        ),
        "costOptimizations": queries.cost_optimizations(params.query) if params.analyzeCosts else [],
        "structuralIssues": structural_issues(params.query, params.analysisLevel),
    }
    optimizations["recommendations"] = queries.prioritize_hints(
        optimizations["performanceHints"] + optimizations["structuralIssues"]
    )
    return json_result(envelope(
        "bq-optimize-query",
        optimizations=optimizations,
        analysisLevel=params.analysisLevel,
        query=params.query,
    ))


class CostEstimateParams(ProjectParams):
    query: str = Field(..., min_length=1, description="SQL query string")
    includeOptimizations: bool = Field(True, description="Include optimization suggestions")
    estimateType: Literal["quick", "detailed"] = Field("quick", description="Type of cost estimation")
    location: Optional[str] = Field(None, description="BigQuery location for cost calculation")


def cost_suggestions(query: str, bytes_processed: int) -> List[Dict[str, str]]:
    suggestions = []
    if bytes_processed > GIB:
        suggestions.append({
            "type": "data_reduction",
            "message": "Query processes large amount of data",
            "suggestion": "Consider adding WHERE clauses to filter data at source",
            "potentialSavings": "High",
        })
    if queries.SELECT_STAR.search(query):
        suggestions.append({
            "type": "column_reduction",
            "message": "Selecting all columns",
            "suggestion": "Select only needed columns to reduce data processing",
            "potentialSavings": "Medium",
        })
    return suggestions


@registry.tool("bq-cost-estimate", "Estimate query costs and suggest cost reduction strategies", CostEstimateParams)
async def cost_estimate(ctx, params: CostEstimateParams):
    project_id = await ctx.project_id(params.projectId)
    job = dry_run(ctx, params.query, project_id, params.location)
    bytes_processed = int(job.total_bytes_processed or 0)
    tib_processed = bytes_processed / TIB
    cost = tib_processed * PRICE_PER_TIB

    analysis: Dict[str, Any] = {
        "bytesProcessed": bytes_processed,
        "estimatedCost": {
            "amount": cost,
            "currency": "USD",
            "bytesProcessed": bytes_processed,
            "tbProcessed": tib_processed,
        },
        "costBreakdown": {"queryProcessing": cost, "storage": 0, "streaming": 0},
        "optimizationSuggestions": (
            cost_suggestions(params.query, bytes_processed) if params.includeOptimizations else []
        ),
        "estimationMethod": params.estimateType,
    }
    if params.estimateType == "detailed":
        analysis["complexity"] = queries.query_complexity(params.query)
        analysis["bottlenecks"] = queries.identify_bottlenecks(params.query)
    return json_result(envelope(
        "bq-cost-estimate",
        costAnalysis=analysis,
        query=params.query,
        metadata={"projectId": project_id},
    ))
