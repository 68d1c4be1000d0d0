"""``gcp-sql``: INFORMATION_SCHEMA operations and raw SQL with formatted output."""

import logging
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..content import format_rows, text_result
from ..registry import registry
from ..sql.information_schema import OPERATION_TEMPLATES, render_operation
from .common import run_query

logger = logging.getLogger(__name__)


class GcpSqlParams(BaseModel):
    operation: Optional[str] = Field(
        None,
        description="Predefined operation: " + ", ".join(OPERATION_TEMPLATES),
    )
    query: Optional[str] = Field(None, description="Raw SQL query to execute")
    projectId: Optional[str] = Field(None, description="GCP Project ID (optional, uses default if not provided)")
    dataset: Optional[str] = Field(None, description="Dataset name, required by dataset-scoped operations")
    table: Optional[str] = Field(None, description="Table name, required by describe-table and table-schema")
    location: Optional[str] = Field(None, description="BigQuery location for INFORMATION_SCHEMA region (default: US)")
    hours: int = Field(24, ge=1, description="Lookback window for job-history")
    limit: int = Field(100, ge=1, description="Row limit for job-history")
    format: Literal["json", "table", "csv"] = Field("json", description="Output format")
    maxRows: int = Field(100, ge=1, description="Maximum rows to display")

    @model_validator(mode="after")
    def require_operation_or_query(self):
        if not self.operation and not self.query:
            raise ValueError("Either 'operation' or 'query' must be provided")
        return self


@registry.tool(
    "gcp-sql",
    "Universal SQL interface for BigQuery: run predefined INFORMATION_SCHEMA operations or raw SQL",
    GcpSqlParams,
)
async def gcp_sql(ctx, params: GcpSqlParams):
    project_id = await ctx.project_id(params.projectId)
    location = ctx.location(params.location)

    if params.operation:
        sql = render_operation(
            params.operation,
            project_id,
            dataset=params.dataset,
            table=params.table,
            location=location,
            hours=params.hours,
            limit=params.limit,
        )
        logger.info(f"gcp-sql operation {params.operation} on project {project_id}")
    else:
        sql = params.query

    rows = await run_query(ctx, sql, project_id, location)
    return text_result(format_rows(rows, params.format, params.maxRows))
