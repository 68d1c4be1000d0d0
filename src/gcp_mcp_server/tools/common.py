"""Pieces shared by the BigQuery tool modules: base argument models, job polling, dry runs."""

import logging
from typing import Any, Dict, List, Optional

import anyio
from google.cloud import bigquery
from pydantic import BaseModel, Field

from ..content import rows_to_dicts, utc_now_iso
from ..errors import GCPToolError, with_retry
from ..registry import ToolContext

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0
POLL_ATTEMPTS = 300
DEFAULT_JOB_TIMEOUT_MS = 600000

# on-demand analysis price, USD per TiB scanned
PRICE_PER_TIB = 5.0
TIB = 1024 ** 4
GIB = 1024 ** 3


class ProjectParams(BaseModel):
    projectId: Optional[str] = Field(None, description="GCP Project ID (optional, uses default if not provided)")


class LocatedParams(ProjectParams):
    location: Optional[str] = Field(None, description="Job location (default: US)")


def table_path(project_id: str, dataset_id: str, table_id: str) -> str:
    return f"{project_id}.{dataset_id}.{table_id}"


def table_metadata(table) -> Dict[str, Any]:
    """REST representation of a table: ``schema.fields``, ``numRows``, ``timePartitioning``..."""
    return table.to_api_repr()


def schema_fields(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    return (metadata.get("schema") or {}).get("fields") or []


async def wait_for_job(job, attempts: int = POLL_ATTEMPTS, interval: float = POLL_INTERVAL):
    """Poll ``job`` until BigQuery reports it DONE.

    Raises when the job does not finish within ``attempts`` polls or finishes
    with an error result.
    """
    polls = 0
    while not job.done():
        if polls >= attempts:
            raise GCPToolError(f"Job {job.job_id} did not finish after {attempts} status checks")
        await anyio.sleep(interval)
        polls += 1
    if job.error_result:
        raise GCPToolError(f"Job {job.job_id} failed: {job.error_result.get('message')}")
    logger.debug(f"Job {job.job_id} finished after {polls} polls")
    return job


async def run_query(
    ctx: ToolContext,
    sql: str,
    project_id: str,
    location: Optional[str] = None,
    max_results: Optional[int] = None,
    job_config: Optional[bigquery.QueryJobConfig] = None,
) -> List[Dict[str, Any]]:
    logger.debug(f"Running query: {sql}")
    job = await with_retry(
        ctx.bigquery.query,
        sql,
        job_config=job_config or bigquery.QueryJobConfig(use_legacy_sql=False),
        project=project_id,
        location=ctx.location(location),
    )
    return rows_to_dicts(job.result(max_results=max_results))


def dry_run(ctx: ToolContext, sql: str, project_id: str, location: Optional[str] = None):
    logger.debug(f"Dry run: {sql}")
    config = bigquery.QueryJobConfig(dry_run=True, use_query_cache=False, use_legacy_sql=False)
    return ctx.bigquery.query(sql, job_config=config, project=project_id, location=ctx.location(location))


def format_bytes(num_bytes: Optional[int]) -> str:
    size = float(num_bytes or 0)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"


def dry_run_summary(job) -> Dict[str, Any]:
    schema = getattr(job, "schema", None) or []
    return {
        "isValid": True,
        "bytesProcessed": job.total_bytes_processed,
        "cacheHit": job.cache_hit,
        "statementType": job.statement_type,
        "schema": [field.to_api_repr() for field in schema],
    }


def envelope(tool: str, **body: Any) -> Dict[str, Any]:
    """Success body shared by the analysis tools: payload plus tool metadata."""
    result: Dict[str, Any] = {"success": True}
    result.update(body)
    result.setdefault("metadata", {})
    result["metadata"].update({"tool": tool, "timestamp": utc_now_iso()})
    return result
