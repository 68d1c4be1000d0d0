"""BigQuery jobs, sessions, procedures, data movement and the legacy query tools."""

import datetime
import logging
import time
import uuid
from typing import Any, Dict, List, Literal, Optional

from google.cloud import bigquery
from pydantic import BaseModel, Field

from ..content import format_rows, iso_or_none, json_result, rows_to_dicts, text_result, to_json
from ..errors import GCPToolError, ToolValidationError
from ..registry import registry
from ..sql.builders import build_procedure_call, build_script
from .common import (
    DEFAULT_JOB_TIMEOUT_MS,
    LocatedParams,
    ProjectParams,
    table_metadata,
    table_path,
    wait_for_job,
)

logger = logging.getLogger(__name__)

WriteDisposition = Literal["WRITE_TRUNCATE", "WRITE_APPEND", "WRITE_EMPTY"]
CreateDisposition = Literal["CREATE_IF_NEEDED", "CREATE_NEVER"]

_FORMAT_ALIASES = {"JSON": "NEWLINE_DELIMITED_JSON"}


def infer_parameter_type(value: Any) -> str:
    if isinstance(value, bool):
        return "BOOL"
    if isinstance(value, int):
        return "INT64"
    if isinstance(value, float):
        return "FLOAT64"
    return "STRING"


def query_parameters(parameters: Dict[str, Any]) -> List[bigquery.ScalarQueryParameter]:
    return [
        bigquery.ScalarQueryParameter(name, infer_parameter_type(value), value)
        for name, value in parameters.items()
    ]


def _ms_to_iso(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return datetime.datetime.fromtimestamp(int(value) / 1000, tz=datetime.timezone.utc).isoformat()


def _parse_iso(value: str) -> datetime.datetime:
    try:
        return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ToolValidationError(f"Invalid ISO timestamp: {value}")


# Jobs API

class CreateQueryJobParams(LocatedParams):
    query: str = Field(..., description="SQL query to execute")
    destinationDataset: Optional[str] = Field(None, description="Dataset for destination table")
    destinationTable: Optional[str] = Field(None, description="Table name to write results to")
    writeDisposition: Optional[WriteDisposition] = Field(None, description="How to write results (default: WRITE_TRUNCATE)")
    timeoutMs: Optional[int] = Field(None, description="Job timeout in milliseconds")
    dryRun: bool = Field(False, description="Validate query without executing")
    useLegacySql: bool = Field(False, description="Use legacy SQL syntax")
    priority: Literal["INTERACTIVE", "BATCH"] = Field("INTERACTIVE", description="Query priority")
    labels: Optional[Dict[str, str]] = Field(None, description="Job labels")
    parameters: Optional[Dict[str, Any]] = Field(None, description="Named query parameters (@name)")
    maximumBytesBilled: Optional[int] = Field(None, description="Fail the job if it would bill more bytes")
    useQueryCache: bool = Field(True, description="Use cached results when available")


@registry.tool("bq_create_query_job", "Create an async BigQuery query job with advanced options", CreateQueryJobParams)
async def create_query_job(ctx, params: CreateQueryJobParams):
    project_id = await ctx.project_id(params.projectId)
    location = ctx.location(params.location)

    config = bigquery.QueryJobConfig(
        dry_run=params.dryRun,
        use_legacy_sql=params.useLegacySql,
        use_query_cache=params.useQueryCache,
        priority=params.priority,
        labels=params.labels or {},
    )
    config.job_timeout_ms = params.timeoutMs or DEFAULT_JOB_TIMEOUT_MS
    if params.maximumBytesBilled:
        config.maximum_bytes_billed = params.maximumBytesBilled
    if params.destinationTable:
        if not params.destinationDataset:
            raise ToolValidationError("destinationDataset is required when destinationTable is set")
        config.destination = table_path(project_id, params.destinationDataset, params.destinationTable)
        config.write_disposition = params.writeDisposition or "WRITE_TRUNCATE"
    if params.parameters:
        config.query_parameters = query_parameters(params.parameters)

    job = ctx.bigquery.query(params.query, job_config=config, project=project_id, location=location)

    if params.dryRun:
        return text_result(f"Dry run successful. Query would process {job.total_bytes_processed} bytes.")
    return text_result(
        f"Query job created successfully.\n"
        f"Job ID: {job.job_id}\n"
        f"Project: {project_id}\n"
        f"Location: {location}\n"
        f"Status: {job.state}"
    )


class GetJobParams(LocatedParams):
    jobId: str = Field(..., description="Job ID to check")
    getResults: bool = Field(True, description="Retrieve query results if available")
    maxResults: int = Field(100, description="Max results to return")


@registry.tool("bq_get_job", "Get status and results of a BigQuery job", GetJobParams)
async def get_job(ctx, params: GetJobParams):
    project_id = await ctx.project_id(params.projectId)
    job = ctx.bigquery.get_job(params.jobId, project=project_id, location=ctx.location(params.location))

    response: Dict[str, Any] = {
        "jobId": params.jobId,
        "state": job.state,
        "creationTime": iso_or_none(job.created),
        "startTime": iso_or_none(job.started),
        "endTime": iso_or_none(job.ended),
        "totalBytesProcessed": getattr(job, "total_bytes_processed", None),
        "totalSlotMs": getattr(job, "slot_millis", None),
        "errorResult": job.error_result,
    }
    if job.state == "DONE" and not job.error_result and params.getResults and job.job_type == "query":
        rows = rows_to_dicts(job.result(max_results=params.maxResults))
        response["resultCount"] = len(rows)
        response["results"] = rows
    return json_result(response)


class CancelJobParams(LocatedParams):
    jobId: str = Field(..., description="Job ID to cancel")


@registry.tool("bq_cancel_job", "Cancel a running BigQuery job", CancelJobParams)
async def cancel_job(ctx, params: CancelJobParams):
    project_id = await ctx.project_id(params.projectId)
    ctx.bigquery.cancel_job(params.jobId, project=project_id, location=ctx.location(params.location))
    return text_result(f"Job {params.jobId} cancellation requested.")


class ListJobsParams(ProjectParams):
    maxResults: int = Field(50, description="Maximum results to return")
    allUsers: bool = Field(False, description="List jobs from all users")
    stateFilter: Optional[Literal["pending", "running", "done"]] = Field(None, description="Filter by job state")
    minCreationTime: Optional[str] = Field(None, description="Min creation time (ISO format)")


@registry.tool("bq_list_jobs", "List BigQuery jobs", ListJobsParams)
async def list_jobs(ctx, params: ListJobsParams):
    project_id = await ctx.project_id(params.projectId)
    kwargs: Dict[str, Any] = {
        "project": project_id,
        "max_results": params.maxResults,
        "all_users": params.allUsers,
    }
    if params.stateFilter:
        kwargs["state_filter"] = params.stateFilter
    if params.minCreationTime:
        kwargs["min_creation_time"] = _parse_iso(params.minCreationTime)

    jobs = [
        {
            "id": job.job_id,
            "state": job.state,
            "type": job.job_type,
            "creationTime": iso_or_none(job.created),
            "user": job.user_email,
        }
        for job in ctx.bigquery.list_jobs(**kwargs)
    ]
    return text_result(f"Found {len(jobs)} jobs:\n{to_json(jobs)}")


# Sessions

class CreateSessionParams(LocatedParams):
    pass


@registry.tool("bq_create_session", "Create a BigQuery session for stateful operations", CreateSessionParams)
async def create_session(ctx, params: CreateSessionParams):
    project_id = await ctx.project_id(params.projectId)
    location = ctx.location(params.location)
    label = f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    query = (
        "CREATE TEMP TABLE _session_info AS\n"
        f"SELECT '{label}' AS session_id, CURRENT_TIMESTAMP() AS created_at"
    )
    job = ctx.bigquery.query(
        query,
        job_config=bigquery.QueryJobConfig(create_session=True, use_legacy_sql=False),
        project=project_id,
        location=location,
    )
    await wait_for_job(job)
    session_info = job.session_info
    bq_session_id = session_info.session_id if session_info else None
    logger.info(f"Created BigQuery session {bq_session_id}")
    return text_result(
        f"Session created.\n"
        f"Session ID: {label}\n"
        f"BigQuery Session: {bq_session_id}\n"
        f"Location: {location}"
    )


class QueryWithSessionParams(LocatedParams):
    query: str = Field(..., description="SQL query to execute")
    sessionId: str = Field(..., description="BigQuery session ID to use")


def session_config(session_id: str) -> bigquery.QueryJobConfig:
    return bigquery.QueryJobConfig(
        use_legacy_sql=False,
        connection_properties=[bigquery.ConnectionProperty("session_id", session_id)],
    )


@registry.tool("bq_query_with_session", "Execute query within a BigQuery session", QueryWithSessionParams)
async def query_with_session(ctx, params: QueryWithSessionParams):
    project_id = await ctx.project_id(params.projectId)
    job = ctx.bigquery.query(
        params.query,
        job_config=session_config(params.sessionId),
        project=project_id,
        location=ctx.location(params.location),
    )
    rows = rows_to_dicts(job.result())
    return text_result(
        f"Query executed in session {params.sessionId}.\n"
        f"Returned {len(rows)} rows:\n{to_json(rows[:100])}"
    )


# Procedures and scripts

class ProcedureParameter(BaseModel):
    value: Any = Field(None, description="Parameter value")
    type: Optional[str] = Field(None, description="GoogleSQL type, e.g. STRING, INT64, DATE, ARRAY, STRUCT")
    elementType: Optional[str] = Field(None, description="Element type for ARRAY parameters")
    name: Optional[str] = Field(None, description="Parameter name")


class ExecuteProcedureParams(LocatedParams):
    procedureName: str = Field(..., description="Procedure name")
    datasetId: str = Field(..., description="Dataset containing the procedure")
    projectId: str = Field(..., description="GCP Project ID")
    parameters: List[ProcedureParameter] = Field(default_factory=list, description="Procedure arguments in order")
    timeoutMs: Optional[int] = Field(None, description="Execution timeout in milliseconds")
    waitForCompletion: bool = Field(True, description="Wait for procedure to complete")


@registry.tool("bq_execute_procedure", "Execute a stored procedure with proper parameter handling", ExecuteProcedureParams)
async def execute_procedure(ctx, params: ExecuteProcedureParams):
    arguments = [p.model_dump() for p in params.parameters]
    call = build_procedure_call(params.projectId, params.datasetId, params.procedureName, arguments)
    logger.debug(f"Procedure call: {call}")

    config = bigquery.QueryJobConfig(use_legacy_sql=False)
    config.job_timeout_ms = params.timeoutMs or DEFAULT_JOB_TIMEOUT_MS
    job = ctx.bigquery.query(call, job_config=config, project=params.projectId, location=ctx.location(params.location))

    if not params.waitForCompletion:
        return text_result(
            f"Procedure {params.procedureName} job created.\nJob ID: {job.job_id}\nUse bq_get_job to check status."
        )

    try:
        await wait_for_job(job)
    except GCPToolError as error:
        raise GCPToolError(f"Procedure failed: {error}", error)
    rows = rows_to_dicts(job.result())
    text = (
        f"Procedure {params.procedureName} executed successfully.\n"
        f"Job ID: {job.job_id}\n"
        f"Rows returned: {len(rows)}"
    )
    if rows:
        text += f"\nResults:\n{to_json(rows)}"
    return text_result(text)


class ExecuteScriptParams(LocatedParams):
    statements: List[str] = Field(..., min_length=1, description="SQL statements, executed in order")
    projectId: str = Field(..., description="GCP Project ID")
    sessionId: Optional[str] = Field(None, description="Optional session ID")
    timeoutMs: Optional[int] = Field(None, description="Script timeout in milliseconds")
    waitForCompletion: bool = Field(True, description="Wait for script completion")


@registry.tool("bq_execute_script", "Execute multiple SQL statements as a script", ExecuteScriptParams)
async def execute_script(ctx, params: ExecuteScriptParams):
    script = build_script(params.statements)
    config = session_config(params.sessionId) if params.sessionId else bigquery.QueryJobConfig(use_legacy_sql=False)
    config.job_timeout_ms = params.timeoutMs or DEFAULT_JOB_TIMEOUT_MS
    job = ctx.bigquery.query(script, job_config=config, project=params.projectId, location=ctx.location(params.location))

    if not params.waitForCompletion:
        return text_result(f"Script job created.\nJob ID: {job.job_id}\nStatements: {len(params.statements)}")

    try:
        await wait_for_job(job)
    except GCPToolError as error:
        raise GCPToolError(f"Script failed: {error}", error)
    return text_result(f"Script executed successfully.\nJob ID: {job.job_id}\nStatements: {len(params.statements)}")


# Data movement

class LoadDataParams(LocatedParams):
    sourceUri: str = Field(..., description="Source file URI (gs://...)")
    datasetId: str = Field(..., description="Target dataset ID")
    tableId: str = Field(..., description="Target table ID")
    format: Literal["CSV", "JSON", "AVRO", "PARQUET", "ORC"] = Field("CSV", description="Source file format")
    writeDisposition: WriteDisposition = Field("WRITE_APPEND", description="How to write data")
    createDisposition: CreateDisposition = Field("CREATE_IF_NEEDED", description="Table creation behavior")
    autodetect: bool = Field(True, description="Auto-detect schema")
    schema_: Optional[List[Dict[str, Any]]] = Field(None, alias="schema", description="Table schema fields if not auto-detecting")
    skipLeadingRows: Optional[int] = Field(None, description="Rows to skip (CSV, default 1)")
    fieldDelimiter: str = Field(",", description="Field delimiter (CSV)")
    allowQuotedNewlines: bool = Field(True, description="Allow quoted newlines (CSV)")
    allowJaggedRows: bool = Field(False, description="Allow jagged rows (CSV)")
    waitForCompletion: bool = Field(True, description="Wait for load to complete")


def load_job_config(params: LoadDataParams) -> bigquery.LoadJobConfig:
    config = bigquery.LoadJobConfig(
        source_format=_FORMAT_ALIASES.get(params.format, params.format),
        write_disposition=params.writeDisposition,
        create_disposition=params.createDisposition,
        autodetect=params.autodetect,
    )
    if params.schema_:
        config.schema = [bigquery.SchemaField.from_api_repr(field) for field in params.schema_]
        config.autodetect = False
    if params.format == "CSV":
        config.skip_leading_rows = 1 if params.skipLeadingRows is None else params.skipLeadingRows
        config.field_delimiter = params.fieldDelimiter
        config.allow_quoted_newlines = params.allowQuotedNewlines
        config.allow_jagged_rows = params.allowJaggedRows
    elif params.skipLeadingRows:
        config.skip_leading_rows = params.skipLeadingRows
    return config


@registry.tool("bq_load_data", "Load data from Cloud Storage into BigQuery", LoadDataParams)
async def load_data(ctx, params: LoadDataParams):
    project_id = await ctx.project_id(params.projectId)
    destination = table_path(project_id, params.datasetId, params.tableId)
    job = ctx.bigquery.load_table_from_uri(
        params.sourceUri,
        destination,
        job_config=load_job_config(params),
        project=project_id,
        location=ctx.location(params.location),
    )
    if not params.waitForCompletion:
        return text_result(
            f"Load job created for {params.datasetId}.{params.tableId}\nJob ID: {job.job_id}\nSource: {params.sourceUri}"
        )

    await wait_for_job(job)
    rows = job.output_rows if job.output_rows is not None else "unknown"
    return text_result(
        f"Data loaded successfully into {params.datasetId}.{params.tableId}\nJob ID: {job.job_id}\nRows loaded: {rows}"
    )


class ExportDataParams(LocatedParams):
    datasetId: str = Field(..., description="Source dataset ID")
    tableId: str = Field(..., description="Source table ID")
    destinationUri: str = Field(..., description="Destination URI (gs://...)")
    format: Literal["CSV", "JSON", "AVRO", "PARQUET"] = Field("CSV", description="Export format")
    compress: bool = Field(False, description="Compress output with gzip")
    fieldDelimiter: str = Field(",", description="Field delimiter (CSV)")
    printHeader: bool = Field(True, description="Include header row (CSV)")
    waitForCompletion: bool = Field(True, description="Wait for export to complete")


@registry.tool("bq_export_data", "Export BigQuery data to Cloud Storage", ExportDataParams)
async def export_data(ctx, params: ExportDataParams):
    project_id = await ctx.project_id(params.projectId)
    config = bigquery.ExtractJobConfig(destination_format=_FORMAT_ALIASES.get(params.format, params.format))
    if params.compress:
        config.compression = "GZIP"
    if params.format == "CSV":
        config.field_delimiter = params.fieldDelimiter
        config.print_header = params.printHeader

    job = ctx.bigquery.extract_table(
        table_path(project_id, params.datasetId, params.tableId),
        params.destinationUri,
        job_config=config,
        project=project_id,
        location=ctx.location(params.location),
    )
    if not params.waitForCompletion:
        return text_result(f"Export job created.\nJob ID: {job.job_id}")

    await wait_for_job(job)
    return text_result(
        f"Data exported successfully from {params.datasetId}.{params.tableId}\n"
        f"Destination: {params.destinationUri}\n"
        f"Format: {params.format}"
    )


class StreamInsertParams(ProjectParams):
    datasetId: str = Field(..., description="Dataset ID")
    tableId: str = Field(..., description="Table ID")
    rows: List[Dict[str, Any]] = Field(..., min_length=1, description="Row objects to insert")
    insertIds: Optional[List[str]] = Field(None, description="Optional insert IDs for deduplication")
    skipInvalidRows: bool = Field(False, description="Skip invalid rows")
    ignoreUnknownValues: bool = Field(False, description="Ignore unknown field values")


@registry.tool("bq_stream_insert", "Stream insert rows into a BigQuery table", StreamInsertParams)
async def stream_insert(ctx, params: StreamInsertParams):
    project_id = await ctx.project_id(params.projectId)
    if params.insertIds and len(params.insertIds) != len(params.rows):
        raise ToolValidationError("insertIds must have one entry per row")

    errors = ctx.bigquery.insert_rows_json(
        table_path(project_id, params.datasetId, params.tableId),
        params.rows,
        row_ids=params.insertIds,
        skip_invalid_rows=params.skipInvalidRows,
        ignore_unknown_values=params.ignoreUnknownValues,
    )
    if errors:
        details = "\n".join(
            f"Row {entry.get('index')}: " + ", ".join(e.get("message", "") for e in entry.get("errors", []))
            for entry in errors
        )
        raise GCPToolError(f"Stream insert failed:\n{details}")
    return text_result(f"Successfully inserted {len(params.rows)} rows into {params.datasetId}.{params.tableId}")


class CopyTableParams(LocatedParams):
    sourceDatasetId: str = Field(..., description="Source dataset ID")
    sourceTableId: str = Field(..., description="Source table ID")
    destinationDatasetId: str = Field(..., description="Destination dataset ID")
    destinationTableId: str = Field(..., description="Destination table ID")
    writeDisposition: WriteDisposition = Field("WRITE_TRUNCATE", description="How to write data")
    createDisposition: CreateDisposition = Field("CREATE_IF_NEEDED", description="Table creation behavior")
    waitForCompletion: bool = Field(True, description="Wait for copy to complete")


@registry.tool("bq_copy_table", "Copy a BigQuery table", CopyTableParams)
async def copy_table(ctx, params: CopyTableParams):
    project_id = await ctx.project_id(params.projectId)
    config = bigquery.CopyJobConfig(
        write_disposition=params.writeDisposition,
        create_disposition=params.createDisposition,
    )
    job = ctx.bigquery.copy_table(
        table_path(project_id, params.sourceDatasetId, params.sourceTableId),
        table_path(project_id, params.destinationDatasetId, params.destinationTableId),
        job_config=config,
        project=project_id,
        location=ctx.location(params.location),
    )
    if not params.waitForCompletion:
        return text_result(f"Copy job created.\nJob ID: {job.job_id}")

    await wait_for_job(job)
    return text_result(
        f"Table copied successfully from {params.sourceDatasetId}.{params.sourceTableId} "
        f"to {params.destinationDatasetId}.{params.destinationTableId}"
    )


# Metadata

class TableSchemaParams(ProjectParams):
    datasetId: str = Field(..., description="Dataset ID")
    tableId: str = Field(..., description="Table ID")


@registry.tool("bq_get_table_schema", "Get detailed schema and metadata for a table", TableSchemaParams)
async def get_table_schema(ctx, params: TableSchemaParams):
    project_id = await ctx.project_id(params.projectId)
    metadata = table_metadata(ctx.bigquery.get_table(table_path(project_id, params.datasetId, params.tableId)))
    info = {
        "fields": (metadata.get("schema") or {}).get("fields", []),
        "numRows": metadata.get("numRows"),
        "numBytes": metadata.get("numBytes"),
        "creationTime": _ms_to_iso(metadata.get("creationTime")),
        "lastModifiedTime": _ms_to_iso(metadata.get("lastModifiedTime")),
        "description": metadata.get("description"),
        "type": metadata.get("type"),
        "location": metadata.get("location"),
        "timePartitioning": metadata.get("timePartitioning"),
        "rangePartitioning": metadata.get("rangePartitioning"),
        "clustering": metadata.get("clustering"),
        "requirePartitionFilter": metadata.get("requirePartitionFilter", False),
    }
    return text_result(f"Table: {params.datasetId}.{params.tableId}\n{to_json(info)}")


class RoutineParams(ProjectParams):
    datasetId: str = Field(..., description="Dataset ID")
    routineId: str = Field(..., description="Routine (procedure/function) ID")


@registry.tool("bq_get_routine_definition", "Get stored procedure or function definition", RoutineParams)
async def get_routine_definition(ctx, params: RoutineParams):
    project_id = await ctx.project_id(params.projectId)
    metadata = ctx.bigquery.get_routine(table_path(project_id, params.datasetId, params.routineId)).to_api_repr()
    info = {
        "routineType": metadata.get("routineType"),
        "language": metadata.get("language"),
        "arguments": metadata.get("arguments", []),
        "returnType": metadata.get("returnType"),
        "body": metadata.get("definitionBody"),
        "description": metadata.get("description"),
        "creationTime": _ms_to_iso(metadata.get("creationTime")),
        "lastModifiedTime": _ms_to_iso(metadata.get("lastModifiedTime")),
    }
    return text_result(f"Routine: {params.datasetId}.{params.routineId}\n{to_json(info)}")


# Legacy tools

@registry.tool("bq_list_datasets", "List all BigQuery datasets in a project", ProjectParams)
async def list_datasets(ctx, params: ProjectParams):
    project_id = await ctx.project_id(params.projectId)
    datasets = [ctx.bigquery.get_dataset(item.reference) for item in ctx.bigquery.list_datasets(project=project_id)]
    if not datasets:
        return text_result(f"No datasets found in project {project_id}")

    lines = [f"- {ds.dataset_id} ({ds.location}, created: {iso_or_none(ds.created)})" for ds in datasets]
    return text_result(f"Found {len(datasets)} datasets in project {project_id}:\n" + "\n".join(lines))


class QueryParams(ProjectParams):
    query: str = Field(..., description="SQL query to execute")
    useLegacySql: bool = Field(False, description="Use legacy SQL syntax")


@registry.tool(
    "bq_query",
    "Execute a BigQuery SQL query (legacy - use bq_create_query_job for advanced features)",
    QueryParams,
)
async def query(ctx, params: QueryParams):
    project_id = await ctx.project_id(params.projectId)
    job = ctx.bigquery.query(
        params.query,
        job_config=bigquery.QueryJobConfig(use_legacy_sql=params.useLegacySql),
        project=project_id,
        location=ctx.location(),
    )
    rows = rows_to_dicts(job.result())
    return text_result(format_rows(rows, "json", 100))


class CreateDatasetParams(ProjectParams):
    datasetId: str = Field(..., description="Dataset ID to create")
    location: str = Field("US", description="Dataset location (e.g. US, EU)")


@registry.tool("bq_create_dataset", "Create a new BigQuery dataset", CreateDatasetParams)
async def create_dataset(ctx, params: CreateDatasetParams):
    project_id = await ctx.project_id(params.projectId)
    dataset = bigquery.Dataset(f"{project_id}.{params.datasetId}")
    dataset.location = params.location
    created = ctx.bigquery.create_dataset(dataset)
    return text_result(
        f"Successfully created dataset {created.dataset_id} in {params.location} for project {project_id}"
    )


class ListTablesParams(ProjectParams):
    datasetId: str = Field(..., description="Dataset ID")


@registry.tool("bq_list_tables", "List tables in a BigQuery dataset", ListTablesParams)
async def list_tables(ctx, params: ListTablesParams):
    project_id = await ctx.project_id(params.projectId)
    items = list(ctx.bigquery.list_tables(f"{project_id}.{params.datasetId}"))
    if not items:
        return text_result(f"No tables found in dataset {params.datasetId}")

    lines = []
    for item in items:
        table = ctx.bigquery.get_table(item.reference)
        size_mb = (table.num_bytes or 0) / 1024 / 1024
        lines.append(f"- {table.table_id} ({table.table_type}, {table.num_rows or 0} rows, {size_mb:.2f}MB)")
    return text_result(f"Found {len(items)} tables in dataset {params.datasetId}:\n" + "\n".join(lines))
