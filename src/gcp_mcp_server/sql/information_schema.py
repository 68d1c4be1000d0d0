"""INFORMATION_SCHEMA query templates behind the ``gcp-sql`` operations."""

import re
from typing import Any, Dict

from ..errors import ToolValidationError

IDENTIFIER = re.compile(r'^[A-Za-z0-9_.\-]+$')

OPERATION_TEMPLATES = {
    'list-datasets': """
SELECT
  schema_name AS dataset_id,
  location,
  creation_time,
  last_modified_time
FROM `{project}.{region}.INFORMATION_SCHEMA.SCHEMATA`
WHERE schema_name != 'INFORMATION_SCHEMA'
ORDER BY schema_name""",
    'list-tables': """
SELECT
  table_name,
  table_type,
  creation_time
FROM `{project}.{dataset}.INFORMATION_SCHEMA.TABLES`
ORDER BY table_name""",
    'describe-table': """
SELECT
  column_name,
  data_type,
  is_nullable,
  column_default
FROM `{project}.{dataset}.INFORMATION_SCHEMA.COLUMNS`
WHERE table_name = '{table}'
ORDER BY ordinal_position""",
    'table-schema': """
SELECT
  table_name,
  table_type,
  creation_time,
  ddl
FROM `{project}.{dataset}.INFORMATION_SCHEMA.TABLES`
WHERE table_name = '{table}'""",
    'dataset-info': """
SELECT
  schema_name AS dataset_id,
  option_name,
  option_value
FROM `{project}.{region}.INFORMATION_SCHEMA.SCHEMATA_OPTIONS`
WHERE schema_name = '{dataset}'""",
    'list-views': """
SELECT
  table_name AS view_name,
  view_definition
FROM `{project}.{dataset}.INFORMATION_SCHEMA.VIEWS`
ORDER BY table_name""",
    'list-routines': """
SELECT
  routine_name,
  routine_type,
  routine_body AS language,
  creation_time,
  routine_definition
FROM `{project}.{dataset}.INFORMATION_SCHEMA.ROUTINES`
ORDER BY routine_name""",
    'job-history': """
SELECT
  job_id,
  creation_time,
  start_time,
  end_time,
  state,
  job_type,
  statement_type,
  query,
  total_bytes_processed,
  total_slot_ms,
  ROUND(total_bytes_processed / 1024 / 1024 / 1024, 2) AS gb_processed
FROM `{project}.{region}.INFORMATION_SCHEMA.JOBS_BY_PROJECT`
WHERE creation_time >= TIMESTAMP_SUB(CURRENT_TIMESTAMP(), INTERVAL {hours} HOUR)
ORDER BY creation_time DESC
LIMIT {limit}""",
    'current-project': """
SELECT @@project_id AS project_id, SESSION_USER() AS current_user""",
}

DATASET_OPERATIONS = {'list-tables', 'describe-table', 'table-schema', 'dataset-info', 'list-views', 'list-routines'}
TABLE_OPERATIONS = {'describe-table', 'table-schema'}

PLACEHOLDER = re.compile(r'\{(\w+)\}')


def region_qualifier(location: str) -> str:
    """``US`` -> ``region-us``; ``europe-west2`` -> ``region-europe-west2``."""
    return f'region-{(location or "US").lower()}'


def _check_identifier(name: str, value: str) -> str:
    if not IDENTIFIER.match(value):
        raise ToolValidationError(f"Invalid {name} identifier: '{value}'")
    return value


def render_operation(
    operation: str,
    project: str,
    dataset: str = None,
    table: str = None,
    location: str = 'US',
    hours: int = 24,
    limit: int = 100,
) -> str:
    if operation not in OPERATION_TEMPLATES:
        raise ToolValidationError(
            f"Unknown operation: {operation}. Available operations: {', '.join(OPERATION_TEMPLATES)}"
        )
    if operation in DATASET_OPERATIONS and not dataset:
        raise ToolValidationError(f"Operation '{operation}' requires a 'dataset' parameter")
    if operation in TABLE_OPERATIONS and not table:
        raise ToolValidationError(f"Operation '{operation}' requires a 'table' parameter")

    values: Dict[str, Any] = {
        'project': _check_identifier('project', project),
        'region': region_qualifier(location),
        'hours': int(hours),
        'limit': int(limit),
    }
    if dataset:
        values['dataset'] = _check_identifier('dataset', dataset)
    if table:
        values['table'] = _check_identifier('table', table)

    return PLACEHOLDER.sub(lambda m: str(values[m.group(1)]), OPERATION_TEMPLATES[operation]).strip()
