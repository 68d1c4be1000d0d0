"""String builders for SELECT, JOIN, CALL and partitioning DDL statements."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ToolValidationError

logger = logging.getLogger(__name__)

QUOTED_LITERAL_TYPES = {
    'DATE': 'DATE',
    'TIMESTAMP': 'TIMESTAMP',
    'DATETIME': 'DATETIME',
    'TIME': 'TIME',
}
RAW_LITERAL_TYPES = {'INT64', 'FLOAT64', 'NUMERIC', 'BIGNUMERIC', 'BOOL'}


def quote_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def sql_literal(value: Any) -> str:
    """Render a Python value as a GoogleSQL literal, inferring the type."""
    if value is None:
        return 'NULL'
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return '[' + ', '.join(sql_literal(v) for v in value) + ']'
    if isinstance(value, dict):
        return 'STRUCT(' + ', '.join(f'{sql_literal(v)} AS {k}' for k, v in value.items()) + ')'
    return quote_string(str(value))


def format_parameter(value: Any, param_type: Optional[str] = None, element_type: Optional[str] = None) -> str:
    """Render a typed procedure argument as a literal."""
    kind = (param_type or '').upper()
    if kind in QUOTED_LITERAL_TYPES:
        return f"{QUOTED_LITERAL_TYPES[kind]} '{value}'"
    if kind == 'STRING':
        return quote_string(str(value))
    if kind in RAW_LITERAL_TYPES:
        if isinstance(value, bool):
            return 'TRUE' if value else 'FALSE'
        return str(value)
    if kind == 'BYTES':
        return f"B'{value}'"
    if kind == 'ARRAY':
        if not isinstance(value, (list, tuple)):
            raise ToolValidationError('ARRAY parameters require a list value')
        return '[' + ', '.join(format_parameter(v, element_type) for v in value) + ']'
    if kind == 'STRUCT':
        if not isinstance(value, dict):
            raise ToolValidationError('STRUCT parameters require an object value')
        return 'STRUCT(' + ', '.join(f'{sql_literal(v)} AS {k}' for k, v in value.items()) + ')'
    return sql_literal(value)


def build_procedure_call(project_id: str, dataset_id: str, procedure_name: str, parameters: Sequence[Dict[str, Any]] = ()) -> str:
    args = ', '.join(
        format_parameter(p.get('value'), p.get('type'), p.get('elementType'))
        for p in parameters
    )
    return f'CALL `{project_id}.{dataset_id}.{procedure_name}`({args})'


def build_script(statements: Sequence[str]) -> str:
    """Join statements into a multi-statement script ending with a semicolon."""
    cleaned = [s.strip().rstrip(';').strip() for s in statements if s and s.strip()]
    if not cleaned:
        raise ToolValidationError('A script needs at least one statement')
    return ';\n'.join(cleaned) + ';'


def build_condition(field: str, operator: str, value: Any = None) -> str:
    op = operator.upper()
    if op in ('IS NULL', 'IS NOT NULL'):
        return f'{field} {op}'
    if op in ('IN', 'NOT IN'):
        if not isinstance(value, (list, tuple)):
            raise ToolValidationError(f'{op} requires an array of values')
        return f'{field} {op} (' + ', '.join(sql_literal(v) for v in value) + ')'
    if op == 'LIKE':
        return f'{field} LIKE {quote_string(str(value))}'
    return f'{field} {operator} {sql_literal(value)}'


def build_select_query(
    tables: Sequence[str],
    fields: Optional[Sequence[str]] = None,
    conditions: Optional[Sequence[Dict[str, Any]]] = None,
    joins: Optional[Sequence[Dict[str, Any]]] = None,
    group_by: Optional[Sequence[str]] = None,
    order_by: Optional[Sequence[Dict[str, Any]]] = None,
    limit: Optional[int] = None,
) -> str:
    """Assemble a SELECT over ``tables[0]`` with optional joins and clauses."""
    if not tables:
        raise ToolValidationError('At least one table is required')

    query = 'SELECT ' + (', '.join(fields) if fields else '*')
    query += f'\nFROM `{tables[0]}`'
    for join in joins or ():
        query += f"\n{join['type']} JOIN `{join['table']}` ON {join['on']}"
    if conditions:
        where = [build_condition(c['field'], c['operator'], c.get('value')) for c in conditions]
        query += '\nWHERE ' + ' AND '.join(where)
    if group_by:
        query += '\nGROUP BY ' + ', '.join(group_by)
    if order_by:
        query += '\nORDER BY ' + ', '.join(f"{o['field']} {o.get('direction', 'ASC')}" for o in order_by)
    if limit:
        query += f'\nLIMIT {limit}'
    return query


def build_table_references(datasets: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    references = []
    for index, ds in enumerate(datasets):
        prefix = f"{ds['projectId']}." if ds.get('projectId') else ''
        references.append({
            'fullReference': f"{prefix}{ds['datasetId']}.{ds['tableId']}",
            'alias': ds.get('alias') or f't{index + 1}',
            'dataset': ds,
        })
    return references


def analyze_join_complexity(datasets: Sequence[Dict[str, Any]], joins: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    score = 0
    factors: List[str] = []
    optimizations: List[str] = []

    if len(datasets) > 5:
        score += 3
        factors.append('High number of tables')
        optimizations.append('Consider breaking into smaller joins')

    outer_joins = sum(1 for j in joins if 'OUTER' in j['joinType'])
    if outer_joins:
        score += outer_joins * 2
        factors.append(f'{outer_joins} outer joins detected')
        optimizations.append('Consider if INNER joins are sufficient')

    projects = {d.get('projectId') for d in datasets if d.get('projectId')}
    if len(projects) > 1:
        score += 2
        factors.append('Cross-project joins detected')
        optimizations.append('Consider replicating data to single project')

    if score < 3:
        level = 'low'
    elif score < 7:
        level = 'medium'
    else:
        level = 'high'
    return {
        'score': score,
        'factors': factors,
        'optimizations': optimizations,
        'complexity': level,
        'estimatedCost': score * 0.5,
    }


def _find_reference(references: Sequence[Dict[str, Any]], name: str) -> Dict[str, Any]:
    for ref in references:
        if name in (ref['alias'], ref['fullReference']):
            return ref
    raise ToolValidationError(f'Join references unknown table: {name}')


def build_cross_dataset_query(references: Sequence[Dict[str, Any]], join_config: Dict[str, Any]) -> str:
    select_fields = join_config.get('selectFields')
    if select_fields:
        query = 'SELECT ' + ', '.join(select_fields)
    else:
        query = 'SELECT ' + ', '.join(f"{ref['alias']}.*" for ref in references)

    first = references[0]
    query += f"\nFROM `{first['fullReference']}` AS {first['alias']}"

    for join in join_config.get('joins', []):
        left = _find_reference(references, join['leftTable'])
        right = _find_reference(references, join['rightTable'])
        query += f"\n{join['joinType']} JOIN `{right['fullReference']}` AS {right['alias']}"
        if join['joinType'] == 'CROSS':
            continue
        conditions = [
            f"{left['alias']}.{c['leftField']} {c.get('operator', '=')} {right['alias']}.{c['rightField']}"
            for c in join.get('conditions', [])
        ]
        if not conditions:
            raise ToolValidationError(f"{join['joinType']} JOIN with {join['rightTable']} needs at least one condition")
        query += ' ON ' + ' AND '.join(conditions)

    where = join_config.get('whereConditions')
    if where:
        query += '\nWHERE ' + ' AND '.join(build_condition(c['field'], c['operator'], c.get('value')) for c in where)
    if join_config.get('groupBy'):
        query += '\nGROUP BY ' + ', '.join(join_config['groupBy'])
    if join_config.get('orderBy'):
        query += '\nORDER BY ' + ', '.join(f"{o['field']} {o.get('direction', 'ASC')}" for o in join_config['orderBy'])
    if join_config.get('limit'):
        query += f"\nLIMIT {join_config['limit']}"
    return query


def apply_join_optimizations(query: str, complexity: str, level: str) -> str:
    """Prefix optimisation notes as SQL comments."""
    if level == 'basic':
        optimized = f'-- Query optimization level: {level}\n' + query
        upper = query.upper()
        if 'WHERE' in upper and ('DATE' in upper or 'TIMESTAMP' in upper):
            optimized = optimized.replace('\nWHERE ', '\n-- Consider partition pruning on date/timestamp filters\nWHERE ', 1)
        return optimized
    if level == 'advanced':
        optimized = '-- Advanced optimizations applied\n' + query
        if complexity == 'high':
            optimized = '-- Consider creating materialized view for this join pattern\n' + optimized
        optimized = optimized.replace('\nORDER BY ', '\n-- Leverage clustering if available\nORDER BY ', 1)
        return optimized
    return query


def time_partitioning_ddl(table_name: str, field: Optional[str]) -> str:
    column = field or 'timestamp_field'
    return (
        f'-- Create new partitioned table\n'
        f'CREATE TABLE `{table_name}_partitioned`\n'
        f'PARTITION BY DATE({column})\n'
        f'AS SELECT * FROM `{table_name}`;\n'
        f'\n'
        f'-- Swap tables\n'
        f'ALTER TABLE `{table_name}` RENAME TO `{table_name.split(".")[-1]}_backup`;\n'
        f'ALTER TABLE `{table_name}_partitioned` RENAME TO `{table_name.split(".")[-1]}`;'
    )


def range_partitioning_ddl(table_name: str, field: str, start: int = 0, end: int = 1000000, interval: int = 10000) -> str:
    return (
        f'-- Create range partitioned table\n'
        f'CREATE TABLE `{table_name}_partitioned`\n'
        f'PARTITION BY RANGE_BUCKET({field}, GENERATE_ARRAY({start}, {end}, {interval}))\n'
        f'AS SELECT * FROM `{table_name}`;'
    )


def clustering_ddl(table_name: str, fields: Sequence[str], partition_clause: Optional[str] = None) -> str:
    if not fields:
        raise ToolValidationError('Clustering needs at least one column')
    partition = f'\nPARTITION BY {partition_clause}' if partition_clause else ''
    return (
        f'-- Add clustering to existing table\n'
        f'CREATE OR REPLACE TABLE `{table_name}`{partition}\n'
        f'CLUSTER BY {", ".join(fields[:4])}\n'
        f'AS SELECT * FROM `{table_name}`;'
    )
