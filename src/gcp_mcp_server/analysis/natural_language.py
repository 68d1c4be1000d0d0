"""Keyword-driven SQL drafting from plain-English requests.

``schema_context`` maps dataset ids to the tables that were inspected::

    {"datasets": {"sales": {"tables": {"orders": {"fields": [...], ...}}}},
     "relationships": [...]}
"""

import re
from typing import Any, Dict, List, Optional, Sequence

from ..sql.builders import quote_string

NUMERIC_TYPES = {'INT64', 'INTEGER', 'FLOAT64', 'FLOAT', 'NUMERIC', 'BIGNUMERIC'}
TEMPORAL_TYPES = {'DATE', 'DATETIME', 'TIMESTAMP'}

AGGREGATE_INTENT = re.compile(r'\b(sum|count|average|avg|total|group by)\b')
JOIN_INTENT = re.compile(r'\b(join|combine|merge)\b')
TIMESERIES_INTENT = re.compile(r'\btrends?\b|\bover time\b|\btimeline\b')

AGGREGATION_WORDS = (
    ('sum', 'SUM'),
    ('total', 'SUM'),
    ('count', 'COUNT'),
    ('average', 'AVG'),
    ('avg', 'AVG'),
    ('maximum', 'MAX'),
    ('max', 'MAX'),
    ('minimum', 'MIN'),
    ('min', 'MIN'),
)

CONDITION_PATTERNS = (
    (re.compile(r'where\s+(\w+)\s*=\s*[\'"]?([^\'"]+?)[\'"]?\s*$', re.IGNORECASE), 'equals'),
    (re.compile(r'(\w+)\s+greater\s+than\s+(\d+(?:\.\d+)?)', re.IGNORECASE), 'greater_than'),
    (re.compile(r'(\w+)\s+less\s+than\s+(\d+(?:\.\d+)?)', re.IGNORECASE), 'less_than'),
    (re.compile(r'between\s+[\'"]?([^\'"\s]+)[\'"]?\s+and\s+[\'"]?([^\'"\s]+)[\'"]?', re.IGNORECASE), 'between'),
    (re.compile(r'last\s+(\d+)\s+(days?|weeks?|months?|years?)', re.IGNORECASE), 'time_range'),
)

UNRESOLVED_TABLE = '-- Unable to identify tables from query'
NO_TABLE = '-- Please specify table name in your query'


def detect_intent(text: str) -> str:
    lowered = text.lower()
    if AGGREGATE_INTENT.search(lowered):
        return 'aggregate'
    if JOIN_INTENT.search(lowered):
        return 'join'
    if TIMESERIES_INTENT.search(lowered):
        return 'timeseries'
    return 'select'


def extract_entities(text: str, schema_context: Dict[str, Any]) -> List[Dict[str, str]]:
    lowered = text.lower()
    entities = []
    for dataset_id, dataset in (schema_context.get('datasets') or {}).items():
        for table_id in dataset.get('tables') or {}:
            if re.search(rf'\b{re.escape(table_id.lower())}\b', lowered):
                entities.append({'type': 'table', 'dataset': dataset_id, 'name': table_id})
    return entities


def extract_conditions(text: str) -> List[Dict[str, Any]]:
    conditions = []
    for pattern, kind in CONDITION_PATTERNS:
        match = pattern.search(text)
        if match:
            conditions.append({'type': kind, 'matches': list(match.groups())})
    return conditions


def extract_aggregations(text: str) -> List[str]:
    lowered = text.lower()
    found: List[str] = []
    for word, function in AGGREGATION_WORDS:
        if re.search(rf'\b{word}\b', lowered) and function not in found:
            found.append(function)
    return found


def _table_info(entity: Dict[str, str], schema_context: Dict[str, Any]) -> Dict[str, Any]:
    return schema_context['datasets'][entity['dataset']]['tables'][entity['name']]


def _table_ref(entity: Dict[str, str]) -> str:
    return f"`{entity['dataset']}.{entity['name']}`"


def temporal_field(fields: Sequence[Dict[str, Any]]) -> Optional[str]:
    return next((f['name'] for f in fields if f.get('type') in TEMPORAL_TYPES), None)


def build_where_clause(conditions: Sequence[Dict[str, Any]], time_field: Optional[str] = None) -> str:
    column = time_field or 'date_column'
    clauses = []
    for condition in conditions:
        matches = condition['matches']
        kind = condition['type']
        if kind == 'equals':
            clauses.append(f'{matches[0]} = {quote_string(matches[1].strip())}')
        elif kind == 'greater_than':
            clauses.append(f'{matches[0]} > {matches[1]}')
        elif kind == 'less_than':
            clauses.append(f'{matches[0]} < {matches[1]}')
        elif kind == 'between':
            clauses.append(f'DATE({column}) BETWEEN {quote_string(matches[0])} AND {quote_string(matches[1])}')
        elif kind == 'time_range':
            unit = matches[1].upper().rstrip('S')
            clauses.append(f'DATE({column}) >= DATE_SUB(CURRENT_DATE(), INTERVAL {matches[0]} {unit})')
    return ' AND '.join(clauses)


def _fields(entity: Dict[str, str], schema_context: Dict[str, Any]) -> List[Dict[str, Any]]:
    return _table_info(entity, schema_context).get('fields') or []


def build_select(entities, conditions, aggregations, schema_context) -> str:
    if not entities:
        return UNRESOLVED_TABLE
    entity = entities[0]
    fields = _fields(entity, schema_context)
    metrics = [f['name'] for f in fields if f.get('type') in NUMERIC_TYPES]
    if aggregations and metrics:
        projection = ', '.join(f'{agg}({metrics[0]}) AS {agg.lower()}_{metrics[0]}' for agg in aggregations)
    elif aggregations:
        projection = 'COUNT(*) AS record_count'
    else:
        projection = '*'
    query = f'SELECT {projection}\nFROM {_table_ref(entity)}'
    if conditions:
        query += '\nWHERE ' + build_where_clause(conditions, temporal_field(fields))
    return query


def build_aggregate(entities, conditions, aggregations, schema_context) -> str:
    if not entities:
        return UNRESOLVED_TABLE
    entity = entities[0]
    fields = _fields(entity, schema_context)
    dimensions = [f['name'] for f in fields if f.get('type') not in NUMERIC_TYPES and f.get('mode') != 'REPEATED'][:2]
    metrics = [f['name'] for f in fields if f.get('type') in NUMERIC_TYPES]

    columns = list(dimensions)
    if aggregations and metrics:
        for agg in aggregations:
            if agg == 'COUNT':
                columns.append('COUNT(*) AS record_count')
            else:
                columns.append(f'{agg}({metrics[0]}) AS {agg.lower()}_{metrics[0]}')
    else:
        columns.append('COUNT(*) AS record_count')

    query = 'SELECT ' + ',\n  '.join(columns) + f'\nFROM {_table_ref(entity)}'
    if conditions:
        query += '\nWHERE ' + build_where_clause(conditions, temporal_field(fields))
    if dimensions:
        query += '\nGROUP BY ' + ', '.join(dimensions)
    return query


def build_join(entities, conditions, schema_context) -> str:
    if len(entities) < 2:
        return build_select(entities, conditions, [], schema_context)
    left, right = entities[0], entities[1]
    query = f'SELECT t1.*, t2.*\nFROM {_table_ref(left)} t1\nINNER JOIN {_table_ref(right)} t2\n'

    relationship = next(
        (r for r in schema_context.get('relationships') or ()
         if r['from'].startswith(f"{left['dataset']}.{left['name']}.")
         and r['to'].startswith(f"{right['dataset']}.{right['name']}.")),
        None,
    )
    if relationship:
        query += f"  ON t1.{relationship['from'].split('.')[-1]} = t2.{relationship['to'].split('.')[-1]}"
    else:
        query += '  ON t1.id = t2.id -- Update join condition'

    if conditions:
        query += '\nWHERE ' + build_where_clause(conditions)
    return query


def build_timeseries(entities, conditions, schema_context) -> str:
    if not entities:
        return UNRESOLVED_TABLE
    entity = entities[0]
    fields = _fields(entity, schema_context)
    column = temporal_field(fields) or 'date_column'
    query = (
        f'SELECT\n  DATE_TRUNC(DATE({column}), DAY) AS period,\n  COUNT(*) AS record_count\n'
        f'FROM {_table_ref(entity)}'
    )
    if conditions:
        query += '\nWHERE ' + build_where_clause(conditions, column)
    return query + '\nGROUP BY period\nORDER BY period'


def build_default(entities) -> str:
    if not entities:
        return NO_TABLE
    return f'SELECT *\nFROM {_table_ref(entities[0])}\nLIMIT 100'


def query_alternatives(query: str, intent: str) -> List[Dict[str, str]]:
    alternatives = []
    if query.startswith('--'):
        return alternatives
    if not re.search(r'\bLIMIT\b', query):
        alternatives.append({'query': query + '\nLIMIT 1000', 'description': 'Added LIMIT clause for safety'})
    if intent == 'aggregate' and not re.search(r'\bORDER BY\b', query):
        alternatives.append({'query': query + '\nORDER BY 2 DESC', 'description': 'Added ORDER BY to sort results'})
    return alternatives


def sql_breakdown(query: str) -> Dict[str, str]:
    def clause(pattern: str) -> str:
        match = re.search(pattern, query, re.IGNORECASE)
        return match.group(0).strip() if match else ''

    return {
        'selectClause': clause(r'SELECT[\s\S]*?FROM'),
        'fromClause': clause(r'FROM[\s\S]*?(?=WHERE|GROUP BY|ORDER BY|LIMIT|$)'),
        'whereClause': clause(r'WHERE[\s\S]*?(?=GROUP BY|ORDER BY|LIMIT|$)'),
        'groupByClause': clause(r'GROUP BY[\s\S]*?(?=ORDER BY|LIMIT|$)'),
        'orderByClause': clause(r'ORDER BY[\s\S]*?(?=LIMIT|$)'),
        'limitClause': clause(r'LIMIT\s+\d+'),
    }


def generate_sql(text: str, schema_context: Dict[str, Any], output_format: str = 'standard') -> Dict[str, Any]:
    """Draft SQL for ``text``; the confidence reflects how much was understood."""
    intent = detect_intent(text)
    entities = extract_entities(text, schema_context)
    conditions = extract_conditions(text)
    aggregations = extract_aggregations(text)

    if intent == 'aggregate':
        query = build_aggregate(entities, conditions, aggregations, schema_context)
        confidence, explanation = 0.75, 'Generated aggregate query with GROUP BY clause'
    elif intent == 'join':
        query = build_join(entities, conditions, schema_context)
        confidence, explanation = 0.7, 'Generated JOIN query based on detected relationships'
    elif intent == 'timeseries':
        query = build_timeseries(entities, conditions, schema_context)
        confidence, explanation = 0.65, 'Generated time series query bucketed by day'
    elif entities:
        query = build_select(entities, conditions, aggregations, schema_context)
        confidence, explanation = 0.8, 'Generated SELECT query based on identified entities and conditions'
    else:
        query = build_default(entities)
        confidence, explanation = 0.5, 'Generated basic query - intent unclear'

    if query.startswith('--'):
        confidence = 0.1

    result: Dict[str, Any] = {
        'query': query,
        'confidence': confidence,
        'explanation': explanation,
        'alternatives': [],
    }
    if output_format != 'standard':
        result['alternatives'] = query_alternatives(query, intent)
    if output_format == 'explained':
        result['breakdown'] = {
            'intent': intent,
            'entities': entities,
            'conditions': conditions,
            'aggregations': aggregations,
            'sqlComponents': sql_breakdown(query),
        }
    return result


def optimize_generated(query: str) -> Dict[str, Any]:
    optimizations = []
    optimized = query
    if re.search(r'SELECT\s+\*', query):
        optimized = re.sub(r'SELECT\s+\*', 'SELECT /* specify needed columns */', optimized, count=1)
        optimizations.append('Replaced SELECT * with column specification placeholder')
    if '_PARTITIONTIME' not in query and '_PARTITIONDATE' not in query:
        optimizations.append('Consider adding partition filter for better performance')
    return {'query': optimized, 'appliedOptimizations': optimizations}
