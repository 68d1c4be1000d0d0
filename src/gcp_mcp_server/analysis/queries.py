"""Regex heuristics over SQL text: structure checks, bottlenecks and column usage."""

import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

SELECT_STAR = re.compile(r'\bSELECT\s+(?:DISTINCT\s+)?\*', re.IGNORECASE)
SELECT_KEYWORD = re.compile(r'\bSELECT\b', re.IGNORECASE)
JOIN = re.compile(r'\bJOIN\b', re.IGNORECASE)
GROUP_BY = re.compile(r'\bGROUP\s+BY\b', re.IGNORECASE)
WINDOW = re.compile(r'\bOVER\s*\(|\bWINDOW\b', re.IGNORECASE)
WITH = re.compile(r'\bWITH\b', re.IGNORECASE)
WHERE = re.compile(r'\bWHERE\b', re.IGNORECASE)
LIMIT = re.compile(r'\bLIMIT\b', re.IGNORECASE)
ORDER_BY = re.compile(r'\bORDER\s+BY\b', re.IGNORECASE)
AGGREGATE_FUNCTIONS = ('COUNT', 'SUM', 'AVG', 'MIN', 'MAX', 'ARRAY_AGG', 'STRING_AGG')
TABLE_REFERENCE = re.compile(r'\b(?:FROM|JOIN)\s+`?([A-Za-z0-9_\-.]+)`?', re.IGNORECASE)

WHERE_CLAUSE = re.compile(r'\bWHERE\s+(.+?)(?=\bGROUP\s+BY\b|\bORDER\s+BY\b|\bHAVING\b|\bLIMIT\b|\bQUALIFY\b|\)|$)', re.IGNORECASE | re.DOTALL)
GROUP_CLAUSE = re.compile(r'\bGROUP\s+BY\s+(.+?)(?=\bHAVING\b|\bORDER\s+BY\b|\bLIMIT\b|\)|$)', re.IGNORECASE | re.DOTALL)
ORDER_CLAUSE = re.compile(r'\bORDER\s+BY\s+(.+?)(?=\bLIMIT\b|\)|$)', re.IGNORECASE | re.DOTALL)
JOIN_ON_CLAUSE = re.compile(r'\bJOIN\s+\S+(?:\s+(?:AS\s+)?\w+)?\s+ON\s+(.+?)(?=\bWHERE\b|\bGROUP\s+BY\b|\bORDER\s+BY\b|\b(?:INNER|LEFT|RIGHT|FULL|CROSS)?\s*JOIN\b|\bLIMIT\b|$)', re.IGNORECASE | re.DOTALL)
FIELD_COMPARISON = re.compile(r'([A-Za-z_][A-Za-z0-9_]*)\s*(?:[<>=!]|\bIN\b|\bLIKE\b|\bBETWEEN\b|\bIS\b)', re.IGNORECASE)
TIME_RANGE = re.compile(r'[A-Za-z_]+\s*[<>=]+\s*(?:CURRENT_DATE|CURRENT_TIMESTAMP|DATE|TIMESTAMP|DATETIME)\b', re.IGNORECASE)
FUNCTION_CALL = re.compile(r'\b([A-Za-z_]+)\s*\(')
SQL_WORDS = {'IN', 'AND', 'OR', 'NOT', 'EXISTS', 'ANY', 'ALL', 'SELECT', 'BETWEEN', 'LIKE', 'IS'}

ONE_GIB = 1024 ** 3


def count_subqueries(query: str) -> int:
    return max(len(SELECT_KEYWORD.findall(query)) - 1, 0)


def count_joins(query: str) -> int:
    return len(JOIN.findall(query))


def count_aggregations(query: str) -> int:
    return sum(len(re.findall(rf'\b{name}\s*\(', query, re.IGNORECASE)) for name in AGGREGATE_FUNCTIONS)


def query_complexity(query: str) -> float:
    """Score in [0, 10] from length and structural keyword counts."""
    score = len(query) / 1000
    score += count_joins(query) * 2
    score += count_subqueries(query)
    score += len(GROUP_BY.findall(query))
    score += len(WINDOW.findall(query)) * 3
    score += len(WITH.findall(query)) * 2
    return round(min(score, 10.0), 2)


def estimate_memory_mb(query: str, bytes_processed: Optional[int] = None) -> int:
    memory = 100.0
    memory += count_joins(query) * 500
    memory += count_aggregations(query) * 200
    memory += (int(bytes_processed or 0) / (1024 * 1024)) * 0.1
    return round(memory)


def estimate_parallelization(query_plan: Optional[Sequence[Dict[str, Any]]]) -> int:
    if not query_plan:
        return 1
    return max(int(stage.get('parallelInputs') or 1) for stage in query_plan)


def identify_bottlenecks(query: str, query_plan: Optional[Sequence[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    bottlenecks = []
    if SELECT_STAR.search(query):
        bottlenecks.append({
            'type': 'wide_select',
            'severity': 'medium',
            'location': 'SELECT clause',
            'description': 'Selecting all columns increases data processing',
            'impact': 'Higher bytes processed and slower query',
        })
    if not WHERE.search(query):
        bottlenecks.append({
            'type': 'full_table_scan',
            'severity': 'high',
            'location': 'Query structure',
            'description': 'No WHERE clause may result in full table scan',
            'impact': 'Processes entire table, high cost',
        })
    joins = count_joins(query)
    if joins > 3:
        bottlenecks.append({
            'type': 'complex_joins',
            'severity': 'high',
            'location': 'JOIN operations',
            'description': f'Query contains {joins} joins',
            'impact': 'Increased complexity and processing time',
        })
    subqueries = count_subqueries(query)
    if subqueries > 2:
        bottlenecks.append({
            'type': 'nested_subqueries',
            'severity': 'medium',
            'location': 'Subqueries',
            'description': f'Query contains {subqueries} nested subqueries',
            'impact': 'May prevent query optimization',
        })
    for stage in query_plan or ():
        compute_ms = float(stage.get('computeMsAvg') or 0)
        shuffle_bytes = int(stage.get('shuffleOutputBytes') or 0)
        if compute_ms > 1000 or shuffle_bytes > ONE_GIB:
            bottlenecks.append({
                'type': 'expensive_stage',
                'severity': 'high',
                'location': f"Stage {stage.get('id')}: {stage.get('name')}",
                'description': f'High compute time ({compute_ms}ms) or shuffle ({shuffle_bytes} bytes)',
                'impact': 'Performance bottleneck in execution',
            })
    return bottlenecks


_BOTTLENECK_FIXES = {
    'wide_select': {
        'category': 'column_selection',
        'priority': 'medium',
        'recommendation': 'Select only required columns instead of SELECT *',
        'estimatedImprovement': '20-50% reduction in bytes processed',
        'implementation': 'Replace SELECT * with specific column names',
    },
    'full_table_scan': {
        'category': 'filtering',
        'priority': 'high',
        'recommendation': 'Add WHERE clause to filter data',
        'estimatedImprovement': 'Up to 90% cost reduction',
        'implementation': 'Add appropriate WHERE conditions based on your use case',
    },
    'complex_joins': {
        'category': 'join_optimization',
        'priority': 'high',
        'recommendation': 'Consider breaking into smaller queries or using materialized views',
        'estimatedImprovement': '30-60% performance improvement',
        'implementation': 'Create intermediate tables or views for complex join patterns',
    },
    'nested_subqueries': {
        'category': 'query_structure',
        'priority': 'medium',
        'recommendation': 'Flatten nested subqueries into CTEs or joins',
        'estimatedImprovement': '10-30% performance improvement',
        'implementation': 'Rewrite subqueries as WITH clauses',
    },
    'expensive_stage': {
        'category': 'execution_stage',
        'priority': 'high',
        'recommendation': 'Reduce data entering the expensive stage',
        'estimatedImprovement': 'Varies with stage input size',
        'implementation': 'Filter earlier, pre-aggregate before joins, or cluster on join keys',
    },
}


def performance_optimizations(bottlenecks: Iterable[Dict[str, Any]], bytes_processed: Optional[int] = None) -> List[Dict[str, Any]]:
    optimizations = []
    seen = set()
    for bottleneck in bottlenecks:
        kind = bottleneck['type']
        if kind in _BOTTLENECK_FIXES and kind not in seen:
            seen.add(kind)
            optimizations.append(dict(_BOTTLENECK_FIXES[kind]))
    if int(bytes_processed or 0) > 100 * ONE_GIB:
        optimizations.append({
            'category': 'partitioning',
            'priority': 'high',
            'recommendation': 'Consider partitioning tables to reduce data scanned',
            'estimatedImprovement': '50-80% cost reduction for filtered queries',
            'implementation': 'Partition by date or another high-cardinality field',
        })
    return optimizations


def validate_sql_syntax(query: str) -> Dict[str, Any]:
    errors = []
    warnings = []
    head = query.strip().upper()
    if not (head.startswith('SELECT') or head.startswith('WITH')):
        errors.append('Query must start with SELECT or WITH statement')
    if query.count('(') != query.count(')'):
        errors.append('Unbalanced parentheses in query')
    if SELECT_STAR.search(query) and GROUP_BY.search(query):
        warnings.append('Using SELECT * with GROUP BY may cause issues')
    return {'isValid': not errors, 'errors': errors, 'warnings': warnings}


def extract_table_references(query: str) -> List[str]:
    tables = []
    for name in TABLE_REFERENCE.findall(query):
        if name.upper() == 'UNNEST' or name in tables:
            continue
        tables.append(name)
    return tables


def check_table_references(query: str) -> Dict[str, Any]:
    """Format check of ``dataset.table`` / ``project.dataset.table`` references."""
    warnings = []
    tables = extract_table_references(query)
    for table in tables:
        parts = table.split('.')
        if len(parts) < 2:
            continue
        dataset, table_id = parts[-2], parts[-1]
        if not re.match(r'^[A-Za-z0-9_]+$', dataset) or not re.match(r'^[A-Za-z0-9_\-]+$', table_id):
            warnings.append(f'Table name format may be invalid: {table}')
    return {'isValid': True, 'tables': tables, 'errors': [], 'warnings': warnings}


def structure_hints(query: str) -> List[Dict[str, str]]:
    hints = []
    if SELECT_STAR.search(query):
        hints.append({
            'type': 'performance',
            'level': 'warning',
            'message': 'Consider selecting specific columns instead of using SELECT *',
            'suggestion': 'Specify only the columns you need to reduce data processing',
        })
    if not WHERE.search(query) and not LIMIT.search(query):
        hints.append({
            'type': 'cost',
            'level': 'warning',
            'message': 'Query has no WHERE clause or LIMIT, may process entire table',
            'suggestion': 'Add appropriate filters to reduce data processing',
        })
    if ORDER_BY.search(query) and not LIMIT.search(query):
        hints.append({
            'type': 'performance',
            'level': 'info',
            'message': 'ORDER BY without LIMIT may be expensive on large datasets',
            'suggestion': 'Consider adding LIMIT if you only need top results',
        })
    return hints


def _select_list(query: str) -> str:
    match = re.search(r'\bSELECT\s+(.*?)\s+FROM\b', query, re.IGNORECASE | re.DOTALL)
    return match.group(1) if match else ''


def detailed_structure_hints(query: str) -> List[Dict[str, str]]:
    hints = []
    if re.search(r'\(\s*SELECT\b', _select_list(query), re.IGNORECASE):
        hints.append({
            'type': 'performance',
            'level': 'info',
            'message': 'Subqueries in SELECT clause may impact performance',
            'suggestion': 'Consider using JOINs or window functions instead',
        })
    if re.search(r'\bDISTINCT\b', query, re.IGNORECASE):
        hints.append({
            'type': 'performance',
            'level': 'info',
            'message': 'DISTINCT operations can be expensive',
            'suggestion': 'Ensure DISTINCT is necessary and consider GROUP BY alternatives',
        })
    return hints


def _join_without_condition(query: str):
    """Yield True for each non-CROSS join whose segment has no ON/USING."""
    segments = JOIN.split(query)
    for before, segment in zip(segments, segments[1:]):
        if re.search(r'\bCROSS\s*$', before, re.IGNORECASE):
            continue
        yield not re.search(r'\bON\b|\bUSING\b', segment, re.IGNORECASE)


def advanced_structure_hints(query: str) -> List[Dict[str, str]]:
    hints = []
    if len(SELECT_KEYWORD.findall(query)) > 3:
        hints.append({
            'type': 'complexity',
            'level': 'warning',
            'message': 'Query has multiple levels of nesting',
            'suggestion': 'Consider breaking into smaller queries or using CTEs',
        })
    if any(_join_without_condition(query)):
        hints.append({
            'type': 'correctness',
            'level': 'error',
            'message': 'JOIN without ON clause may create cartesian product',
            'suggestion': 'Add appropriate JOIN conditions',
        })
    return hints


def where_clause(query: str) -> Optional[str]:
    match = WHERE_CLAUSE.search(query)
    return match.group(1).strip() if match else None


def performance_hints(query: str) -> List[Dict[str, str]]:
    hints = []
    clause = where_clause(query)
    if clause:
        functions = [f for f in FUNCTION_CALL.findall(clause) if f.upper() not in SQL_WORDS]
        if functions:
            hints.append({
                'type': 'performance',
                'level': 'warning',
                'message': 'Functions in WHERE clause may prevent partition pruning',
                'suggestion': 'Compare raw partition/cluster columns against constants where possible',
            })
    return hints


def partitioning_opportunities(query: str) -> List[Dict[str, str]]:
    clause = where_clause(query) or ''
    if re.search(r'\w*(?:date|timestamp|time)\w*', clause, re.IGNORECASE):
        return [{
            'type': 'time_partitioning',
            'message': 'Query filters on date/timestamp fields',
            'suggestion': 'Consider partitioning tables by date for better performance and cost reduction',
        }]
    return []


def cost_optimizations(query: str) -> List[Dict[str, str]]:
    if ORDER_BY.search(query) and not LIMIT.search(query):
        return [{
            'type': 'cost_reduction',
            'message': 'ORDER BY without LIMIT processes entire result set',
            'suggestion': 'Add LIMIT clause to reduce sorting costs',
            'estimatedSavings': 'High',
        }]
    return []


def prioritize_hints(hints: Iterable[Dict[str, str]]) -> List[Dict[str, str]]:
    """Order hints error → warning → info, tagging each with a priority."""
    priorities = (('error', 'high'), ('warning', 'medium'), ('info', 'low'))
    hints = list(hints)
    ordered = []
    for level, priority in priorities:
        ordered.extend(dict(h, priority=priority) for h in hints if h.get('level') == level)
    return ordered


def extract_fields(clause: str) -> List[str]:
    fields = []
    for name in FIELD_COMPARISON.findall(clause):
        if name.upper() in SQL_WORDS or name in fields:
            continue
        fields.append(name)
    return fields


def extract_query_patterns(queries: Iterable[str]) -> Dict[str, List[Any]]:
    patterns: Dict[str, List[Any]] = {'filters': [], 'aggregations': [], 'timeRanges': []}
    for query in queries:
        clause = where_clause(query)
        if clause:
            patterns['filters'].append({'clause': clause, 'fields': extract_fields(clause)})
        group = GROUP_CLAUSE.search(query)
        if group:
            patterns['aggregations'].append({'fields': [f.strip() for f in group.group(1).split(',') if f.strip()]})
        patterns['timeRanges'].extend(TIME_RANGE.findall(query))
    return patterns


def _bare_column(expression: str) -> str:
    name = expression.strip().split()[0] if expression.strip() else ''
    return name.split('.')[-1].strip('`')


def column_usage(query_patterns: Iterable[Dict[str, Any]]) -> Dict[str, Counter]:
    """Frequency-weighted counts of columns used in filters, joins, grouping and ordering."""
    usage = {'filter': Counter(), 'join': Counter(), 'groupBy': Counter(), 'orderBy': Counter()}
    for pattern in query_patterns:
        query = pattern['query']
        weight = pattern.get('frequency') or 1

        clause = where_clause(query)
        if clause:
            for condition in re.split(r'\s+AND\s+|\s+OR\s+', clause, flags=re.IGNORECASE):
                fields = extract_fields(condition)
                if fields:
                    usage['filter'][fields[0]] += weight

        for on_clause in JOIN_ON_CLAUSE.findall(query):
            for condition in re.split(r'\s+AND\s+', on_clause, flags=re.IGNORECASE):
                match = re.search(r'([\w.]+)\s*=\s*([\w.]+)', condition)
                if match:
                    usage['join'][match.group(2).split('.')[-1]] += weight

        group = GROUP_CLAUSE.search(query)
        if group:
            for column in group.group(1).split(','):
                if column.strip():
                    usage['groupBy'][_bare_column(column)] += weight

        order = ORDER_CLAUSE.search(query)
        if order:
            for column in order.group(1).split(','):
                if column.strip():
                    usage['orderBy'][_bare_column(column)] += weight
    return usage


def index_recommendations(usage: Dict[str, Counter], partitioned: bool) -> List[Dict[str, Any]]:
    recommendations = []
    top_filters = [c for c, _ in usage['filter'].most_common(4)]
    top_groups = [c for c, _ in usage['groupBy'].most_common(4)]

    if top_filters:
        recommendations.append({
            'type': 'clustering',
            'columns': top_filters,
            'reason': 'Frequently used in WHERE clauses',
            'impact': 'High',
            'confidence': 0.9,
        })
    if top_groups and (not top_filters or top_groups[0] != top_filters[0]):
        recommendations.append({
            'type': 'clustering',
            'columns': top_groups,
            'reason': 'Frequently used in GROUP BY clauses',
            'impact': 'Medium',
            'confidence': 0.8,
        })

    date_columns = [c for c in usage['filter'] if 'date' in c.lower() or 'time' in c.lower()]
    if date_columns and not partitioned:
        recommendations.append({
            'type': 'partitioning',
            'columns': [date_columns[0]],
            'partitionType': 'TIME',
            'reason': 'Date/time column frequently used in filters',
            'impact': 'High',
            'confidence': 0.95,
        })
    return recommendations
