"""Schema and table-layout analysis.

Fields are plain dicts in the BigQuery REST shape
(``{"name", "type", "mode", "description", "fields"}``), as produced by
``SchemaField.to_api_repr()``.
"""

import re
from typing import Any, Dict, List, Optional, Sequence

from ..sql.builders import clustering_ddl, range_partitioning_ddl, time_partitioning_ddl

HIGH_CARDINALITY_TYPES = {'STRING', 'BYTES', 'TIMESTAMP', 'DATETIME'}
ID_NAME = re.compile(r'(^|_)id$', re.IGNORECASE)
LARGE_TABLE_ROWS = 1000000
INTEGER_TYPES = ('INT64', 'INTEGER')
VERY_LARGE_TABLE_ROWS = 10000000


def data_type_efficiency(field: Dict[str, Any]) -> str:
    name = field.get('name', '')
    if field.get('type') == 'STRING' and ID_NAME.search(name):
        return 'inefficient'
    if field.get('type') in ('FLOAT', 'FLOAT64') and 'count' in name.lower():
        return 'inefficient'
    return 'efficient'


def data_type_suggestion(field: Dict[str, Any]) -> Optional[str]:
    if data_type_efficiency(field) == 'efficient':
        return None
    return f"Consider using INT64 instead of {field['type']} for {field['name']}"


def naming_convention(name: str) -> Dict[str, bool]:
    return {
        'camelCase': bool(re.match(r'^[a-z][a-zA-Z0-9]*$', name)),
        'snake_case': bool(re.match(r'^[a-z][a-z0-9_]*$', name)),
        'hasSpecialChars': bool(re.search(r'[^a-zA-Z0-9_]', name)),
    }


def analyze_fields(fields: Sequence[Dict[str, Any]], parent_path: str = '') -> List[Dict[str, Any]]:
    analyzed = []
    for field in fields:
        path = f"{parent_path}.{field['name']}" if parent_path else field['name']
        mode = field.get('mode') or 'NULLABLE'
        entry = {
            'name': field['name'],
            'path': path,
            'type': field.get('type'),
            'mode': mode,
            'description': field.get('description') or '',
            'analysis': {
                'isNested': field.get('type') in ('RECORD', 'STRUCT'),
                'isRepeated': mode == 'REPEATED',
                'isRequired': mode == 'REQUIRED',
                'dataTypeEfficiency': data_type_efficiency(field),
                'namingConvention': naming_convention(field['name']),
            },
        }
        if field.get('fields'):
            entry['nestedFields'] = analyze_fields(field['fields'], path)
        analyzed.append(entry)
    return analyzed


def count_total_fields(fields: Sequence[Dict[str, Any]]) -> int:
    return len(fields) + sum(count_total_fields(f['fields']) for f in fields if f.get('fields'))


def count_repeated_fields(fields: Sequence[Dict[str, Any]]) -> int:
    count = 0
    for field in fields:
        if field.get('mode') == 'REPEATED':
            count += 1
        if field.get('fields'):
            count += count_repeated_fields(field['fields'])
    return count


def schema_depth(fields: Sequence[Dict[str, Any]], current: int = 0) -> int:
    depths = [schema_depth(f['fields'], current + 1) for f in fields if f.get('fields')]
    return max(depths, default=current)


def schema_complexity(fields: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    score = 0
    factors = []

    total = count_total_fields(fields)
    if total > 50:
        score += 3
        factors.append(f'High field count: {total}')
    elif total > 20:
        score += 1
        factors.append(f'Moderate field count: {total}')

    depth = schema_depth(fields)
    if depth > 3:
        score += 3
        factors.append(f'Deep nesting: {depth} levels')
    elif depth > 1:
        score += 1
        factors.append(f'Nested structures: {depth} levels')

    repeated = count_repeated_fields(fields)
    if repeated > 5:
        score += 2
        factors.append(f'Multiple repeated fields: {repeated}')
    elif repeated > 0:
        score += 1
        factors.append(f'Repeated fields: {repeated}')

    level = 'complex' if score >= 5 else 'moderate' if score >= 2 else 'simple'
    return {'score': score, 'factors': factors, 'level': level}


def find_field(fields: Sequence[Dict[str, Any]], name: str, parent_path: str = '') -> Optional[Dict[str, Any]]:
    for field in fields:
        path = f"{parent_path}.{field['name']}" if parent_path else field['name']
        if name in (field['name'], path):
            return field
        if field.get('fields'):
            found = find_field(field['fields'], name, path)
            if found:
                return found
    return None


def partitioning_effectiveness(partition_type: str, num_rows: int) -> Dict[str, Any]:
    if num_rows > VERY_LARGE_TABLE_ROWS:
        score, factor = 90, f'Large table benefits significantly from {partition_type.lower()} partitioning'
    elif num_rows > LARGE_TABLE_ROWS:
        score, factor = 70, f'Moderate benefits from {partition_type.lower()} partitioning'
    else:
        score, factor = 30, 'Limited benefits due to small table size'
    level = 'high' if score > 70 else 'medium' if score > 40 else 'low'
    return {'score': score, 'level': level, 'factors': [factor]}


def analyze_partitioning(table: Dict[str, Any]) -> Dict[str, Any]:
    """Describe a table's partitioning from its REST metadata dict."""
    num_rows = int(table.get('numRows') or 0)
    result: Dict[str, Any] = {'type': None, 'field': None, 'effectiveness': None, 'recommendations': []}

    time_partitioning = table.get('timePartitioning')
    range_partitioning = table.get('rangePartitioning')
    if time_partitioning:
        result.update(
            type='TIME',
            field=time_partitioning.get('field') or '_PARTITIONTIME',
            granularity=time_partitioning.get('type'),
            expirationMs=time_partitioning.get('expirationMs'),
            effectiveness=partitioning_effectiveness('TIME', num_rows),
        )
    elif range_partitioning:
        result.update(
            type='RANGE',
            field=range_partitioning.get('field'),
            range=range_partitioning.get('range'),
            effectiveness=partitioning_effectiveness('RANGE', num_rows),
        )
    elif num_rows > LARGE_TABLE_ROWS:
        result['recommendations'].append({
            'type': 'ADD_PARTITIONING',
            'reason': 'Large table would benefit from partitioning',
            'suggestion': 'Consider time-based or integer range partitioning',
        })
    return result


def analyze_clustering(clustering_fields: Sequence[str], fields: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    cardinality = {}
    recommendations = []
    for position, name in enumerate(clustering_fields):
        field = find_field(fields, name)
        if not field:
            continue
        cardinality[name] = {
            'dataType': field.get('type'),
            'isHighCardinality': field.get('type') in HIGH_CARDINALITY_TYPES,
        }
        if field.get('type') == 'STRING' and position > 2:
            recommendations.append({
                'type': 'REORDER_CLUSTERING',
                'field': name,
                'reason': 'High cardinality STRING fields should be in first 3 clustering columns',
            })

    effectiveness = {'score': 0, 'level': 'unknown', 'recommendations': []}
    if len(clustering_fields) > 4:
        effectiveness.update(score=50, level='medium')
        effectiveness['recommendations'].append('Consider reducing clustering columns to 4 or fewer')
    elif any(info['isHighCardinality'] for info in cardinality.values()):
        effectiveness.update(score=80, level='high')

    return {
        'fields': list(clustering_fields),
        'cardinality': cardinality,
        'effectiveness': effectiveness,
        'recommendations': recommendations,
    }


def _flatten(fields: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    flat = []
    for field in fields:
        flat.append(field)
        flat.extend(_flatten(field.get('nestedFields') or ()))
    return flat


def optimization_recommendations(analysis: Dict[str, Any], advanced: bool) -> Dict[str, List[Dict[str, Any]]]:
    result: Dict[str, List[Dict[str, Any]]] = {'recommendations': [], 'dataQualityIssues': [], 'performanceHints': []}
    num_rows = int(analysis['tableInfo'].get('numRows') or 0)

    if (analysis['schema'].get('complexity') or {}).get('level') == 'complex':
        result['recommendations'].append({
            'type': 'SCHEMA_SIMPLIFICATION',
            'priority': 'medium',
            'description': 'Consider flattening deeply nested structures for better query performance',
            'impact': 'Can improve query speed by 20-40%',
        })

    for field in _flatten(analysis['schema']['fields']):
        if field['analysis']['dataTypeEfficiency'] == 'inefficient':
            result['dataQualityIssues'].append({
                'field': field['path'],
                'issue': 'Inefficient data type',
                'suggestion': data_type_suggestion(field),
            })

    if not (analysis.get('partitioning') or {}).get('type') and num_rows > LARGE_TABLE_ROWS:
        result['performanceHints'].append({
            'type': 'ADD_PARTITIONING',
            'priority': 'high',
            'description': 'Large table would benefit from partitioning',
            'suggestion': 'Use TIME partitioning on date/timestamp column or INTEGER partitioning on ID column',
        })
    if not analysis.get('clustering') and num_rows > VERY_LARGE_TABLE_ROWS:
        result['performanceHints'].append({
            'type': 'ADD_CLUSTERING',
            'priority': 'medium',
            'description': 'Very large table would benefit from clustering',
            'suggestion': 'Cluster on frequently filtered columns (up to 4 columns)',
        })

    if advanced:
        result['recommendations'].append({
            'type': 'MATERIALIZED_VIEW',
            'priority': 'low',
            'description': 'Consider creating materialized views for frequently queried aggregations',
            'impact': 'Can reduce query costs by 50-90% for aggregate queries',
        })
    return result


def _is_related(field_a: Dict[str, Any], field_b: Dict[str, Any], table_a: str, table_b: str) -> bool:
    if field_a['name'] == f'{table_b}_id' or field_b['name'] == f'{table_a}_id':
        return True
    return field_a['name'] == field_b['name'] and '_id' in field_a['name']


def relationship_confidence(field_a: Dict[str, Any], field_b: Dict[str, Any]) -> float:
    confidence = 0.5
    if field_a.get('type') == field_b.get('type'):
        confidence += 0.2
    if field_a['name'] == field_b['name']:
        confidence += 0.2
    if field_a['name'].endswith('_id') and field_b['name'].endswith('_id'):
        confidence += 0.1
    return round(min(confidence, 1.0), 2)


def detect_table_relationships(tables: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Potential foreign keys between ``{"datasetId", "tableId", "fields"}`` entries."""
    relationships = []
    for i, left in enumerate(tables):
        for right in tables[i + 1:]:
            for field_a in left['fields']:
                for field_b in right['fields']:
                    if _is_related(field_a, field_b, left['tableId'], right['tableId']):
                        relationships.append({
                            'from': f"{left['datasetId']}.{left['tableId']}.{field_a['name']}",
                            'to': f"{right['datasetId']}.{right['tableId']}.{field_b['name']}",
                            'type': 'potential_foreign_key',
                            'confidence': relationship_confidence(field_a, field_b),
                        })
    return relationships


# Partition analysis recommendations

def _temporal_field(cardinality: Dict[str, Any], time_column: Optional[str]) -> Optional[str]:
    if time_column:
        return time_column
    return next((f for f in cardinality if 'date' in f.lower() or 'time' in f.lower()), None)


def partition_clause(partitioning: Optional[Dict[str, Any]]) -> Optional[str]:
    """PARTITION BY expression reproducing an existing layout."""
    if not partitioning:
        return None
    if partitioning['type'] == 'TIME':
        field = partitioning.get('field')
        if not field or field == '_PARTITIONTIME':
            return '_PARTITIONDATE'
        return f'DATE({field})'
    bounds = partitioning.get('range') or {}
    return (
        f"RANGE_BUCKET({partitioning['field']}, GENERATE_ARRAY("
        f"{bounds.get('start', 0)}, {bounds.get('end', 1000000)}, {bounds.get('interval', 10000)}))"
    )


def clustering_candidates(cardinality: Dict[str, Dict[str, Any]], query_patterns: Dict[str, Any]) -> List[str]:
    filter_fields = {f for pattern in query_patterns.get('filters', ()) for f in pattern['fields']}
    candidates = [name for name, stats in cardinality.items() if stats['ratio'] > 0.1 and name in filter_fields]
    return candidates[:4]


def partitioning_recommendations(
    table_name: str,
    num_rows: int,
    current_partitioning: Optional[Dict[str, Any]],
    clustered: bool,
    distribution: Dict[str, Any],
    query_patterns: Dict[str, Any],
    time_column: Optional[str] = None,
    column_types: Optional[Dict[str, str]] = None,
) -> List[Dict[str, Any]]:
    recommendations = []
    cardinality = distribution.get('cardinality') or {}
    column_types = column_types or {}

    if not current_partitioning and num_rows > LARGE_TABLE_ROWS:
        if distribution.get('temporalDistribution'):
            field = _temporal_field(cardinality, time_column)
            recommendations.append({
                'strategy': 'time_partitioning',
                'type': 'DAY',
                'field': field,
                'reason': 'Large table with temporal data would benefit from time partitioning',
                'estimatedImprovement': '60-80% query cost reduction for time-filtered queries',
                'implementationSQL': time_partitioning_ddl(table_name, field),
            })
        for field, stats in cardinality.items():
            integer = column_types.get(field) in INTEGER_TYPES
            if integer and stats['ratio'] > 0.8 and ID_NAME.search(field):
                recommendations.append({
                    'strategy': 'range_partitioning',
                    'type': 'INTEGER',
                    'field': field,
                    'reason': f'High cardinality field {field} suitable for range partitioning',
                    'estimatedImprovement': '40-60% performance improvement for filtered queries',
                    'implementationSQL': range_partitioning_ddl(table_name, field),
                })

    if current_partitioning and not clustered:
        candidates = clustering_candidates(cardinality, query_patterns)
        if candidates:
            recommendations.append({
                'strategy': 'clustering',
                'type': 'CLUSTER',
                'field': ', '.join(candidates),
                'reason': 'Clustering would complement existing partitioning',
                'estimatedImprovement': '20-40% additional performance improvement',
                'implementationSQL': clustering_ddl(table_name, candidates, partition_clause(current_partitioning)),
            })
    return recommendations
