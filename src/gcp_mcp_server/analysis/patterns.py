"""Starter-query suggestions and naming-based dataset pattern detection."""

import re
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence

from .queries import extract_table_references

RELATED_MARKERS = ('fact_', 'dim_', '_details', '_summary')
RAW_MARKERS = ('raw', 'events', 'logs')

SUGGESTIONS = {
    'analytics': [
        {
            'title': 'Time Series Analysis',
            'description': 'Analyze trends over time',
            'query': """-- Time series analysis template
SELECT
  DATE_TRUNC(DATE(timestamp_column), MONTH) AS period,
  COUNT(*) AS event_count,
  AVG(metric_column) AS avg_metric
FROM `{dataset}.{table}`
WHERE DATE(timestamp_column) >= DATE_SUB(CURRENT_DATE(), INTERVAL 12 MONTH)
GROUP BY period
ORDER BY period DESC""",
            'useCase': 'Track metrics evolution over time',
        },
        {
            'title': 'Cohort Analysis',
            'description': 'Analyze user behavior by cohort',
            'query': """-- Cohort retention analysis
WITH cohorts AS (
  SELECT
    user_id,
    DATE_TRUNC(first_seen_date, MONTH) AS cohort_month
  FROM `{dataset}.users`
)
SELECT
  cohort_month,
  COUNT(DISTINCT user_id) AS cohort_size,
  COUNT(DISTINCT CASE WHEN active_in_month = cohort_month THEN user_id END) AS month_0,
  COUNT(DISTINCT CASE WHEN active_in_month = DATE_ADD(cohort_month, INTERVAL 1 MONTH) THEN user_id END) AS month_1
FROM cohorts
JOIN `{dataset}.user_activity` USING (user_id)
GROUP BY cohort_month
ORDER BY cohort_month""",
            'useCase': 'Measure user retention by signup cohort',
        },
    ],
    'reporting': [
        {
            'title': 'Daily Summary Report',
            'description': 'Key metrics summary by day',
            'query': """-- Daily business metrics summary
SELECT
  DATE(timestamp_column) AS report_date,
  COUNT(DISTINCT user_id) AS daily_active_users,
  COUNT(*) AS total_events,
  SUM(revenue) AS daily_revenue,
  AVG(session_duration) AS avg_session_duration
FROM `{dataset}.events`
WHERE DATE(timestamp_column) >= DATE_SUB(CURRENT_DATE(), INTERVAL 30 DAY)
GROUP BY report_date
ORDER BY report_date DESC""",
            'useCase': 'Executive dashboard daily metrics',
        },
        {
            'title': 'Top Performers Report',
            'description': 'Identify top performing entities',
            'query': """-- Top performing products/categories
SELECT
  category,
  product_name,
  COUNT(*) AS transaction_count,
  SUM(amount) AS total_revenue,
  AVG(amount) AS avg_transaction_value
FROM `{dataset}.transactions`
WHERE DATE(transaction_date) >= DATE_SUB(CURRENT_DATE(), INTERVAL 7 DAY)
GROUP BY category, product_name
ORDER BY total_revenue DESC
LIMIT 20""",
            'useCase': 'Identify best performing products or categories',
        },
    ],
    'exploration': [
        {
            'title': 'Data Distribution Analysis',
            'description': 'Explore data distributions and patterns',
            'query': """-- Analyze distribution of key metrics
SELECT
  APPROX_QUANTILES(metric_column, 100) AS percentiles,
  AVG(metric_column) AS mean_value,
  STDDEV(metric_column) AS std_deviation,
  MIN(metric_column) AS min_value,
  MAX(metric_column) AS max_value
FROM `{dataset}.{table}`""",
            'useCase': 'Understand data distribution and identify outliers',
        },
        {
            'title': 'Correlation Analysis',
            'description': 'Find correlations between metrics',
            'query': """-- Correlation analysis between metrics
SELECT
  CORR(metric1, metric2) AS correlation_coefficient,
  COUNT(*) AS sample_size,
  AVG(metric1) AS avg_metric1,
  AVG(metric2) AS avg_metric2
FROM `{dataset}.{table}`
WHERE metric1 IS NOT NULL AND metric2 IS NOT NULL""",
            'useCase': 'Discover relationships between different metrics',
        },
    ],
    'optimization': [
        {
            'title': 'Optimize Large Table Scans',
            'description': 'Use partitioning and clustering effectively',
            'query': """-- Optimized query with partition pruning
SELECT
  column1,
  column2,
  SUM(metric) AS aggregated_metric
FROM `{dataset}.large_table`
WHERE _PARTITIONDATE BETWEEN DATE_SUB(CURRENT_DATE(), INTERVAL 7 DAY) AND CURRENT_DATE()
  AND clustering_column = 'specific_value'
GROUP BY column1, column2""",
            'useCase': 'Reduce query costs on large partitioned tables',
        },
        {
            'title': 'Materialized View Candidate',
            'description': 'Create materialized view for repeated aggregations',
            'query': """-- Create materialized view for frequent aggregations
CREATE MATERIALIZED VIEW `{dataset}.daily_aggregates`
PARTITION BY date_column
CLUSTER BY category
AS
SELECT
  DATE(timestamp_column) AS date_column,
  category,
  COUNT(*) AS event_count,
  SUM(amount) AS total_amount,
  AVG(amount) AS avg_amount
FROM `{dataset}.raw_events`
GROUP BY date_column, category""",
            'useCase': 'Pre-aggregate data for faster queries and lower costs',
        },
    ],
}


def suggestion_complexity(query: str) -> str:
    score = len(re.findall(r'\bJOIN\b', query, re.IGNORECASE)) * 2
    if re.search(r'\(\s*SELECT\b', query, re.IGNORECASE):
        score += 3
    if re.search(r'\bOVER\s*\(', query, re.IGNORECASE):
        score += 3
    if re.search(r'\bWITH\s+\w+\s+AS\b', query, re.IGNORECASE):
        score += 2
    if score >= 5:
        return 'complex'
    if score >= 2:
        return 'moderate'
    return 'simple'


def smart_suggestions(
    dataset_id: str,
    table_ids: Sequence[str],
    suggestion_type: str,
    query_context: Optional[str] = None,
) -> Dict[str, Any]:
    """Starter queries of one kind, pointed at the dataset's first table where one is needed."""
    table = table_ids[0] if table_ids else 'your_table'
    suggestions = []
    for index, template in enumerate(SUGGESTIONS[suggestion_type]):
        query = template['query'].replace('{dataset}', dataset_id).replace('{table}', table)
        suggestions.append({
            'id': f'{suggestion_type}_{index + 1}',
            'title': template['title'],
            'description': template['description'],
            'query': query,
            'useCase': template['useCase'],
            'estimatedComplexity': suggestion_complexity(query),
            'requiredTables': [t for t in extract_table_references(query) if '.' in t],
        })
    return {
        'type': suggestion_type,
        'context': query_context or 'general',
        'availableTables': list(table_ids),
        'suggestions': suggestions,
    }


# Pattern detection

def tables_related(first: str, second: str) -> bool:
    for marker in RELATED_MARKERS:
        if marker in first or marker in second:
            base_first = first.replace(marker, '')
            base_second = second.replace(marker, '')
            if base_first == base_second or base_second in first or base_first in second:
                return True
    return False


def join_patterns(table_ids: Sequence[str]) -> List[Dict[str, Any]]:
    patterns = []
    for i, first in enumerate(table_ids):
        for second in table_ids[i + 1:]:
            if tables_related(first, second):
                patterns.append({
                    'type': 'join',
                    'tables': [first, second],
                    'pattern': 'potential_relationship',
                    'details': {
                        'confidence': 0.7,
                        'suggestedJoinType': 'INNER JOIN',
                        'recommendation': f'Consider joining {first} with {second}',
                    },
                })
    return patterns


def aggregation_patterns(table_ids: Sequence[str]) -> List[Dict[str, Any]]:
    return [
        {
            'type': 'aggregation',
            'table': table_id,
            'pattern': 'raw_data_aggregation_opportunity',
            'details': {
                'recommendation': f'Consider creating aggregated views for {table_id}',
                'suggestedAggregations': ['daily_summary', 'hourly_metrics', 'user_aggregates'],
            },
        }
        for table_id in table_ids
        if any(marker in table_id.lower() for marker in RAW_MARKERS)
    ]


def table_layout_patterns(table: Dict[str, Any], pattern_types: Sequence[str]) -> List[Dict[str, Any]]:
    """Partition and cluster patterns for one table's REST metadata dict."""
    patterns = []
    table_id = table['tableId']
    num_rows = int(table.get('numRows') or 0)
    time_partitioning = table.get('timePartitioning')
    clustering = table.get('clustering')

    if 'partition' in pattern_types:
        if time_partitioning:
            patterns.append({
                'type': 'partition',
                'table': table_id,
                'details': {
                    'field': time_partitioning.get('field'),
                    'type': time_partitioning.get('type'),
                    'recommendation': 'Table is already partitioned',
                },
            })
        elif not table.get('rangePartitioning') and num_rows > 1000000:
            patterns.append({
                'type': 'partition',
                'table': table_id,
                'details': {
                    'numRows': num_rows,
                    'recommendation': 'Large unpartitioned table; add time or integer range partitioning',
                },
            })
    if 'cluster' in pattern_types and clustering:
        patterns.append({
            'type': 'cluster',
            'table': table_id,
            'details': {
                'fields': clustering.get('fields', []),
                'recommendation': 'Table is already clustered',
            },
        })
    return patterns


def pattern_recommendations(patterns: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    by_type: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for pattern in patterns:
        by_type[pattern['type']].append(pattern)

    recommendations = []
    if len(by_type['join']) > 3:
        recommendations.append({
            'type': 'data_model',
            'priority': 'high',
            'description': 'Multiple join patterns detected - consider creating a unified data model',
            'action': 'Create views or materialized views to simplify common join patterns',
        })
    if by_type['aggregation']:
        recommendations.append({
            'type': 'performance',
            'priority': 'medium',
            'description': 'Raw data tables identified for potential aggregation',
            'action': 'Create scheduled queries to maintain aggregated tables',
        })
    unpartitioned = [p for p in by_type['partition'] if 'already' not in p['details']['recommendation']]
    if unpartitioned:
        recommendations.append({
            'type': 'cost_optimization',
            'priority': 'high',
            'description': f'{len(unpartitioned)} tables could benefit from partitioning',
            'action': 'Implement time-based or integer range partitioning',
        })
    return recommendations


def pattern_confidence(pattern: Dict[str, Any]) -> float:
    details = pattern.get('details') or {}
    if details.get('confidence'):
        return details['confidence']
    if pattern['type'] == 'aggregation' and pattern.get('pattern') == 'raw_data_aggregation_opportunity':
        return 0.8
    if pattern['type'] == 'join' and len(pattern.get('tables') or ()) == 2:
        return 0.7
    return 0.5


def pattern_impact(pattern: Dict[str, Any]) -> Dict[str, str]:
    impacts = {
        'partition': {'performance': 'high', 'cost': 'high', 'complexity': 'low'},
        'cluster': {'performance': 'medium', 'cost': 'medium', 'complexity': 'low'},
        'join': {'performance': 'medium', 'cost': 'low', 'complexity': 'medium'},
        'aggregation': {'performance': 'high', 'cost': 'medium', 'complexity': 'low'},
    }
    return dict(impacts.get(pattern['type'], {'performance': 'low', 'cost': 'low', 'complexity': 'low'}))


def score_patterns(patterns: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [dict(p, confidence=pattern_confidence(p), impact=pattern_impact(p)) for p in patterns]
