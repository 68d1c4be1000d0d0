"""Time-series SQL for trend analysis and monitoring."""

import re
from typing import Any, Dict, List, Optional, Sequence

from .builders import quote_string

SEASONAL_PERIODS = {
    'HOUR': 24,
    'DAY': 7,
    'WEEK': 4,
    'MONTH': 12,
    'QUARTER': 4,
    'YEAR': 1,
}

DEFAULT_VALUE_COLUMN = 'record_count'
NON_IDENTIFIER = re.compile(r'\W+')


def time_granularity(time_column: str, granularity: str) -> str:
    if granularity == 'HOUR':
        return f'TIMESTAMP_TRUNC({time_column}, HOUR)'
    if granularity in ('WEEK', 'MONTH', 'QUARTER'):
        return f'DATE_TRUNC(DATE({time_column}), {granularity})'
    if granularity == 'YEAR':
        return f'DATE_TRUNC(DATE({time_column}), YEAR)'
    return f'DATE({time_column})'


def metric_alias(metric: Dict[str, str]) -> str:
    field = metric['field']
    name = 'all' if field == '*' else NON_IDENTIFIER.sub('_', field).strip('_')
    return f"{metric['aggregation'].lower()}_{name}"


def metric_aggregations(metrics: Optional[Sequence[Dict[str, str]]]) -> str:
    if not metrics:
        return f'COUNT(*) AS {DEFAULT_VALUE_COLUMN}'
    return ',\n    '.join(
        f"{m['aggregation']}({m['field']}) AS {metric_alias(m)}" for m in metrics
    )


def value_column(metrics: Optional[Sequence[Dict[str, str]]]) -> str:
    """The column the trend extensions analyse: the first metric, or the row count."""
    if not metrics:
        return DEFAULT_VALUE_COLUMN
    return metric_alias(metrics[0])


def lookback_clause(time_column: str, granularity: str, periods: int) -> str:
    intervals = {
        'HOUR': f'INTERVAL {periods} HOUR',
        'DAY': f'INTERVAL {periods} DAY',
        'WEEK': f'INTERVAL {periods * 7} DAY',
        'MONTH': f'INTERVAL {periods * 30} DAY',
        'QUARTER': f'INTERVAL {periods * 91} DAY',
        'YEAR': f'INTERVAL {periods * 365} DAY',
    }
    interval = intervals.get(granularity, 'INTERVAL 30 DAY')
    return f'TIMESTAMP({time_column}) >= TIMESTAMP_SUB(CURRENT_TIMESTAMP(), {interval})'


def time_filter(time_column: str, window: Dict[str, Any]) -> str:
    filters = []
    if window.get('start'):
        filters.append(f"TIMESTAMP({time_column}) >= TIMESTAMP({quote_string(window['start'])})")
    if window.get('end'):
        filters.append(f"TIMESTAMP({time_column}) <= TIMESTAMP({quote_string(window['end'])})")
    if window.get('lookbackPeriods') and not window.get('start'):
        filters.append(lookback_clause(time_column, window.get('granularity', 'DAY'), window['lookbackPeriods']))
    return ' AND '.join(filters) if filters else '1=1'


def time_series_cte(
    table_ref: str,
    time_column: str,
    window: Dict[str, Any],
    metrics: Optional[Sequence[Dict[str, str]]] = None,
    group_by: Optional[Sequence[str]] = None,
) -> str:
    granularity = window.get('granularity', 'DAY')
    dims = ''.join(f'{d},\n    ' for d in group_by or ())
    group_tail = ''.join(f', {d}' for d in group_by or ())
    return (
        'WITH time_series AS (\n'
        '  SELECT\n'
        f'    {time_granularity(time_column, granularity)} AS time_period,\n'
        f'    {dims}{metric_aggregations(metrics)}\n'
        f'  FROM `{table_ref}`\n'
        f'  WHERE {time_filter(time_column, window)}\n'
        f'  GROUP BY time_period{group_tail}\n'
        ')'
    )


def linear_trend_query(value: str = DEFAULT_VALUE_COLUMN) -> str:
    return f"""
, linear_regression AS (
  SELECT
    time_period,
    {value},
    {value} - AVG({value}) OVER() AS deviation,
    ROW_NUMBER() OVER (ORDER BY time_period) AS period_number,
    COUNT(*) OVER() AS total_periods
  FROM time_series
)
SELECT
  *,
  AVG({value}) OVER() +
    SAFE_DIVIDE(
      SUM(deviation * (period_number - (total_periods + 1) / 2)) OVER(),
      SUM(POW(period_number - (total_periods + 1) / 2, 2)) OVER()
    ) * (period_number - (total_periods + 1) / 2) AS trend_value
FROM linear_regression
ORDER BY time_period"""


def exponential_trend_query(value: str = DEFAULT_VALUE_COLUMN) -> str:
    return f"""
, growth AS (
  SELECT
    time_period,
    {value},
    SAFE_DIVIDE({value}, LAG({value}) OVER (ORDER BY time_period)) AS growth_ratio,
    ROW_NUMBER() OVER (ORDER BY time_period) - 1 AS period_index,
    FIRST_VALUE({value}) OVER (ORDER BY time_period) AS first_value
  FROM time_series
)
SELECT
  time_period,
  {value},
  growth_ratio,
  first_value * POW(AVG(growth_ratio) OVER(), period_index) AS exponential_trend
FROM growth
ORDER BY time_period"""


def seasonal_trend_query(granularity: str, value: str = DEFAULT_VALUE_COLUMN) -> str:
    period = SEASONAL_PERIODS.get(granularity, 7)
    half = period // 2
    return f"""
, numbered AS (
  SELECT
    time_period,
    {value},
    MOD(ROW_NUMBER() OVER (ORDER BY time_period), {period}) AS season_index
  FROM time_series
)
, seasonal_analysis AS (
  SELECT
    time_period,
    {value},
    AVG({value}) OVER (PARTITION BY season_index) AS seasonal_avg,
    AVG({value}) OVER (
      ORDER BY time_period
      ROWS BETWEEN {half} PRECEDING AND {half} FOLLOWING
    ) AS trend,
    {value} - AVG({value}) OVER (PARTITION BY season_index) AS residual
  FROM numbered
)
SELECT * FROM seasonal_analysis
ORDER BY time_period"""


def decomposition_query(value: str = DEFAULT_VALUE_COLUMN) -> str:
    return f"""
, trend_component AS (
  SELECT
    time_period,
    {value},
    AVG({value}) OVER (
      ORDER BY time_period
      ROWS BETWEEN 3 PRECEDING AND 3 FOLLOWING
    ) AS trend_component
  FROM time_series
)
, decomposition AS (
  SELECT
    *,
    {value} - trend_component AS detrended,
    AVG({value} - trend_component) OVER (
      PARTITION BY EXTRACT(DAYOFWEEK FROM time_period)
    ) AS seasonal_component
  FROM trend_component
)
SELECT
  *,
  {value} - trend_component - seasonal_component AS irregular_component
FROM decomposition
ORDER BY time_period"""


def build_trend_queries(
    table_refs: Sequence[str],
    time_column: str,
    window: Dict[str, Any],
    trend_type: str = 'all',
    metrics: Optional[Sequence[Dict[str, str]]] = None,
    group_by: Optional[Sequence[str]] = None,
) -> List[Dict[str, str]]:
    """One query per table and trend type; ``all`` expands to linear and seasonal."""
    value = value_column(metrics)
    granularity = window.get('granularity', 'DAY')
    extensions = {
        'linear': lambda: linear_trend_query(value),
        'exponential': lambda: exponential_trend_query(value),
        'seasonal': lambda: seasonal_trend_query(granularity, value),
        'decomposition': lambda: decomposition_query(value),
    }
    types = ['linear', 'seasonal'] if trend_type == 'all' else [trend_type]

    queries = []
    for table_ref in table_refs:
        base = time_series_cte(table_ref, time_column, window, metrics, group_by)
        for kind in types:
            queries.append({'type': kind, 'table': table_ref, 'sql': base + extensions[kind]()})
    return queries


def monitoring_queries(
    table_ref: str,
    time_column: str,
    categories: Sequence[str],
    metrics: Optional[Sequence[Dict[str, str]]] = None,
) -> List[Dict[str, str]]:
    queries = []
    if 'trend' in categories:
        queries.append({
            'purpose': 'Monitor trend continuation',
            'sql': (
                'SELECT\n'
                f'  DATE({time_column}) AS date,\n'
                f'  {metric_aggregations(metrics)}\n'
                f'FROM `{table_ref}`\n'
                f'WHERE DATE({time_column}) >= DATE_SUB(CURRENT_DATE(), INTERVAL 7 DAY)\n'
                'GROUP BY date\n'
                'ORDER BY date DESC'
            ),
            'schedule': 'daily',
        })
    if 'anomalies' in categories:
        queries.append({
            'purpose': 'Detect anomalies in real-time',
            'sql': (
                'WITH recent_stats AS (\n'
                '  SELECT AVG(record_count) AS avg_count, STDDEV(record_count) AS stddev_count\n'
                '  FROM (\n'
                f'    SELECT DATE({time_column}) AS date, COUNT(*) AS record_count\n'
                f'    FROM `{table_ref}`\n'
                f'    WHERE DATE({time_column}) >= DATE_SUB(CURRENT_DATE(), INTERVAL 30 DAY)\n'
                '    GROUP BY date\n'
                '  )\n'
                ')\n'
                'SELECT\n'
                '  CURRENT_TIMESTAMP() AS alert_time,\n'
                '  COUNT(*) AS current_count,\n'
                '  SAFE_DIVIDE(COUNT(*) - avg_count, stddev_count) AS z_score\n'
                f'FROM `{table_ref}`, recent_stats\n'
                f'WHERE TIMESTAMP({time_column}) >= TIMESTAMP_SUB(CURRENT_TIMESTAMP(), INTERVAL 1 HOUR)\n'
                'GROUP BY avg_count, stddev_count\n'
                'HAVING ABS(z_score) > 2'
            ),
            'schedule': 'hourly',
        })
    return queries
