"""Parameterised query templates for common analytics workloads."""

import re
from typing import Any, Dict, List, Optional

PLACEHOLDER = re.compile(r'\{(\w+)\}')
TWO_PART_REFERENCE = re.compile(r'`([^`.\s]+\.[^`.\s]+)`')

TEMPLATE_LIBRARY: Dict[str, Dict[str, Dict[str, str]]] = {
    'reporting': {
        'daily_summary': {
            'name': 'Daily Summary Report',
            'description': 'Aggregate daily metrics with comparison to previous period',
            'template': """
WITH daily_metrics AS (
  SELECT
    DATE({timeColumn}) AS report_date,
    {dimensions},
    {metrics}
  FROM `{dataset}.{table}`
  WHERE DATE({timeColumn}) BETWEEN '{start}' AND '{end}'
  GROUP BY report_date, {dimensionsList}
),
previous_period AS (
  SELECT
    DATE_ADD(DATE({timeColumn}), INTERVAL {interval} DAY) AS report_date,
    {dimensions},
    {metrics}
  FROM `{dataset}.{table}`
  WHERE DATE({timeColumn}) BETWEEN DATE_SUB('{start}', INTERVAL {interval} DAY)
    AND DATE_SUB('{end}', INTERVAL {interval} DAY)
  GROUP BY report_date, {dimensionsList}
)
SELECT
  d.*,
  p.* EXCEPT (report_date)
FROM daily_metrics d
LEFT JOIN previous_period p
  USING (report_date, {dimensionsList})
ORDER BY d.report_date DESC""",
        },
        'cohort_analysis': {
            'name': 'Cohort Analysis',
            'description': 'User/customer cohort analysis for retention and behavior patterns',
            'template': """
WITH cohorts AS (
  SELECT
    {userId} AS user_id,
    DATE_TRUNC(DATE(MIN({cohortDate})), {cohortPeriod}) AS cohort_period
  FROM `{dataset}.{table}`
  GROUP BY user_id
),
cohort_sizes AS (
  SELECT cohort_period, COUNT(*) AS cohort_size
  FROM cohorts
  GROUP BY cohort_period
),
activity AS (
  SELECT
    c.cohort_period,
    DATE_DIFF(DATE(a.{activityDate}), c.cohort_period, {cohortPeriod}) AS periods_since_cohort,
    COUNT(DISTINCT a.{userId}) AS active_users
  FROM cohorts c
  JOIN `{dataset}.{activityTable}` a
    ON c.user_id = a.{userId}
  WHERE DATE(a.{activityDate}) >= c.cohort_period
  GROUP BY c.cohort_period, periods_since_cohort
)
SELECT
  cohort_period,
  periods_since_cohort,
  active_users,
  cohort_size,
  SAFE_DIVIDE(active_users, cohort_size) AS retention_rate
FROM activity
JOIN cohort_sizes USING (cohort_period)
ORDER BY cohort_period, periods_since_cohort""",
        },
    },
    'etl': {
        'incremental_load': {
            'name': 'Incremental Data Load',
            'description': 'Load only new or modified records since last execution',
            'template': """
CREATE TEMP TABLE staging_data AS
SELECT
  *,
  CURRENT_TIMESTAMP() AS _loaded_at,
  '{loadId}' AS _load_id
FROM `{sourceDataset}.{sourceTable}`
WHERE {updateColumn} > (
  SELECT IFNULL(MAX({updateColumn}), TIMESTAMP('1900-01-01'))
  FROM `{targetDataset}.{targetTable}`
);

MERGE `{targetDataset}.{targetTable}` t
USING staging_data s
ON {primaryKey}
WHEN MATCHED AND s.{updateColumn} > t.{updateColumn} THEN
  UPDATE SET {updateColumns}
WHEN NOT MATCHED THEN
  INSERT ({insertColumns})
  VALUES ({insertValues});""",
        },
        'data_deduplication': {
            'name': 'Data Deduplication',
            'description': 'Remove duplicate records based on specified criteria',
            'template': """
CREATE OR REPLACE TABLE `{dataset}.{table}_deduped` AS
SELECT * EXCEPT (rn)
FROM (
  SELECT
    *,
    ROW_NUMBER() OVER (
      PARTITION BY {deduplicationKeys}
      ORDER BY {orderByColumn} DESC
    ) AS rn
  FROM `{dataset}.{table}`
)
WHERE rn = 1;

SELECT 'Original' AS dataset, COUNT(*) AS total_records
FROM `{dataset}.{table}`
UNION ALL
SELECT 'Deduped' AS dataset, COUNT(*) AS total_records
FROM `{dataset}.{table}_deduped`;""",
        },
    },
    'data_quality': {
        'quality_checks': {
            'name': 'Comprehensive Data Quality Checks',
            'description': 'Run multiple data quality validations on a table',
            'template': """
WITH quality_metrics AS (
  SELECT
    COUNT(*) AS total_records,
    COUNTIF({primaryKey} IS NULL) AS null_primary_keys,
    COUNT(DISTINCT {primaryKey}) AS unique_primary_keys
  FROM `{dataset}.{table}`
)
SELECT
  'Completeness' AS check_type,
  'Primary Key Nulls' AS check_name,
  IF(null_primary_keys = 0, 'PASS', 'FAIL') AS status,
  CONCAT(CAST(null_primary_keys AS STRING), ' / ', CAST(total_records AS STRING)) AS details,
  CURRENT_TIMESTAMP() AS check_timestamp
FROM quality_metrics
UNION ALL
SELECT
  'Uniqueness',
  'Primary Key Duplicates',
  IF(unique_primary_keys = total_records - null_primary_keys, 'PASS', 'FAIL'),
  CONCAT(CAST(total_records - null_primary_keys - unique_primary_keys AS STRING), ' duplicates found'),
  CURRENT_TIMESTAMP()
FROM quality_metrics""",
        },
    },
    'analytics': {
        'funnel_analysis': {
            'name': 'Conversion Funnel Analysis',
            'description': 'Analyze user conversion through defined funnel steps',
            'template': """
WITH funnel_steps AS (
  SELECT
    {userId} AS user_id,
    TIMESTAMP({eventTime}) AS event_time,
    {eventName} AS event_name
  FROM `{dataset}.{eventsTable}`
  WHERE DATE({eventTime}) BETWEEN '{startDate}' AND '{endDate}'
    AND {eventName} IN ({funnelSteps})
),
user_funnel AS (
  SELECT
    user_id,
    MIN(IF(event_name = '{step1}', event_time, NULL)) AS step1_time,
    MIN(IF(event_name = '{step2}', event_time, NULL)) AS step2_time,
    MIN(IF(event_name = '{step3}', event_time, NULL)) AS step3_time
  FROM funnel_steps
  GROUP BY user_id
)
SELECT
  COUNTIF(step1_time IS NOT NULL) AS step1_users,
  COUNTIF(step2_time > step1_time) AS step2_users,
  COUNTIF(step3_time > step2_time AND step2_time > step1_time) AS step3_users,
  SAFE_DIVIDE(
    COUNTIF(step3_time > step2_time AND step2_time > step1_time),
    COUNTIF(step1_time IS NOT NULL)
  ) AS overall_conversion_rate
FROM user_funnel""",
        },
        'time_series_decomposition': {
            'name': 'Time Series Decomposition',
            'description': 'Decompose time series data into trend, seasonal, and residual components',
            'template': """
WITH time_series_data AS (
  SELECT
    DATE({dateColumn}) AS date,
    SUM({metricColumn}) AS metric_value
  FROM `{dataset}.{table}`
  WHERE DATE({dateColumn}) BETWEEN '{startDate}' AND '{endDate}'
  GROUP BY date
),
trend_component AS (
  SELECT
    date,
    metric_value,
    AVG(metric_value) OVER (ORDER BY date ROWS BETWEEN 6 PRECEDING AND 6 FOLLOWING) AS trend
  FROM time_series_data
),
seasonal_component AS (
  SELECT
    *,
    AVG(metric_value - trend) OVER (PARTITION BY EXTRACT(DAYOFWEEK FROM date)) AS seasonal
  FROM trend_component
)
SELECT
  date,
  metric_value AS original,
  trend,
  seasonal,
  metric_value - trend - seasonal AS residual
FROM seasonal_component
ORDER BY date""",
        },
    },
    'ml_prep': {
        'feature_engineering': {
            'name': 'Feature Engineering for ML',
            'description': 'Prepare features for machine learning models',
            'template': """
SELECT
  {targetId} AS id,
  {targetVariable} AS target,
  {numericalFeatures},
  {categoricalFeatures},
  EXTRACT(YEAR FROM {dateColumn}) AS year,
  EXTRACT(MONTH FROM {dateColumn}) AS month,
  EXTRACT(DAYOFWEEK FROM {dateColumn}) AS dayofweek,
  DATE_DIFF(CURRENT_DATE(), DATE({dateColumn}), DAY) AS days_since
FROM `{dataset}.{table}`
WHERE {filterConditions}""",
        },
        'train_test_split': {
            'name': 'Train/Test/Validation Split',
            'description': 'Split data into training, testing, and validation sets',
            'template': """
CREATE TEMP TABLE data_with_split AS
SELECT
  *,
  CASE
    WHEN MOD(ABS(FARM_FINGERPRINT(CAST({splitKey} AS STRING))), 100) < {trainPercent} THEN 'TRAIN'
    WHEN MOD(ABS(FARM_FINGERPRINT(CAST({splitKey} AS STRING))), 100) < {trainPercent} + {testPercent} THEN 'TEST'
    ELSE 'VALIDATION'
  END AS split_type
FROM `{dataset}.{table}`;

CREATE OR REPLACE TABLE `{dataset}.{table}_train` AS
SELECT * EXCEPT (split_type) FROM data_with_split WHERE split_type = 'TRAIN';

CREATE OR REPLACE TABLE `{dataset}.{table}_test` AS
SELECT * EXCEPT (split_type) FROM data_with_split WHERE split_type = 'TEST';

CREATE OR REPLACE TABLE `{dataset}.{table}_validation` AS
SELECT * EXCEPT (split_type) FROM data_with_split WHERE split_type = 'VALIDATION';

SELECT split_type, COUNT(*) AS record_count
FROM data_with_split
GROUP BY split_type
ORDER BY split_type;""",
        },
    },
}


def get_template(category: str, use_case: str) -> Dict[str, str]:
    if category not in TEMPLATE_LIBRARY:
        raise KeyError(f'Unknown template category: {category}')
    templates = TEMPLATE_LIBRARY[category]
    if use_case not in templates:
        raise KeyError(
            f"Unknown use case '{use_case}' for category '{category}'. "
            f"Available: {', '.join(templates)}"
        )
    return templates[use_case]


def template_values(customization: Dict[str, Any]) -> Dict[str, str]:
    """Flatten customization values into placeholder substitutions.

    Lists become comma separated and also fill ``{<name>List}``; nested
    objects contribute their own keys.
    """
    values: Dict[str, str] = {}
    for key, value in customization.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            joined = ', '.join(str(v) for v in value)
            values[key] = joined
            values[f'{key}List'] = joined
        elif isinstance(value, dict):
            for sub_key, sub_value in value.items():
                if sub_value is not None:
                    values[sub_key] = str(sub_value)
        else:
            values[key] = str(value)
    return values


def substitute_template(template: str, customization: Dict[str, Any]) -> str:
    values = template_values(customization)
    return PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def missing_parameters(query: str) -> List[str]:
    """Placeholders left unresolved, in order of first appearance."""
    seen: List[str] = []
    for name in PLACEHOLDER.findall(query):
        if name not in seen:
            seen.append(name)
    return seen


def qualify_with_project(query: str, project: str) -> str:
    """Prefix ``dataset.table`` references with a project."""
    return TWO_PART_REFERENCE.sub(lambda m: f'`{project}.{m.group(1)}`', query)


def render_template(
    category: str,
    use_case: str,
    customization: Optional[Dict[str, Any]] = None,
    project_context: Optional[str] = None,
) -> Dict[str, Any]:
    template = get_template(category, use_case)
    query = substitute_template(template['template'], customization or {}).strip()
    if project_context:
        query = qualify_with_project(query, project_context)
    return {
        'name': template['name'],
        'description': template['description'],
        'query': query,
        'missingParameters': missing_parameters(query),
        'availableUseCases': list(TEMPLATE_LIBRARY[category]),
    }
