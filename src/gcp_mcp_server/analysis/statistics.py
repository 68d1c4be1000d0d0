"""Small in-memory statistics over query results: trends, seasonality, outliers."""

import datetime
import math
from typing import Any, Dict, List, Optional, Sequence

DAY_MS = 86400000


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def pstdev(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    m = mean(values)
    return math.sqrt(sum((v - m) ** 2 for v in values) / len(values))


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def series_values(rows: Sequence[Dict[str, Any]], column: str) -> List[float]:
    return [_number(row.get(column)) for row in rows]


def trend_strength(values: Sequence[float]) -> Dict[str, Any]:
    """Least-squares slope over the index, scaled by the value range."""
    n = len(values)
    if n < 2:
        return {'direction': 'flat', 'strength': 0, 'slope': 0.0}

    sum_x = sum(range(n))
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_x2 = sum(i * i for i in range(n))
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)

    spread = max(values) - min(values)
    if spread == 0:
        return {'direction': 'flat', 'strength': 0, 'slope': 0.0}

    direction = 'increasing' if slope > 0 else 'decreasing' if slope < 0 else 'flat'
    return {
        'direction': direction,
        'strength': min(abs(slope) / spread, 1),
        'slope': slope,
    }


def seasonality_strength(values: Sequence[float]) -> Dict[str, Any]:
    """Strongest normalised autocorrelation for lags 1..min(12, n/2)."""
    if len(values) < 7:
        return {'detected': False, 'strength': 0, 'period': 0}

    m = mean(values)
    variance = sum((v - m) ** 2 for v in values) / len(values)
    if variance == 0:
        return {'detected': False, 'strength': 0, 'period': 0}

    best_lag, best = 0, 0.0
    for lag in range(1, min(12, len(values) // 2) + 1):
        pairs = len(values) - lag
        covariance = sum((values[i] - m) * (values[i - lag] - m) for i in range(lag, len(values))) / pairs
        correlation = abs(covariance / variance)
        if correlation > best:
            best_lag, best = lag, correlation

    return {'detected': best > 0.5, 'strength': round(min(best, 1.0), 4), 'period': best_lag}


def detect_spikes(values: Sequence[float], rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    std = pstdev(values)
    if std == 0:
        return []
    m = mean(values)
    spikes = []
    for index, value in enumerate(values):
        z_score = (value - m) / std
        if abs(z_score) > 2:
            spikes.append({
                'type': 'spike',
                'description': f"{'Positive' if z_score > 0 else 'Negative'} spike detected",
                'strength': min(abs(z_score) / 3, 1),
                'periodicity': None,
                'significance': 'high' if abs(z_score) > 3 else 'medium',
                'timestamp': rows[index].get('time_period'),
            })
    return spikes


def detect_cycles(values: Sequence[float], granularity: str = 'DAY') -> List[Dict[str, Any]]:
    peaks = [i for i in range(1, len(values) - 1) if values[i - 1] < values[i] > values[i + 1]]
    if len(peaks) < 2:
        return []

    intervals = [b - a for a, b in zip(peaks, peaks[1:])]
    average = mean(intervals)
    consistency = 1 - (max(intervals) - min(intervals)) / average
    if consistency <= 0.7:
        return []
    return [{
        'type': 'cycle',
        'description': f'Regular cycle detected with period of {average:g} {granularity.lower()}s',
        'strength': consistency,
        'periodicity': average,
        'significance': 'high' if consistency > 0.9 else 'medium',
    }]


def detect_anomalies(values: Sequence[float], rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flag points that sit far from the trailing moving window.

    A perfectly flat window has no spread, so any departure from it counts
    as a full-strength anomaly.
    """
    window = min(7, len(values) // 4)
    if window < 1:
        return []

    anomalies = []
    for i in range(window, len(values)):
        recent = values[i - window:i]
        window_mean = mean(recent)
        window_std = pstdev(recent)
        deviation = abs(values[i] - window_mean)

        if window_std == 0:
            if deviation == 0:
                continue
            strength, significance = 1.0, 'high'
        elif deviation > 2.5 * window_std:
            strength = min(deviation / (3 * window_std), 1)
            significance = 'high' if deviation > 3 * window_std else 'medium'
        else:
            continue

        anomalies.append({
            'type': 'anomaly',
            'description': 'Unusual value detected compared to recent history',
            'strength': strength,
            'periodicity': None,
            'significance': significance,
            'timestamp': rows[i].get('time_period'),
        })
    return anomalies


def statistical_analysis(rows: Sequence[Dict[str, Any]], column: str, trend_type: str) -> Dict[str, Any]:
    analysis = {'mean': 0, 'standardDeviation': 0, 'trend': None, 'seasonality': None}
    if not rows:
        return analysis

    values = series_values(rows, column)
    analysis['mean'] = mean(values)
    analysis['standardDeviation'] = pstdev(values)
    if trend_type in ('linear', 'all'):
        analysis['trend'] = trend_strength(values)
    if trend_type in ('seasonal', 'all'):
        analysis['seasonality'] = seasonality_strength(values)
    return analysis


def detect_patterns(results: Sequence[Dict[str, Any]], column: str, granularity: str) -> List[Dict[str, Any]]:
    patterns = []
    for result in results:
        rows = result.get('data') or []
        if not rows:
            continue
        values = series_values(rows, column)
        patterns.extend(detect_spikes(values, rows))
        patterns.extend(detect_cycles(values, granularity))
        patterns.extend(detect_anomalies(values, rows))
    return patterns


def trend_insights(analysis: Dict[str, Any], patterns: Sequence[Dict[str, Any]]) -> List[Dict[str, str]]:
    insights = []
    trend = analysis.get('trend')
    if trend:
        if trend['direction'] == 'flat':
            insights.append({
                'category': 'trend',
                'finding': 'Data shows no significant trend',
                'impact': 'neutral',
                'recommendation': 'Current levels are stable; monitor for changes',
            })
        else:
            increasing = trend['direction'] == 'increasing'
            insights.append({
                'category': 'trend',
                'finding': f"Data shows {'strong' if trend['strength'] > 0.7 else 'moderate'} {trend['direction']} trend",
                'impact': 'positive' if increasing else 'negative',
                'recommendation': (
                    'Consider capacity planning for continued growth' if increasing
                    else 'Investigate causes of decline and implement corrective measures'
                ),
            })

    seasonality = analysis.get('seasonality') or {}
    if seasonality.get('detected'):
        insights.append({
            'category': 'seasonality',
            'finding': f"Seasonal pattern detected with period of {seasonality['period']}",
            'impact': 'neutral',
            'recommendation': 'Adjust forecasting models to account for seasonal variations',
        })

    spikes = [p for p in patterns if p['type'] == 'spike']
    if spikes:
        insights.append({
            'category': 'volatility',
            'finding': f'{len(spikes)} significant spikes detected in the data',
            'impact': 'warning',
            'recommendation': 'Implement alerting for unusual activity and investigate root causes',
        })

    anomalies = [p for p in patterns if p['type'] == 'anomaly']
    if anomalies:
        insights.append({
            'category': 'anomalies',
            'finding': f'{len(anomalies)} anomalous data points identified',
            'impact': 'warning',
            'recommendation': 'Review anomalous periods for data quality issues or special events',
        })
    return insights


def recommend_visualizations(trend_type: str, patterns: Sequence[Dict[str, Any]], value_columns: Sequence[str]) -> List[Dict[str, Any]]:
    charts = []
    if trend_type in ('linear', 'exponential', 'all'):
        charts.append({
            'type': 'line_chart',
            'title': 'Trend Analysis',
            'configuration': {'xAxis': 'time_period', 'yAxis': list(value_columns), 'trendLine': True},
        })
    if trend_type in ('seasonal', 'all'):
        charts.append({
            'type': 'seasonal_plot',
            'title': 'Seasonal Decomposition',
            'configuration': {'components': ['trend', 'seasonal', 'residual'], 'cycleHighlight': True},
        })
    if trend_type == 'decomposition':
        charts.append({
            'type': 'multi_panel_chart',
            'title': 'Time Series Decomposition',
            'configuration': {'panels': ['original', 'trend', 'seasonal', 'irregular']},
        })
    if any(p['type'] == 'spike' for p in patterns):
        charts.append({
            'type': 'control_chart',
            'title': 'Statistical Process Control',
            'configuration': {'centerLine': 'mean', 'controlLimits': [2, 3], 'highlightOutOfControl': True},
        })
    if any(p['type'] == 'cycle' for p in patterns):
        charts.append({
            'type': 'periodogram',
            'title': 'Frequency Analysis',
            'configuration': {'showDominantFrequencies': True, 'annotatePeriods': True},
        })
    return charts


def confidence_level(analysis: Dict[str, Any]) -> float:
    confidence = 0.5
    std, m = analysis.get('standardDeviation') or 0, analysis.get('mean') or 0
    if std > 0 and m > 0:
        confidence += (1 - min(std / m, 1)) * 0.2
    if (analysis.get('trend') or {}).get('strength', 0) > 0.7:
        confidence += 0.2
    seasonality = analysis.get('seasonality') or {}
    if seasonality.get('detected') and seasonality.get('strength', 0) > 0.6:
        confidence += 0.1
    return round(min(confidence, 0.95), 4)


def forecasting_opportunities(patterns: Sequence[Dict[str, Any]], analysis: Dict[str, Any]) -> List[Dict[str, str]]:
    opportunities = []
    if (analysis.get('trend') or {}).get('strength', 0) > 0.6:
        opportunities.append({
            'method': 'linear_regression',
            'suitability': 'high',
            'description': 'Strong linear trend suitable for regression-based forecasting',
            'forecastHorizon': 'medium',
        })
    seasonality = analysis.get('seasonality') or {}
    if seasonality.get('detected'):
        opportunities.append({
            'method': 'seasonal_arima',
            'suitability': 'high',
            'description': f"Seasonal pattern with period {seasonality['period']} suitable for SARIMA",
            'forecastHorizon': 'long',
        })
    if any(p['type'] == 'cycle' for p in patterns):
        opportunities.append({
            'method': 'fourier_transform',
            'suitability': 'medium',
            'description': 'Cyclical patterns detected, suitable for frequency-based forecasting',
            'forecastHorizon': 'medium',
        })
    if not opportunities and analysis.get('standardDeviation', 0) < (analysis.get('mean') or 0) * 0.3:
        opportunities.append({
            'method': 'moving_average',
            'suitability': 'medium',
            'description': 'Stable data suitable for simple moving average forecasting',
            'forecastHorizon': 'short',
        })
    return opportunities


# Temporal profile of sampled rows

def to_epoch_ms(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value.timestamp() * 1000
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc).timestamp() * 1000
    if isinstance(value, (int, float)):
        return float(value)
    try:
        parsed = datetime.datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    return to_epoch_ms(parsed)


def _iso(ms: float) -> str:
    return datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc).isoformat()


def detect_time_gaps(timestamps: Sequence[float]) -> List[Dict[str, Any]]:
    gaps = []
    for previous, current in zip(timestamps, timestamps[1:]):
        if current - previous > DAY_MS:
            gaps.append({'start': _iso(previous), 'end': _iso(current), 'duration': current - previous})
    return gaps


def temporal_density(timestamps: Sequence[float]) -> float:
    """1.0 for perfectly even spacing, falling toward 0 as intervals vary."""
    if len(timestamps) < 2:
        return 0.0
    expected = (timestamps[-1] - timestamps[0]) / (len(timestamps) - 1)
    if expected == 0:
        return 0.0
    intervals = [b - a for a, b in zip(timestamps, timestamps[1:])]
    variance = sum((i - expected) ** 2 for i in intervals) / len(intervals)
    return 1 / (1 + math.sqrt(variance) / expected)


def temporal_distribution(rows: Sequence[Dict[str, Any]], time_column: str) -> Optional[Dict[str, Any]]:
    timestamps = sorted(ms for ms in (to_epoch_ms(row.get(time_column)) for row in rows) if ms is not None)
    if not timestamps:
        return None
    return {
        'min': _iso(timestamps[0]),
        'max': _iso(timestamps[-1]),
        'range': timestamps[-1] - timestamps[0],
        'gaps': detect_time_gaps(timestamps),
        'density': temporal_density(timestamps),
    }


def _hashable(value: Any) -> Any:
    if isinstance(value, (list, dict)):
        return repr(value)
    return value


def cardinality(rows: Sequence[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    if not rows:
        return {}
    stats = {}
    for field in rows[0]:
        unique = len({_hashable(row.get(field)) for row in rows})
        stats[field] = {'unique': unique, 'total': len(rows), 'ratio': unique / len(rows)}
    return stats


def partitioning_effectiveness(num_rows: int, clustered: bool, require_partition_filter: bool) -> float:
    score = 0.0
    if num_rows > 1000000:
        score += 0.3
    if clustered:
        score += 0.2
    if require_partition_filter:
        score += 0.3
    return min(round(score, 2), 1.0)


def partitioning_impact(recommendations: Sequence[Dict[str, Any]], distribution: Dict[str, Any]) -> Dict[str, float]:
    speedup = cost = 0.0
    temporal = distribution.get('temporalDistribution')
    for rec in recommendations:
        if rec['strategy'] == 'time_partitioning' and temporal:
            range_days = temporal['range'] / DAY_MS
            speedup += min(0.7, range_days / 365)
            cost += 0.6
        elif rec['strategy'] == 'range_partitioning':
            speedup += 0.5
            cost += 0.4
        elif rec['strategy'] == 'clustering':
            speedup += 0.3
            cost += 0.2
    return {
        'querySpeedup': round(speedup, 4),
        'costReduction': round(cost, 4),
        'storageOverhead': round(len(recommendations) * 0.02, 4),
    }
