import datetime

import pytest

from gcp_mcp_server.analysis import statistics


def rows_for(values):
    return [{"time_period": f"2024-01-{i + 1:02d}", "value": v} for i, v in enumerate(values)]


def test_trend_strength_increasing():
    trend = statistics.trend_strength([1, 2, 3, 4])
    assert trend["direction"] == "increasing"
    assert trend["slope"] == pytest.approx(1.0)
    assert trend["strength"] == pytest.approx(1 / 3)


def test_flat_series_has_no_trend():
    assert statistics.trend_strength([5, 5, 5]) == {"direction": "flat", "strength": 0, "slope": 0.0}
    assert statistics.trend_strength([5])["direction"] == "flat"


def test_alternating_series_is_seasonal():
    season = statistics.seasonality_strength([1, 0] * 6)
    assert season["detected"]
    assert season["period"] == 1
    assert season["strength"] == pytest.approx(1.0)


def test_short_or_constant_series_is_not_seasonal():
    assert not statistics.seasonality_strength([1, 2, 3])["detected"]
    assert not statistics.seasonality_strength([4] * 10)["detected"]


def test_spike_detection():
    values = [10] * 19 + [100]
    spikes = statistics.detect_spikes(values, rows_for(values))
    assert len(spikes) == 1
    assert spikes[0]["significance"] == "high"
    assert spikes[0]["timestamp"] == "2024-01-20"


def test_constant_series_has_no_spikes():
    values = [3] * 10
    assert statistics.detect_spikes(values, rows_for(values)) == []


def test_departure_from_flat_window_is_full_strength_anomaly():
    values = [5] * 8 + [9]
    anomalies = statistics.detect_anomalies(values, rows_for(values))
    assert len(anomalies) == 1
    assert anomalies[0]["strength"] == 1.0
    assert anomalies[0]["timestamp"] == "2024-01-09"


def test_regular_peaks_form_a_cycle():
    cycles = statistics.detect_cycles([0, 1, 0, 1, 0, 1, 0], "DAY")
    assert len(cycles) == 1
    assert cycles[0]["periodicity"] == 2
    assert cycles[0]["significance"] == "high"


def test_statistical_analysis_and_insights():
    rows = rows_for([10, 20, 30, 40, 50, 60, 70, 80])
    analysis = statistics.statistical_analysis(rows, "value", "all")
    assert analysis["mean"] == 45
    assert analysis["trend"]["direction"] == "increasing"
    assert analysis["seasonality"] is not None

    insights = statistics.trend_insights(analysis, [])
    assert insights[0]["category"] == "trend"
    assert insights[0]["impact"] == "positive"


def test_flat_trend_insight():
    insights = statistics.trend_insights({"trend": {"direction": "flat", "strength": 0}}, [])
    assert insights[0]["finding"] == "Data shows no significant trend"


def test_confidence_level_is_capped():
    analysis = {
        "mean": 100,
        "standardDeviation": 1,
        "trend": {"strength": 0.9},
        "seasonality": {"detected": True, "strength": 0.9},
    }
    assert statistics.confidence_level(analysis) == 0.95
    assert statistics.confidence_level({}) == 0.5


def test_forecasting_falls_back_to_moving_average():
    opportunities = statistics.forecasting_opportunities([], {"mean": 100, "standardDeviation": 5})
    assert [o["method"] for o in opportunities] == ["moving_average"]


def test_visualizations_follow_patterns():
    charts = statistics.recommend_visualizations("linear", [{"type": "spike"}], ["sum_amount"])
    assert [c["type"] for c in charts] == ["line_chart", "control_chart"]


def test_temporal_distribution_reports_gaps():
    rows = [
        {"ts": datetime.date(2024, 1, 1)},
        {"ts": "2024-01-02T00:00:00Z"},
        {"ts": datetime.datetime(2024, 1, 5, tzinfo=datetime.timezone.utc)},
        {"ts": None},
    ]
    distribution = statistics.temporal_distribution(rows, "ts")
    assert distribution["min"].startswith("2024-01-01")
    assert distribution["max"].startswith("2024-01-05")
    assert distribution["range"] == 4 * statistics.DAY_MS
    assert len(distribution["gaps"]) == 1
    assert statistics.temporal_distribution([{"ts": None}], "ts") is None


def test_cardinality_handles_nested_values():
    stats = statistics.cardinality([{"a": 1, "tags": ["x"]}, {"a": 1, "tags": ["y"]}])
    assert stats["a"] == {"unique": 1, "total": 2, "ratio": 0.5}
    assert stats["tags"]["unique"] == 2


def test_partitioning_effectiveness_and_impact():
    assert statistics.partitioning_effectiveness(2000000, True, True) == 0.8
    assert statistics.partitioning_effectiveness(10, False, False) == 0.0

    impact = statistics.partitioning_impact(
        [{"strategy": "range_partitioning"}, {"strategy": "clustering"}], {"temporalDistribution": None}
    )
    assert impact == {"querySpeedup": 0.8, "costReduction": 0.6, "storageOverhead": 0.04}
