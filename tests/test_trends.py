import datetime as dt

import pytest

from fuelrecon.analytics.trends import (
    WEEKDAYS, efficiency_samples, fuel_statistics, get_analytics, usage_patterns,
)
from fuelrecon.config import ReconSettings
from fuelrecon.data.schemas import DateRange

from conftest import TENANT, TODAY


@pytest.fixture
def fleet(store, add_txn):
    """Three odometer readings for V1 and a spread of stations and drivers."""
    add_txn(day=dt.date(2024, 8, 1), cost=60.0, litres=40.0, mileage=1000.0, station="Shell Leeds")
    add_txn(day=dt.date(2024, 8, 15), cost=60.0, litres=40.0, mileage=1400.0, station="Shell Leeds")
    add_txn(day=dt.date(2024, 9, 5), cost=75.0, litres=50.0, mileage=1800.0, station="Shell Leeds")
    for d in (2, 3, 4):
        add_txn(card_id="C2", day=dt.date(2024, 9, d), cost=57.0, litres=40.0,
                driver_id="D2", vehicle_id="V2", station="Tesco York")
    return store


def test_efficiency_from_consecutive_readings(fleet):
    samples = efficiency_samples(fleet.frame(TENANT))
    assert list(samples["efficiency"]) == [10.0, 8.0]
    assert list(samples["distance"]) == [400.0, 400.0]


def test_row_previous_mileage_takes_priority(store, add_txn):
    add_txn(day=dt.date(2024, 9, 1), litres=40.0, mileage=2000.0, previous_mileage=1600.0)
    samples = efficiency_samples(store.frame(TENANT))
    assert list(samples["efficiency"]) == [10.0]


def test_single_reading_has_no_sample(store, add_txn):
    add_txn(mileage=1000.0)
    assert efficiency_samples(store.frame(TENANT)).empty


def test_analytics_window_and_trend(fleet):
    result = get_analytics(fleet, TENANT, months=3, today=TODAY)
    assert result["period"] == {"start_date": "2024-07-01", "end_date": "2024-09-10", "months": 3}
    trend = result["trend"]
    assert [m["month"] for m in trend] == ["2024-07", "2024-08", "2024-09"]
    july, aug, sept = trend
    assert july["transactions"] == 0
    assert july["avg_price_per_litre"] is None
    assert aug["transactions"] == 2
    assert aug["total_cost"] == 120.0
    assert aug["avg_efficiency"] == 10.0
    assert sept["transactions"] == 4
    assert sept["avg_efficiency"] == 8.0


def test_driver_rankings(fleet):
    rankings = get_analytics(fleet, TENANT, months=3, today=TODAY)["driver_rankings"]
    assert [r["driver_id"] for r in rankings] == ["D1", "D2"]
    assert rankings[0]["driver_name"] == "Alice Smith"
    assert rankings[0]["total_spent"] == 195.0
    assert rankings[0]["avg_cost_per_transaction"] == 65.0


def test_vehicle_efficiency(fleet):
    vehicles = get_analytics(fleet, TENANT, months=3, today=TODAY)["vehicle_efficiency"]
    assert len(vehicles) == 1
    v1 = vehicles[0]
    assert v1["vehicle_label"] == "AB12 CDE"
    assert v1["samples"] == 2
    assert v1["avg_efficiency"] == 9.0
    assert v1["best_efficiency"] == 10.0


def test_station_comparison(fleet):
    stations = get_analytics(fleet, TENANT, months=3, today=TODAY)["station_comparison"]
    assert [s["station_name"] for s in stations] == ["Tesco York", "Shell Leeds"]
    assert stations[0]["avg_price_per_litre"] == 1.425

    strict = ReconSettings(station_min_transactions=4)
    assert get_analytics(fleet, TENANT, months=3, settings=strict, today=TODAY)["station_comparison"] == []


def test_usage_patterns_cover_every_weekday(fleet):
    patterns = get_analytics(fleet, TENANT, months=3, today=TODAY)["usage_patterns"]
    assert [p["day_name"] for p in patterns] == WEEKDAYS
    assert sum(p["transaction_count"] for p in patterns) == 6
    # 2024-09-02 was a Monday
    assert patterns[0]["transaction_count"] == 1


def test_usage_patterns_empty_frame(store):
    patterns = usage_patterns(store.frame(TENANT, DateRange()))
    assert len(patterns) == 7
    assert all(p["transaction_count"] == 0 and p["total_cost"] == 0.0 for p in patterns)


def test_fuel_statistics(fleet):
    stats = fuel_statistics(fleet, TENANT, today=TODAY)
    assert stats["total_cards"] == 3
    assert stats["active_cards"] == 2
    assert stats["suspended_cards"] == 1
    assert stats["transactions_this_month"] == 4
    assert stats["total_cost_this_month"] == 246.0
    assert stats["avg_efficiency"] == 8.0
