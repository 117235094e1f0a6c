"""Shared fixtures: a seeded in-memory store and a fixed reference date."""
import datetime as dt

import pytest

from fuelrecon.data.schemas import FuelCard, FuelTransaction
from fuelrecon.data.store import DataStore

# September has 30 days; the 10th makes projections easy to check by hand
TODAY = dt.date(2024, 9, 10)
TENANT = "acme"
OTHER_TENANT = "globex"


def raw_row(**overrides):
    """A valid provider row for card C1, as it would come out of a CSV."""
    row = {
        "card_id": "C1",
        "transaction_date": "2024-09-05",
        "litres": "40",
        "price_per_litre": "1.50",
        "total_cost": "60.00",
        "station_name": "Shell Leeds",
    }
    row.update(overrides)
    return {k: v for k, v in row.items() if v is not None}


@pytest.fixture
def store(tmp_path):
    s = DataStore().load(tmp_path / "inbox")

    s.add_driver(TENANT, "D1", "Alice Smith")
    s.add_driver(TENANT, "D2", "Bob Jones")
    s.add_vehicle(TENANT, "V1", "AB12 CDE")
    s.add_vehicle(TENANT, "V2", "XY34 ZZZ")

    created = dt.date(2024, 1, 1)
    s.register_card(FuelCard("C1", TENANT, "1234", "allstar", driver_id="D1", vehicle_id="V1",
                             monthly_limit=500.0, created_on=created))
    s.register_card(FuelCard("C2", TENANT, "5678", "shell", created_on=created))
    s.register_card(FuelCard("C3", TENANT, "9999", "bp", monthly_limit=200.0,
                             status="suspended", created_on=created))
    s.register_card(FuelCard("C9", OTHER_TENANT, "4321", "esso", created_on=created))
    return s


@pytest.fixture
def add_txn(store):
    """Insert a transaction straight into the store, bypassing validation."""
    def _add(card_id="C1", day=TODAY, cost=60.0, litres=40.0, price=None, tenant=TENANT,
             station="Shell Leeds", driver_id="D1", vehicle_id="V1", **kwargs):
        txn = FuelTransaction(
            transaction_id="",
            tenant_id=tenant,
            card_id=card_id,
            transaction_date=day,
            station_name=station,
            litres=litres,
            price_per_litre=price if price is not None else round(cost / litres, 3),
            total_cost=cost,
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            **kwargs,
        )
        return store.transaction_insert(tenant, txn)
    return _add
