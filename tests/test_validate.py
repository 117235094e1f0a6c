import datetime as dt

import pytest

from fuelrecon.config import ReconSettings
from fuelrecon.data.normalize import normalize_row
from fuelrecon.data.schemas import FuelCard
from fuelrecon.data.validate import RowValidator

from conftest import OTHER_TENANT, TENANT, TODAY, raw_row


@pytest.fixture
def validator(store):
    return RowValidator(store, today=TODAY)


def check(validator, **overrides):
    return validator.validate(TENANT, normalize_row(raw_row(**overrides)))


class StubDirectory:
    """Directory whose card lookup is scripted by the test."""

    def __init__(self, card=None, error=None):
        self.card = card
        self.error = error

    def card_get(self, tenant_id, card_id):
        if self.error:
            raise self.error
        return self.card

    def driver_exists(self, tenant_id, driver_id):
        return True

    def vehicle_exists(self, tenant_id, vehicle_id):
        return True


class TestRequiredFields:
    def test_valid_row_passes(self, validator):
        result = check(validator)
        assert result.valid
        assert result.issues == []
        assert result.warnings == []

    def test_one_reason_per_missing_field(self, validator):
        result = check(validator, litres=None, station_name="  ")
        assert not result.valid
        assert result.codes == ["missing_field", "missing_field"]
        assert result.reasons == ["Litres is required", "Station name is required"]

    def test_unparseable_required_field_quotes_raw_text(self, validator):
        result = check(validator, litres="forty")
        assert result.codes == ["unparseable_field"]
        assert result.reasons == ["Litres could not be parsed: 'forty'"]

    def test_required_failure_short_circuits_business_checks(self, validator):
        # Unknown card would be reported if business checks ran
        result = check(validator, card_id="NOPE", transaction_date=None)
        assert result.codes == ["missing_field"]

    def test_unparseable_optional_field_is_invalid(self, validator):
        result = check(validator, transaction_time="25:99")
        assert not result.valid
        assert result.codes == ["unparseable_field"]
        assert result.issues[0].field == "transaction_time"


class TestCardChecks:
    def test_unknown_card(self, validator):
        result = check(validator, card_id="C404")
        assert result.codes == ["card_not_found"]

    def test_card_from_another_tenant_is_not_visible(self, validator):
        result = check(validator, card_id="C9")
        assert result.codes == ["card_not_found"]

    def test_tenant_mismatch(self):
        card = FuelCard("C9", OTHER_TENANT, "4321", created_on=dt.date(2024, 1, 1))
        validator = RowValidator(StubDirectory(card=card), today=TODAY)
        result = check(validator, card_id="C9")
        assert result.codes == ["tenant_mismatch"]

    def test_suspended_card(self, validator):
        result = check(validator, card_id="C3")
        assert result.codes == ["card_suspended"]

    def test_assigned_driver_mismatch(self, validator):
        result = check(validator, driver_id="D2")
        assert result.codes == ["driver_mismatch"]

    def test_assigned_vehicle_mismatch(self, validator):
        result = check(validator, vehicle_id="V2")
        assert result.codes == ["vehicle_mismatch"]

    def test_matching_assignment_passes(self, validator):
        assert check(validator, driver_id="D1", vehicle_id="V1").valid

    def test_unknown_driver_and_vehicle(self, validator):
        result = check(validator, card_id="C2", driver_id="D99", vehicle_id="V99")
        assert result.codes == ["driver_not_found", "vehicle_not_found"]

    def test_lookup_timeout_is_a_row_issue(self):
        validator = RowValidator(StubDirectory(error=TimeoutError("directory slow")), today=TODAY)
        result = check(validator)
        assert not result.valid
        assert result.codes == ["lookup_timeout"]
        assert "directory slow" in result.reasons[0]


class TestAmounts:
    def test_cost_mismatch(self, validator):
        result = check(validator, total_cost="61.00")
        assert result.codes == ["cost_mismatch"]

    def test_cost_within_tolerance(self, validator):
        assert check(validator, total_cost="60.01").valid

    def test_tolerance_is_configurable(self, store):
        loose = RowValidator(store, ReconSettings(cost_tolerance=1.0), today=TODAY)
        assert check(loose, total_cost="61.00").valid

    def test_derived_price_skips_cost_check(self, validator):
        result = check(validator, price_per_litre=None, total_cost="61.00")
        assert result.valid

    def test_zero_litres(self, validator):
        result = check(validator, litres="0")
        assert result.codes == ["invalid_litres"]

    def test_negative_price_and_cost(self, validator):
        result = check(validator, price_per_litre="-1.50", total_cost="-60.00")
        assert result.codes == ["invalid_price", "invalid_cost"]

    def test_price_outside_sanity_bounds_is_only_a_warning(self, validator):
        result = check(validator, litres="10", price_per_litre="6.00", total_cost="60.00")
        assert result.valid
        assert [w.code for w in result.warnings] == ["price_out_of_range"]

    def test_litres_over_tank_capacity_is_only_a_warning(self, validator):
        result = check(validator, litres="250", price_per_litre="1.50", total_cost="375.00")
        assert result.valid
        assert [w.code for w in result.warnings] == ["litres_over_capacity"]


class TestDatesAndMileage:
    def test_today_is_allowed(self, validator):
        assert check(validator, transaction_date=TODAY.isoformat()).valid

    def test_future_date(self, validator):
        result = check(validator, transaction_date="2024-09-11")
        assert result.codes == ["future_date"]

    def test_predates_card(self, validator):
        result = check(validator, transaction_date="2023-12-31")
        assert result.codes == ["predates_card"]

    def test_mileage_regression(self, validator):
        result = check(validator, mileage="1000", previous_mileage="1200")
        assert result.codes == ["mileage_regression"]

    def test_mileage_forward_passes(self, validator):
        assert check(validator, mileage="1200", previous_mileage="1000").valid

    def test_independent_checks_all_reported(self, validator):
        result = check(validator, card_id="C3", total_cost="70.00", transaction_date="2024-12-01")
        assert result.codes == ["card_suspended", "cost_mismatch", "future_date"]
