"""
Row Validator — required-field and business-rule checks for one normalised row.

Lookups go through a Directory (driver_exists / vehicle_exists / card_get), so
the validator never touches storage itself. Required-field failures
short-circuit; business checks are each reported independently so one row gets
one complete list of reasons.
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from fuelrecon import errors
from fuelrecon.config import DEFAULT_SETTINGS, REQUIRED_FIELDS, ReconSettings
from fuelrecon.data.normalize import NormalizedRow
from fuelrecon.data.schemas import FuelCard

logger = logging.getLogger(__name__)

_OPTIONAL_PARSED = ["transaction_time", "price_per_litre", "mileage", "previous_mileage"]

_LABELS = {
    "card_id": "Card ID",
    "transaction_date": "Transaction date",
    "transaction_time": "Transaction time",
    "litres": "Litres",
    "total_cost": "Total cost",
    "price_per_litre": "Price per litre",
    "station_name": "Station name",
    "mileage": "Mileage",
    "previous_mileage": "Previous mileage",
}


class Directory(Protocol):
    def driver_exists(self, tenant_id: str, driver_id: str) -> bool: ...
    def vehicle_exists(self, tenant_id: str, vehicle_id: str) -> bool: ...
    def card_get(self, tenant_id: str, card_id: str) -> Optional[FuelCard]: ...


@dataclass(frozen=True)
class Issue:
    code: str
    field: Optional[str]
    message: str

    def to_dict(self) -> dict:
        return {"code": self.code, "field": self.field, "message": self.message}


@dataclass
class ValidationResult:
    valid: bool
    issues: list[Issue] = field(default_factory=list)
    warnings: list[Issue] = field(default_factory=list)

    @property
    def reasons(self) -> list[str]:
        return [i.message for i in self.issues]

    @property
    def codes(self) -> list[str]:
        return [i.code for i in self.issues]


class _LookupTimedOut(Exception):
    pass


class RowValidator:
    """Validates NormalizedRows for one tenant against a Directory."""

    def __init__(
        self,
        directory: Directory,
        settings: ReconSettings = DEFAULT_SETTINGS,
        today: dt.date | None = None,
    ) -> None:
        self.directory = directory
        self.settings = settings
        self.today = today

    def validate(self, tenant_id: str, row: NormalizedRow) -> ValidationResult:
        issues = self._required(row)
        if issues:
            return ValidationResult(valid=False, issues=issues)

        issues = self._unparseable_optional(row)
        warnings: list[Issue] = []

        card = self._check_card(tenant_id, row, issues)
        if card is not None:
            self._check_assignment(card, row, issues)
        self._check_references(tenant_id, row, issues)
        self._check_amounts(row, issues, warnings)
        self._check_dates(card, row, issues)
        self._check_mileage(row, issues)

        return ValidationResult(valid=not issues, issues=issues, warnings=warnings)

    # ------------------------------------------------------------------
    # Required fields
    # ------------------------------------------------------------------

    def _required(self, row: NormalizedRow) -> list[Issue]:
        issues = []
        for name in REQUIRED_FIELDS:
            if getattr(row, name) is not None:
                continue
            raw = row.raw_text(name)
            if raw is None:
                issues.append(Issue(errors.MISSING_FIELD, name, f"{_LABELS[name]} is required"))
            else:
                issues.append(Issue(
                    errors.UNPARSEABLE_FIELD, name,
                    f"{_LABELS[name]} could not be parsed: '{raw}'",
                ))
        return issues

    def _unparseable_optional(self, row: NormalizedRow) -> list[Issue]:
        issues = []
        for name in _OPTIONAL_PARSED:
            raw = row.raw_text(name)
            if raw is not None and getattr(row, name) is None:
                issues.append(Issue(
                    errors.UNPARSEABLE_FIELD, name,
                    f"{_LABELS[name]} could not be parsed: '{raw}'",
                ))
        return issues

    # ------------------------------------------------------------------
    # Business rules
    # ------------------------------------------------------------------

    def _lookup(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except TimeoutError as exc:
            logger.warning("Directory lookup %s%r timed out: %s", getattr(fn, "__name__", fn), args, exc)
            raise _LookupTimedOut(str(exc) or "lookup timed out") from exc

    def _timeout_issue(self, name: str, exc: _LookupTimedOut) -> Issue:
        return Issue(errors.LOOKUP_TIMEOUT, name, f"{_LABELS.get(name, name)} lookup timed out: {exc}")

    def _check_card(self, tenant_id: str, row: NormalizedRow, issues: list[Issue]) -> Optional[FuelCard]:
        try:
            card = self._lookup(self.directory.card_get, tenant_id, row.card_id)
        except _LookupTimedOut as exc:
            issues.append(self._timeout_issue("card_id", exc))
            return None

        if card is None:
            issues.append(Issue(errors.CARD_NOT_FOUND, "card_id", f"Fuel card '{row.card_id}' not found"))
            return None
        if card.tenant_id != tenant_id:
            issues.append(Issue(
                errors.TENANT_MISMATCH, "card_id",
                f"Fuel card '{row.card_id}' belongs to a different tenant",
            ))
            return None
        if not card.is_active:
            issues.append(Issue(errors.CARD_SUSPENDED, "card_id", f"Fuel card '{row.card_id}' is suspended"))
        return card

    def _check_assignment(self, card: FuelCard, row: NormalizedRow, issues: list[Issue]) -> None:
        if card.driver_id and row.driver_id and row.driver_id != card.driver_id:
            issues.append(Issue(
                errors.DRIVER_MISMATCH, "driver_id",
                f"Driver '{row.driver_id}' does not match card's assigned driver '{card.driver_id}'",
            ))
        if card.vehicle_id and row.vehicle_id and row.vehicle_id != card.vehicle_id:
            issues.append(Issue(
                errors.VEHICLE_MISMATCH, "vehicle_id",
                f"Vehicle '{row.vehicle_id}' does not match card's assigned vehicle '{card.vehicle_id}'",
            ))

    def _check_references(self, tenant_id: str, row: NormalizedRow, issues: list[Issue]) -> None:
        checks = [
            ("driver_id", row.driver_id, self.directory.driver_exists, errors.DRIVER_NOT_FOUND, "Driver"),
            ("vehicle_id", row.vehicle_id, self.directory.vehicle_exists, errors.VEHICLE_NOT_FOUND, "Vehicle"),
        ]
        for name, value, exists, code, label in checks:
            if not value:
                continue
            try:
                found = self._lookup(exists, tenant_id, value)
            except _LookupTimedOut as exc:
                issues.append(self._timeout_issue(name, exc))
                continue
            if not found:
                issues.append(Issue(code, name, f"{label} '{value}' not found"))

    def _check_amounts(self, row: NormalizedRow, issues: list[Issue], warnings: list[Issue]) -> None:
        s = self.settings
        if row.litres <= 0:
            issues.append(Issue(errors.INVALID_LITRES, "litres", f"Litres must be greater than 0 (got {row.litres:g})"))
        price = row.price_per_litre
        if price is not None and price <= 0:
            issues.append(Issue(errors.INVALID_PRICE, "price_per_litre", f"Price per litre must be greater than 0 (got {price:g})"))
        if row.total_cost <= 0:
            issues.append(Issue(errors.INVALID_COST, "total_cost", f"Total cost must be greater than 0 (got {row.total_cost:g})"))

        if (
            not row.price_derived
            and price is not None and price > 0
            and row.litres > 0 and row.total_cost > 0
        ):
            expected = row.litres * price
            if abs(row.total_cost - expected) > s.cost_tolerance + 1e-9:
                issues.append(Issue(
                    errors.COST_MISMATCH, "total_cost",
                    f"Total cost {row.total_cost:.2f} does not match litres × price ({expected:.2f})",
                ))

        if price is not None and price > 0 and not (s.price_floor <= price <= s.price_ceiling):
            warnings.append(Issue(
                errors.PRICE_OUT_OF_RANGE, "price_per_litre",
                f"Price per litre £{price:.3f} is outside £{s.price_floor:.2f}–£{s.price_ceiling:.2f}",
            ))
        if row.litres > s.max_tank_litres:
            warnings.append(Issue(
                errors.LITRES_OVER_CAPACITY, "litres",
                f"{row.litres:g} litres exceeds typical tank capacity ({s.max_tank_litres:g})",
            ))

    def _check_dates(self, card: Optional[FuelCard], row: NormalizedRow, issues: list[Issue]) -> None:
        today = self.today or dt.date.today()
        if row.transaction_date > today:
            issues.append(Issue(
                errors.FUTURE_DATE, "transaction_date",
                f"Transaction date {row.transaction_date.isoformat()} is in the future",
            ))
        if card is not None and row.transaction_date < card.created_on:
            issues.append(Issue(
                errors.PREDATES_CARD, "transaction_date",
                f"Transaction date {row.transaction_date.isoformat()} is before card was issued "
                f"({card.created_on.isoformat()})",
            ))

    def _check_mileage(self, row: NormalizedRow, issues: list[Issue]) -> None:
        if row.mileage is not None and row.previous_mileage is not None and row.mileage < row.previous_mileage:
            issues.append(Issue(
                errors.MILEAGE_REGRESSION, "mileage",
                f"Mileage {row.mileage:g} is below previous mileage {row.previous_mileage:g}",
            ))
