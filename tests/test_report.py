import datetime as dt

from openpyxl import load_workbook

from fuelrecon.reports.reconciliation_report import generate_excel, generate_json

from conftest import TENANT, TODAY


def test_generate_json_bundles_reconciliation_and_budget(store, add_txn):
    add_txn(driver_id=None)
    data = generate_json(store, TENANT, today=TODAY)
    assert data["tenant_id"] == TENANT
    assert data["reconciliation"]["summary"]["unmatched_transactions"] == 1
    assert data["budget"]["projected"]["current_month_total"] == 60.0


def test_workbook_has_a_sheet_per_category(tmp_path, store, add_txn):
    add_txn(driver_id=None, cost=45.0)
    add_txn(driver_id=None, cost=45.0)
    add_txn(cost=600.0, litres=400.0, day=dt.date(2024, 9, 3))

    path = generate_excel(store, TENANT, tmp_path / "out" / "recon.xlsx", today=TODAY)
    wb = load_workbook(path)
    assert wb.sheetnames == ["Summary", "Unmatched", "Exceeded", "Unusual", "Suspicious", "Budget Status"]

    assert wb["Summary"]["A1"].value == "FUEL RECONCILIATION"
    unmatched = wb["Unmatched"]
    assert unmatched["A1"].value == "Date"
    assert unmatched.max_row == 3
    exceeded = wb["Exceeded"]
    assert exceeded["A2"].value == "C1"
    assert exceeded["A3"].value == "TOTAL"


def test_empty_categories_say_so(tmp_path, store):
    path = generate_excel(store, TENANT, tmp_path / "recon.xlsx", today=TODAY)
    wb = load_workbook(path)
    assert wb["Suspicious"]["A2"].value == "No issues found"
