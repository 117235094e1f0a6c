import pandas as pd
import pytest

from fuelrecon import cli

from conftest import TENANT

STATEMENT = (
    "Card ID,Date,Litres,Cost,Station\n"
    "C1,2024-09-05,40,60.00,Shell Leeds\n"
    "C404,2024-09-05,40,60.00,Shell Leeds\n"
)


@pytest.fixture
def inbox(tmp_path, store, monkeypatch):
    folder = tmp_path / "inbox"
    store.save(folder)
    monkeypatch.setattr(cli, "INBOX_FOLDER", folder)
    monkeypatch.setattr(cli, "REPORTS_FOLDER", tmp_path / "reports")
    # Leave pytest's log capture in place
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    statement = folder / "allstar.csv"
    statement.write_text(STATEMENT)
    return folder


def test_validate_does_not_save(inbox, capsys):
    assert cli.main(["validate", "--tenant", TENANT]) == 0
    out = capsys.readouterr().out
    assert "1/2 valid" in out
    assert "Fuel card 'C404' not found" in out
    assert len(pd.read_csv(inbox / "transactions.csv")) == 0


def test_import_saves_and_is_idempotent(inbox, capsys):
    assert cli.main(["import", str(inbox / "allstar.csv"), "--tenant", TENANT]) == 0
    assert "1 imported, 1 failed, 0 already imported" in capsys.readouterr().out
    saved = pd.read_csv(inbox / "transactions.csv")
    assert list(saved["provider_label"]) == ["allstar"]

    cli.main(["import", str(inbox / "allstar.csv"), "--tenant", TENANT])
    assert "0 imported, 1 failed, 1 already imported" in capsys.readouterr().out
    assert len(pd.read_csv(inbox / "transactions.csv")) == 1


def test_reconcile_writes_excel(inbox, tmp_path):
    assert cli.main(["reconcile", "--tenant", TENANT, "--excel"]) == 0
    assert len(list((tmp_path / "reports").glob("Fuel_Reconciliation_*.xlsx"))) == 1


def test_structural_error_exit_code(inbox, capsys):
    (inbox / "odd.csv").write_text("foo,bar\n1,2\n")
    assert cli.main(["validate", str(inbox / "odd.csv"), "--tenant", TENANT]) == 2
    assert "no recognised columns" in capsys.readouterr().err


def test_budget_json(inbox, capsys):
    assert cli.main(["budget", "--tenant", TENANT, "--json"]) == 0
    assert '"budget_status"' in capsys.readouterr().out
