import datetime as dt

import pandas as pd
import pytest

from fuelrecon.data.importer import validate_batch
from fuelrecon.data.loader import discover_imports, frame_to_rows, load_rows, read_upload
from fuelrecon.data.schemas import FuelCard
from fuelrecon.data.store import DataStore
from fuelrecon.errors import ConfigurationError, StructuralError

from conftest import TENANT, TODAY

STATEMENT = (
    "Card ID,Date,Time,Litres,Price/L,Cost,Station\n"
    "C1,05/09/2024,08:15,40,1.50,60.00,Shell Leeds\n"
    ",,,,,,\n"
    "C1,06/09/2024,17:40,\"45,5\",1.50,68.25,BP York\n"
)


class TestReading:
    def test_csv_rows_keep_raw_text(self, tmp_path):
        path = tmp_path / "allstar.csv"
        path.write_text(STATEMENT)
        rows = load_rows(path)
        assert len(rows) == 2
        assert rows[1]["Litres"] == "45,5"
        assert rows[0]["Card ID"] == "C1"

    def test_csv_statement_validates(self, tmp_path, store):
        path = tmp_path / "allstar.csv"
        path.write_text(STATEMENT)
        result = validate_batch(store, TENANT, load_rows(path), today=TODAY)
        assert result["valid"] == 2

    def test_xlsx_upload(self, tmp_path):
        path = tmp_path / "keyfuels.xlsx"
        pd.DataFrame([{"Card": "C1", "Date": "2024-09-05", "Volume": "40", "Amount": "60", "Site": "Esso"}]).to_excel(
            path, index=False,
        )
        rows = frame_to_rows(read_upload(path.read_bytes(), path.name), path.name)
        assert rows == [{"Card": "C1", "Date": "2024-09-05", "Volume": "40", "Amount": "60", "Site": "Esso"}]

    def test_unrecognised_header(self, tmp_path):
        path = tmp_path / "odd.csv"
        path.write_text("foo,bar\n1,2\n")
        with pytest.raises(StructuralError, match="no recognised columns"):
            load_rows(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        with pytest.raises(StructuralError):
            load_rows(path)

    def test_unsupported_type(self, tmp_path):
        path = tmp_path / "statement.txt"
        path.write_text(STATEMENT)
        with pytest.raises(StructuralError, match="Unsupported file type"):
            load_rows(path)

    def test_empty_upload(self):
        with pytest.raises(StructuralError):
            read_upload(b"", "statement.csv")

    def test_discovery_skips_snapshots(self, tmp_path):
        (tmp_path / "transactions.csv").write_text("x\n")
        (tmp_path / "notes.txt").write_text("x\n")
        (tmp_path / "may").mkdir()
        (tmp_path / "may" / "allstar.csv").write_text(STATEMENT)
        assert [p.name for p in discover_imports(tmp_path)] == ["allstar.csv"]


class TestStore:
    def test_save_and_reload(self, tmp_path, store, add_txn):
        add_txn(transaction_time=dt.time(8, 15), notes="receipt lost")
        inbox = tmp_path / "snapshot"
        store.save(inbox)

        fresh = DataStore().load(inbox)
        assert fresh.is_loaded
        assert [c.card_id for c in fresh.cards_for(TENANT)] == ["C1", "C2", "C3"]
        assert fresh.card_get(TENANT, "C3").status.value == "suspended"
        assert fresh.card_get(TENANT, "C1").monthly_limit == 500.0
        assert fresh.driver_name(TENANT, "D1") == "Alice Smith"
        txn = fresh.transaction_query(TENANT)[0]
        assert txn.transaction_time == dt.time(8, 15)
        assert txn.notes == "receipt lost"
        assert fresh.transaction_find_by_dedup_key(TENANT, txn.dedup_key) == txn.transaction_id
        assert fresh.next_transaction_id() == "FT-000002"

    def test_register_card_rules(self, store):
        with pytest.raises(ConfigurationError) as exc:
            store.register_card(FuelCard("C5", TENANT, "12345"))
        assert exc.value.code == "invalid_last_four"
        with pytest.raises(ConfigurationError) as exc:
            store.register_card(FuelCard("C5", TENANT, "1234"))
        assert exc.value.code == "duplicate_card"
        with pytest.raises(ConfigurationError) as exc:
            store.register_card(FuelCard("C5", TENANT, "2222", driver_id="D99"))
        assert exc.value.code == "driver_not_found"
        with pytest.raises(ConfigurationError) as exc:
            store.register_card(FuelCard("C5", TENANT, "2222", provider="acme-oil"))
        assert exc.value.code == "invalid_provider"

    def test_update_card(self, store):
        card = store.update_card(TENANT, "C3", status="active", monthly_limit=300.0)
        assert card.is_active
        assert store.card_get(TENANT, "C3").monthly_limit == 300.0
        with pytest.raises(ConfigurationError) as exc:
            store.update_card(TENANT, "C404", status="active")
        assert exc.value.code == "card_not_found"

    def test_notes_are_the_only_mutable_field(self, store, add_txn):
        txn_id = add_txn()
        assert store.update_notes(TENANT, txn_id, "  checked  ").notes == "checked"
        with pytest.raises(ConfigurationError):
            store.update_notes(TENANT, "FT-999999", "x")
