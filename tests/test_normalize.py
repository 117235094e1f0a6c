import datetime as dt

import pytest

from fuelrecon.data.normalize import (
    build_header_map,
    canonical_header,
    clean_id,
    normalize_row,
    parse_date,
    parse_decimal,
    parse_time,
)


class TestHeaders:
    @pytest.mark.parametrize("header", ["Card ID", "card_id", "CardID", "card-id", "  CARD ID "])
    def test_card_id_spellings_fold_together(self, header):
        assert canonical_header(header) == "cardid"

    def test_header_map_recognises_aliases(self):
        mapping = build_header_map(["Card ID", "Date", "Volume", "Cost", "Station", "Loyalty Points"])
        assert mapping == {
            "Card ID": "card_id",
            "Date": "transaction_date",
            "Volume": "litres",
            "Cost": "total_cost",
            "Station": "station_name",
        }

    def test_custom_alias_table(self):
        mapping = build_header_map(["Karte"], aliases={"card_id": ["Karte"]})
        assert mapping == {"Karte": "card_id"}


class TestParseDecimal:
    @pytest.mark.parametrize("raw,expected", [
        ("1,234.56", 1234.56),
        ("1.234,56", 1234.56),
        ("45,50", 45.5),
        ("1,234", 1234.0),
        ("£45.00", 45.0),
        (" 60.00 ", 60.0),
        ("(12.00)", -12.0),
        ("-3.5", -3.5),
        (42, 42.0),
        (1.25, 1.25),
    ])
    def test_parses(self, raw, expected):
        assert parse_decimal(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", ["", "   ", None, "abc", "12abc", float("nan"), True])
    def test_unparseable_is_none(self, raw):
        assert parse_decimal(raw) is None


class TestParseDates:
    @pytest.mark.parametrize("raw", ["2024-09-05", "05/09/2024", "05-09-2024", "5 Sep 2024", "20240905"])
    def test_date_formats(self, raw):
        assert parse_date(raw) == dt.date(2024, 9, 5)

    def test_date_objects_pass_through(self):
        assert parse_date(dt.date(2024, 9, 5)) == dt.date(2024, 9, 5)
        assert parse_date(dt.datetime(2024, 9, 5, 8, 15)) == dt.date(2024, 9, 5)

    def test_garbage_date_is_none(self):
        assert parse_date("not a date") is None

    @pytest.mark.parametrize("raw,expected", [
        ("14:30", dt.time(14, 30)),
        ("14:30:05", dt.time(14, 30, 5)),
        ("2:30 PM", dt.time(14, 30)),
        ("1430", dt.time(14, 30)),
    ])
    def test_time_formats(self, raw, expected):
        assert parse_time(raw) == expected

    def test_bad_time_is_none(self):
        assert parse_time("25:99") is None


def test_clean_id_drops_spreadsheet_float_suffix():
    assert clean_id(12.0) == "12"
    assert clean_id("0012.0") == "0012"
    assert clean_id(" C1 ") == "C1"
    assert clean_id("") is None


class TestNormalizeRow:
    def test_aliased_row(self):
        row = normalize_row({
            "Card ID": "C1", "Date": "05/09/2024", "Time": "08:15", "Litres": "40,5",
            "Price/L": "£1.479", "Cost": "59.90", "Station": "  Shell   Leeds ", "Driver": "D1",
        })
        assert row.card_id == "C1"
        assert row.transaction_date == dt.date(2024, 9, 5)
        assert row.transaction_time == dt.time(8, 15)
        assert row.litres == pytest.approx(40.5)
        assert row.price_per_litre == pytest.approx(1.479)
        assert row.station_name == "Shell Leeds"
        assert row.driver_id == "D1"
        assert row.missing_required() == []

    def test_price_derived_when_absent(self):
        row = normalize_row({"card_id": "C1", "transaction_date": "2024-09-05", "litres": "40",
                             "total_cost": "60", "station_name": "BP"})
        assert row.price_per_litre == pytest.approx(1.5)
        assert row.price_derived is True

    def test_garbage_price_is_not_replaced(self):
        row = normalize_row({"card_id": "C1", "transaction_date": "2024-09-05", "litres": "40",
                             "total_cost": "60", "price_per_litre": "n/a", "station_name": "BP"})
        assert row.price_per_litre is None
        assert row.price_derived is False
        assert row.raw_text("price_per_litre") == "n/a"

    def test_time_embedded_in_date_cell(self):
        row = normalize_row({"Date": "2024-09-05 14:30"})
        assert row.transaction_date == dt.date(2024, 9, 5)
        assert row.transaction_time == dt.time(14, 30)

    def test_unknown_headers_kept_as_extra(self):
        row = normalize_row({"card_id": "C1", "Loyalty Points": "12"})
        assert row.extra == {"Loyalty Points": "12"}

    def test_first_non_blank_alias_wins(self):
        row = normalize_row({"Card": "", "card_id": "C7"})
        assert row.card_id == "C7"

    def test_missing_required_lists_fields_in_order(self):
        row = normalize_row({"card_id": "C1", "total_cost": "abc"})
        assert row.missing_required() == ["transaction_date", "litres", "total_cost", "station_name"]
        assert row.dedup_key() is None

    def test_dedup_key_folds_station_spacing_and_case(self):
        base = {"card_id": "C1", "transaction_date": "2024-09-05", "litres": "40", "total_cost": "60.00"}
        a = normalize_row({**base, "station_name": "Shell  Leeds"})
        b = normalize_row({**base, "station_name": "shell leeds", "total_cost": "60"})
        assert a.dedup_key() == b.dedup_key()
