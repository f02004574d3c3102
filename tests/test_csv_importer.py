"""
Tests for the charging event CSV importer
"""

import logging
from datetime import date, datetime, time, timedelta, timezone

import pytest

from calculations.constants import EVENT_CONNECTED, EVENT_DISCONNECTED
from exceptions import CSVImportError, EventValidationError
from utils.csv_importer import ChargingEventCSVImporter as Importer, rejection_code
from utils.error_codes import ErrorCode

HEADER = "original_id,event_type,percentage,date,time,timezone\n"


class TestFilename:
    """Test user id extraction"""

    def test_user_id_from_filename(self):
        assert Importer.user_id_from_filename("battery_charging_data_42.csv") == "42"
        assert Importer.user_id_from_filename("/data/battery_charging_data_007.csv") == "7"

    def test_unrecognized_filename(self):
        with pytest.raises(CSVImportError) as exc_info:
            Importer.user_id_from_filename("events.csv")
        assert exc_info.value.details["filename"] == "events.csv"


class TestDateTimeParsing:
    """Test the date, time and offset formats"""

    @pytest.mark.parametrize("raw,expected", [
        ("2025-10-22", date(2025, 10, 22)),
        ("22-10-2025", date(2025, 10, 22)),
        ("05-10-2025", date(2025, 10, 5)),
        ("10-22-2025", date(2025, 10, 22)),
        ("11/1/2025", date(2025, 11, 1)),
        ("1/31/2025", date(2025, 1, 31)),
    ])
    def test_normalize_date(self, raw, expected):
        assert Importer.normalize_date(raw) == expected

    @pytest.mark.parametrize("raw", ["2025/10/22", "31-02-2025", "yesterday", "13/13/2025"])
    def test_invalid_date(self, raw):
        with pytest.raises(EventValidationError):
            Importer.normalize_date(raw)

    @pytest.mark.parametrize("raw,expected", [
        ("10:00", time(10, 0)),
        ("10:00:30", time(10, 0, 30)),
        ("23:59:59.500000", time(23, 59, 59, 500000)),
    ])
    def test_parse_time(self, raw, expected):
        assert Importer.parse_time(raw) == expected

    def test_invalid_time(self):
        with pytest.raises(EventValidationError):
            Importer.parse_time("25:00")

    @pytest.mark.parametrize("raw,offset", [
        ("+05:30", timedelta(hours=5, minutes=30)),
        ("-0400", timedelta(hours=-4)),
        ("UTC+1", timedelta(hours=1)),
        ("GMT-03:00", timedelta(hours=-3)),
        ("Z", timedelta(0)),
        ("UTC", timedelta(0)),
    ])
    def test_parse_utc_offset(self, raw, offset):
        tz = Importer.parse_utc_offset(raw)
        assert tz.utcoffset(datetime(2024, 1, 1)) == offset

    def test_iana_zone(self):
        tz = Importer.parse_utc_offset("Asia/Kolkata")
        assert tz.utcoffset(datetime(2024, 1, 1)) == timedelta(hours=5, minutes=30)

    @pytest.mark.parametrize("raw", ["+25:00", "Mars/Olympus", "later"])
    def test_invalid_offset(self, raw):
        with pytest.raises(EventValidationError):
            Importer.parse_utc_offset(raw)


class TestParseRow:
    """Test row validation"""

    def test_valid_row_converted_to_utc(self):
        record, raw_tz = Importer.parse_row(
            ["7", "power_connected", "55", "2024-01-08", "15:30:00", "+05:30"], 2, "1", "f.csv"
        )
        assert record.event_type == EVENT_CONNECTED
        assert record.percentage == 55
        assert record.original_row_id == 7
        assert record.event_timestamp == datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc)
        assert record.source_file == "f.csv"
        assert raw_tz == "+05:30"

    def test_float_like_numbers_rounded(self):
        record, _ = Importer.parse_row(["3.0", "Disconnected", "99.6", "2024-01-08", "10:00", "UTC"], 2, "1")
        assert record.original_row_id == 3
        assert record.percentage == 100
        assert record.event_type == EVENT_DISCONNECTED

    @pytest.mark.parametrize("row,field", [
        (["1", "power_connected", "101", "2024-01-08", "10:00", "UTC"], "percentage"),
        (["1", "power_connected", "-1", "2024-01-08", "10:00", "UTC"], "percentage"),
        (["1", "power_connected", "abc", "2024-01-08", "10:00", "UTC"], "percentage"),
        (["1", "power_connected", "nan", "2024-01-08", "10:00", "UTC"], "percentage"),
        (["1", "screen_on", "50", "2024-01-08", "10:00", "UTC"], "event_type"),
        (["1", "power_connected", "50", "", "10:00", "UTC"], "date"),
        (["1", "power_connected", "50", "2024-01-08"], "row"),
    ])
    def test_rejected_rows(self, row, field):
        with pytest.raises(EventValidationError) as exc_info:
            Importer.parse_row(row, 5, "1")
        assert exc_info.value.details["field"] == field
        assert exc_info.value.details["row_number"] == 5


class TestParseCsv:
    """Test whole-file parsing"""

    def test_parse_sample(self, sample_csv):
        parsed, stats = Importer.parse_csv(sample_csv, "1", source_file="battery_charging_data_1.csv")

        assert stats["total_rows"] == 4
        assert stats["parsed_rows"] == 4
        assert stats["rejected_rows"] == 0
        assert [r.original_row_id for r, _ in parsed] == [1, 2, 3, 4]
        assert parsed[2][0].event_timestamp.date() == date(2024, 1, 8)

    def test_bad_rows_rejected_not_coerced(self):
        content = HEADER + (
            "1,power_connected,20,2024-01-08,10:00,UTC\n"
            "2,power_disconnected,120,2024-01-08,11:00,UTC\n"
            "3,power_disconnected,80,not-a-date,11:00,UTC\n"
            "\n"
        )
        parsed, stats = Importer.parse_csv(content, "1")

        assert len(parsed) == 1
        assert stats["total_rows"] == 3
        assert stats["rejected_rows"] == 2
        assert stats["errors"][0].startswith("Row 3:")

    def test_error_list_capped(self):
        content = HEADER + "".join(f"{i},power_connected,500,2024-01-08,10:00,UTC\n" for i in range(25))
        _, stats = Importer.parse_csv(content, "1")
        assert stats["rejected_rows"] == 25
        assert len(stats["errors"]) == 10

    def test_header_only(self):
        parsed, stats = Importer.parse_csv(HEADER, "1")
        assert parsed == []
        assert stats["total_rows"] == 0


class TestRejectionCodes:
    """Test rejected rows are logged with a structured error code"""

    @pytest.mark.parametrize("row,code", [
        (["1", "power_connected", "101", "2024-01-08", "10:00", "UTC"], ErrorCode.E003_OUT_OF_RANGE),
        (["1", "power_connected", "abc", "2024-01-08", "10:00", "UTC"], ErrorCode.E300_CSV_PARSE_FAILED),
        (["1", "screen_on", "50", "2024-01-08", "10:00", "UTC"], ErrorCode.E005_UNKNOWN_EVENT_TYPE),
        (["1", "power_connected", "50", "2024-13-40", "10:00", "UTC"], ErrorCode.E301_INVALID_TIMESTAMP),
        (["1", "power_connected", "50", "2024-01-08", "10:00", "+25:00"], ErrorCode.E302_INVALID_UTC_OFFSET),
        (["1", "power_connected", "50", "2024-01-08"], ErrorCode.E300_CSV_PARSE_FAILED),
    ])
    def test_rejection_code(self, row, code):
        with pytest.raises(EventValidationError) as exc_info:
            Importer.parse_row(row, 5, "1")
        assert rejection_code(exc_info.value) == code

    def test_rejected_rows_logged_with_code(self, caplog):
        content = HEADER + (
            "1,power_connected,150,2024-01-08,10:00,UTC\n"
            "2,plugged,50,2024-01-08,10:05,UTC\n"
            "3,power_connected,50,2024-01-08,10:10,Mars/Olympus\n"
        )
        with caplog.at_level(logging.WARNING, logger="utils.csv_importer"):
            _, stats = Importer.parse_csv(content, "4", source_file="battery_charging_data_4.csv")

        assert stats["rejected_rows"] == 3
        errors = [r.structured_error for r in caplog.records if r.name == "utils.csv_importer"]
        assert [e["code"] for e in errors] == ["E003", "E005", "E302"]
        assert errors[0]["context"]["row_number"] == 2
        assert errors[0]["context"]["user_id"] == "4"
        assert errors[0]["exception_type"] == "EventValidationError"
