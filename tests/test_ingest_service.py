"""
Tests for CSV ingestion into the event store
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from exceptions import CSVImportError, DatabaseError
from factories import EventFactory, SessionFactory, UserStatsFactory
from models import ChargingEvent, ChargingSession, UserStats
from services.ingest_service import clear_event_store, ingest_directory, ingest_file, insert_events
from utils.csv_importer import ChargingEventCSVImporter


class TestIngestFile:
    """Test single-file import"""

    def test_ingest_file(self, db_session, data_dir):
        stats = ingest_file(db_session, str(data_dir / "battery_charging_data_1.csv"))

        assert stats["user_id"] == "1"
        assert stats["inserted"] == 4
        events = db_session.query(ChargingEvent).order_by(ChargingEvent.original_row_id).all()
        assert [e.original_row_id for e in events] == [1, 2, 3, 4]
        assert events[0].utc_offset == "+00:00"
        assert events[0].source_file == "battery_charging_data_1.csv"

    def test_file_without_valid_rows_skipped(self, db_session, data_dir):
        stats = ingest_file(db_session, str(data_dir / "battery_charging_data_2.csv"))
        assert stats["inserted"] == 0
        assert stats["rejected_rows"] == 1
        assert db_session.query(ChargingEvent).count() == 0

    def test_group_id_stamped(self, db_session, data_dir):
        ingest_file(db_session, str(data_dir / "battery_charging_data_1.csv"), group_id="g1")
        assert {e.group_id for e in db_session.query(ChargingEvent).all()} == {"g1"}

    def test_missing_file(self, db_session, tmp_path):
        with pytest.raises(CSVImportError):
            ingest_file(db_session, str(tmp_path / "battery_charging_data_9.csv"))

    def test_database_failure_wrapped(self, db_session, data_dir):
        with patch("services.ingest_service.insert_events", side_effect=OperationalError("INSERT", {}, Exception("down"))):
            with pytest.raises(DatabaseError):
                ingest_file(db_session, str(data_dir / "battery_charging_data_1.csv"))

    def test_insert_events_in_chunks(self, db_session, sample_csv):
        parsed, _ = ChargingEventCSVImporter.parse_csv(sample_csv, "1")
        assert insert_events(db_session, parsed, chunk_size=3) == 4
        assert db_session.query(ChargingEvent).count() == 4


class TestIngestDirectory:
    """Test whole-directory loads"""

    def test_report(self, db_session, data_dir):
        report = ingest_directory(db_session, str(data_dir))

        assert report["files_found"] == 2
        assert report["files_loaded"] == 1
        assert report["files_skipped"] == 1
        assert report["files_failed"] == 0
        assert report["events_inserted"] == 4
        assert report["rows_rejected"] == 1

    def test_replaces_existing_store(self, db_session, data_dir):
        EventFactory.create(db_session, user_id="99")
        SessionFactory.create(db_session, user_id="99")
        UserStatsFactory.create(db_session, user_id="99")

        ingest_directory(db_session, str(data_dir))

        assert db_session.query(ChargingEvent).filter(ChargingEvent.user_id == "99").count() == 0
        assert db_session.query(ChargingSession).count() == 0
        assert db_session.query(UserStats).count() == 0

    def test_unrecognized_file_counted_as_failed(self, db_session, data_dir):
        (data_dir / "notes.csv").write_text("hello\n")
        report = ingest_directory(db_session, str(data_dir))
        assert report["files_failed"] == 1
        assert report["events_inserted"] == 4

    def test_missing_directory(self, db_session, tmp_path):
        with pytest.raises(CSVImportError):
            ingest_directory(db_session, str(tmp_path / "nope"))

    def test_clear_event_store(self, db_session):
        EventFactory.create(db_session)
        clear_event_store(db_session)
        assert db_session.query(ChargingEvent).count() == 0
