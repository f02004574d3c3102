"""
Event ingestion service for Charging Insights.

Loads per-user CSV exports into the event table. A load replaces the
whole event store; sessions and profiles are rebuilt afterwards by
the rebuild service.
"""

import csv
import logging
import os
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from config import Config
from exceptions import CSVImportError, DatabaseError
from models import ChargingEvent, ChargingSession, UserStats
from calculations.records import EventRecord
from utils.csv_importer import ChargingEventCSVImporter
from utils.error_codes import ErrorCode, StructuredError
from utils.wide_events import log_import_file, track_operation

logger = logging.getLogger(__name__)


def clear_event_store(db) -> None:
    """Delete every event together with the sessions and profiles derived from it."""
    db.query(UserStats).delete(synchronize_session=False)
    db.query(ChargingSession).delete(synchronize_session=False)
    db.query(ChargingEvent).delete(synchronize_session=False)
    db.commit()


def insert_events(
    db,
    parsed: Iterable[Tuple[EventRecord, str]],
    chunk_size: int = Config.INSERT_CHUNK_SIZE,
) -> int:
    """
    Insert validated events in chunks.

    Args:
        db: Database session
        parsed: (EventRecord, raw timezone text) pairs from the importer
        chunk_size: Rows per flush

    Returns:
        Number of events inserted
    """
    inserted = 0
    batch: List[ChargingEvent] = []
    for record, utc_offset in parsed:
        batch.append(ChargingEvent(
            user_id=record.user_id,
            group_id=record.group_id,
            original_row_id=record.original_row_id,
            event_type=record.event_type,
            percentage=record.percentage,
            event_timestamp=record.event_timestamp,
            utc_offset=utc_offset,
            source_file=record.source_file,
        ))
        if len(batch) >= chunk_size:
            db.add_all(batch)
            db.flush()
            inserted += len(batch)
            batch = []

    if batch:
        db.add_all(batch)
        db.flush()
        inserted += len(batch)

    return inserted


def ingest_file(db, path: str, group_id: Optional[str] = None) -> dict:
    """
    Import one export file and commit its events.

    Returns:
        Stats dict from the importer plus ``user_id``, ``source_file`` and
        ``inserted``

    Raises:
        CSVImportError: If the file name carries no user id or the file is unreadable
    """
    filename = os.path.basename(path)
    user_id = ChargingEventCSVImporter.user_id_from_filename(filename)

    try:
        with open(path, encoding='utf-8-sig', newline='') as handle:
            content = handle.read()
        parsed, stats = ChargingEventCSVImporter.parse_csv(content, user_id, source_file=filename, group_id=group_id)
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise CSVImportError(f"Could not read {filename}: {e}", filename=filename) from e

    stats.update(user_id=user_id, source_file=filename, inserted=0)
    if not parsed:
        logger.warning(f"{filename} (user {user_id}): no valid data rows, skipping")
        return stats

    try:
        stats['inserted'] = insert_events(db, parsed)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise DatabaseError(f"Failed to insert events from {filename}: {e}", {'filename': filename}) from e

    logger.info(
        f"Loaded {filename} (user {user_id}): {stats['inserted']} events, "
        f"{stats['rejected_rows']} rejected"
    )
    return stats


def _import_error_code(filename: str, error: Exception) -> ErrorCode:
    if isinstance(error, DatabaseError):
        return ErrorCode.E201_DB_QUERY_FAILED
    if not ChargingEventCSVImporter.FILENAME_PATTERN.search(filename):
        return ErrorCode.E303_UNRECOGNIZED_FILENAME
    return ErrorCode.E300_CSV_PARSE_FAILED


def ingest_directory(db, data_dir: str = None, group_id: Optional[str] = None) -> dict:
    """
    Replace the event store with the contents of every CSV file in a directory.

    Files that cannot be imported are logged and counted; the remaining
    files are still loaded.

    Returns:
        Report dict with files_found, files_loaded, files_skipped,
        files_failed, events_inserted, rows_rejected and per-file details
    """
    data_dir = data_dir or Config.DATA_DIR
    if not os.path.isdir(data_dir):
        raise CSVImportError(f"Data directory not found: {data_dir}", filename=data_dir)

    files = sorted(f for f in os.listdir(data_dir) if f.endswith('.csv'))
    report = {
        'files_found': len(files),
        'files_loaded': 0,
        'files_skipped': 0,
        'files_failed': 0,
        'events_inserted': 0,
        'rows_rejected': 0,
        'files': [],
    }

    with track_operation("csv_ingest", data_dir=data_dir, group_id=group_id) as event:
        with event.timer("truncate"):
            clear_event_store(db)

        for filename in files:
            try:
                stats = ingest_file(db, os.path.join(data_dir, filename), group_id=group_id)
            except (CSVImportError, DatabaseError) as e:
                report['files_failed'] += 1
                error = StructuredError(_import_error_code(filename, e), str(e), exception=e, source_file=filename)
                logger.error(str(error), extra={"structured_error": error.to_dict()})
                log_import_file(filename, 0, 0, success=False, error=str(e))
                continue

            report['files'].append(stats)
            report['rows_rejected'] += stats['rejected_rows']
            report['events_inserted'] += stats['inserted']
            if stats['inserted']:
                report['files_loaded'] += 1
            else:
                report['files_skipped'] += 1
            log_import_file(filename, stats['total_rows'], stats['rejected_rows'], success=True)

        for key in ('files_found', 'files_loaded', 'files_skipped', 'files_failed', 'events_inserted', 'rows_rejected'):
            event.add_business_metric(key, report[key])

    logger.info(
        f"Ingested {report['events_inserted']} events from {report['files_loaded']} files "
        f"({report['files_skipped']} skipped, {report['files_failed']} failed, "
        f"{report['rows_rejected']} rows rejected)"
    )
    return report
