"""CSV importer for per-user battery charging event exports."""

import csv
import io
import logging
import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calculations.constants import MAX_PERCENTAGE, MIN_PERCENTAGE
from calculations.records import EventRecord
from calculations.sessions import normalize_event_type
from exceptions import CSVImportError, EventValidationError
from utils.error_codes import ErrorCode, StructuredError

logger = logging.getLogger(__name__)

# Rejected-row messages kept per file
MAX_REPORTED_ERRORS = 10

_FIELD_ERROR_CODES = {
    'event_type': ErrorCode.E005_UNKNOWN_EVENT_TYPE,
    'date': ErrorCode.E301_INVALID_TIMESTAMP,
    'time': ErrorCode.E301_INVALID_TIMESTAMP,
    'timezone': ErrorCode.E302_INVALID_UTC_OFFSET,
}


def rejection_code(error: EventValidationError) -> ErrorCode:
    """Error code for a rejected row, keyed on the offending column."""
    # Range violations carry the parsed int, unparseable text carries the raw string
    if error.field == 'percentage' and isinstance(error.value, int):
        return ErrorCode.E003_OUT_OF_RANGE
    return _FIELD_ERROR_CODES.get(error.field, ErrorCode.E300_CSV_PARSE_FAILED)


class ChargingEventCSVImporter:
    """
    Parse charging event CSV files into validated event records.

    Expected layout, one file per user named ``battery_charging_data_<id>.csv``:
    - original_id: Row id in the source export (may be written as "12.0")
    - event_type: power_connected / power_disconnected
    - percentage: Battery level 0-100 (may be written as "55.0")
    - date: YYYY-MM-DD, DD-MM-YYYY or M/D/YYYY
    - time: HH:MM or HH:MM:SS[.ffffff]
    - timezone: UTC offset such as +05:30, or an IANA zone name

    Rows that fail validation are rejected and reported, never coerced.
    """

    COLUMNS = ['original_id', 'event_type', 'percentage', 'date', 'time', 'timezone']

    FILENAME_PATTERN = re.compile(r'battery_charging_data_(\d+)\.csv$')
    ISO_DATE = re.compile(r'^(\d{4})-(\d{2})-(\d{2})$')
    DASHED_DATE = re.compile(r'^(\d{2})-(\d{2})-(\d{4})$')
    SLASHED_DATE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
    OFFSET = re.compile(r'^(?:UTC|GMT)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$', re.IGNORECASE)

    @classmethod
    def user_id_from_filename(cls, filename: str) -> str:
        """
        Extract the user id from an export file name.

        Raises:
            CSVImportError: If the name does not follow the export pattern

        Examples:
            >>> ChargingEventCSVImporter.user_id_from_filename('battery_charging_data_42.csv')
            '42'
        """
        match = cls.FILENAME_PATTERN.search(filename)
        if not match:
            raise CSVImportError(f"Cannot extract user_id from filename: {filename}", filename=filename)
        return str(int(match.group(1)))

    @classmethod
    def normalize_date(cls, value: str) -> date:
        """
        Parse the three date layouts found in the exports.

        Dashed dates are day-first unless the second field exceeds 12, in
        which case they are read month-first. Slashed dates are US month-first.

        Examples:
            >>> ChargingEventCSVImporter.normalize_date('22-10-2025')
            datetime.date(2025, 10, 22)
            >>> ChargingEventCSVImporter.normalize_date('10-22-2025')
            datetime.date(2025, 10, 22)
            >>> ChargingEventCSVImporter.normalize_date('11/1/2025')
            datetime.date(2025, 11, 1)
        """
        value = value.strip()
        try:
            match = cls.ISO_DATE.match(value)
            if match:
                year, month, day = (int(part) for part in match.groups())
                return date(year, month, day)

            match = cls.DASHED_DATE.match(value)
            if match:
                first, second, year = (int(part) for part in match.groups())
                if first > 12 or second <= 12:
                    return date(year, second, first)
                return date(year, first, second)

            match = cls.SLASHED_DATE.match(value)
            if match:
                month, day, year = (int(part) for part in match.groups())
                return date(year, month, day)
        except ValueError as e:
            raise EventValidationError(f"Invalid date {value!r}: {e}", field='date', value=value) from e

        raise EventValidationError(f"Unsupported date format: {value!r}", field='date', value=value)

    @classmethod
    def parse_time(cls, value: str) -> time:
        """Parse HH:MM, HH:MM:SS or HH:MM:SS.ffffff."""
        value = value.strip()
        for fmt in ('%H:%M:%S.%f', '%H:%M:%S', '%H:%M'):
            try:
                return datetime.strptime(value, fmt).time()
            except ValueError:
                continue
        raise EventValidationError(f"Unsupported time format: {value!r}", field='time', value=value)

    @classmethod
    def parse_utc_offset(cls, value: str):
        """
        Resolve the timezone column to a tzinfo.

        Examples:
            >>> ChargingEventCSVImporter.parse_utc_offset('+05:30')
            datetime.timezone(datetime.timedelta(seconds=19800))
        """
        value = value.strip()
        if value.upper() in ('Z', 'UTC', 'GMT'):
            return timezone.utc

        match = cls.OFFSET.match(value)
        if match:
            sign, hours, minutes = match.groups()
            delta = timedelta(hours=int(hours), minutes=int(minutes or 0))
            if delta >= timedelta(hours=24):
                raise EventValidationError(f"UTC offset out of range: {value!r}", field='timezone', value=value)
            return timezone(-delta if sign == '-' else delta)

        try:
            return ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise EventValidationError(f"Unsupported timezone: {value!r}", field='timezone', value=value) from e

    @classmethod
    def _parse_whole_number(cls, value: str, field: str) -> int:
        """Parse "12" or "12.0" as 12; anything non-finite is rejected."""
        try:
            number = float(value.strip())
        except ValueError as e:
            raise EventValidationError(f"{field} is not a number: {value!r}", field=field, value=value) from e
        if not math.isfinite(number):
            raise EventValidationError(f"{field} is not finite: {value!r}", field=field, value=value)
        return int(round(number))

    @classmethod
    def parse_row(
        cls,
        row: List[str],
        row_number: int,
        user_id: str,
        source_file: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> Tuple[EventRecord, str]:
        """
        Validate one CSV row.

        Returns:
            Tuple of (EventRecord with a UTC timestamp, the raw timezone text)

        Raises:
            EventValidationError: If any field is missing or invalid
        """
        if len(row) < len(cls.COLUMNS):
            raise EventValidationError(
                f"Expected {len(cls.COLUMNS)} fields, got {len(row)}", field='row', row_number=row_number
            )

        raw = dict(zip(cls.COLUMNS, (cell.strip() for cell in row)))
        for column in cls.COLUMNS:
            if not raw[column]:
                raise EventValidationError(f"Missing {column}", field=column, row_number=row_number)

        try:
            original_id = cls._parse_whole_number(raw['original_id'], 'original_id')
            event_type = normalize_event_type(raw['event_type'])
            percentage = cls._parse_whole_number(raw['percentage'], 'percentage')
            if not MIN_PERCENTAGE <= percentage <= MAX_PERCENTAGE:
                raise EventValidationError(
                    f"percentage {percentage} outside [{MIN_PERCENTAGE}, {MAX_PERCENTAGE}]",
                    field='percentage',
                    value=percentage,
                )
            local_stamp = datetime.combine(
                cls.normalize_date(raw['date']),
                cls.parse_time(raw['time']),
                tzinfo=cls.parse_utc_offset(raw['timezone']),
            )
        except EventValidationError as e:
            e.row_number = row_number
            e.details['row_number'] = row_number
            raise

        record = EventRecord(
            user_id=user_id,
            group_id=group_id,
            event_type=event_type,
            percentage=percentage,
            event_timestamp=local_stamp.astimezone(timezone.utc),
            original_row_id=original_id,
            source_file=source_file,
        )
        return record, raw['timezone']

    @classmethod
    def parse_csv(
        cls,
        csv_content: str,
        user_id: str,
        source_file: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> Tuple[List[Tuple[EventRecord, str]], Dict[str, Any]]:
        """
        Parse CSV content into validated events.

        Args:
            csv_content: Raw file content including the header row
            user_id: Owner of every event in the file
            source_file: File name recorded on each event
            group_id: Group for the multi-tenant dataset

        Returns:
            Tuple of (list of (EventRecord, raw timezone) pairs, stats dict)
        """
        parsed = []
        stats = {
            'total_rows': 0,
            'parsed_rows': 0,
            'rejected_rows': 0,
            'errors': [],
        }

        reader = csv.reader(io.StringIO(csv_content))
        next(reader, None)  # header

        for row_number, row in enumerate(reader, start=2):  # Header is row 1
            if not any(cell.strip() for cell in row):
                continue
            stats['total_rows'] += 1

            try:
                parsed.append(cls.parse_row(row, row_number, user_id, source_file, group_id))
                stats['parsed_rows'] += 1
            except EventValidationError as e:
                stats['rejected_rows'] += 1
                error = StructuredError(
                    rejection_code(e),
                    f"Rejected row {row_number} in {source_file or 'csv'}: {e.message}",
                    exception=e,
                    user_id=user_id,
                    row_number=row_number,
                    field=e.field,
                )
                logger.warning(str(error), extra={"structured_error": error.to_dict()})
                if len(stats['errors']) < MAX_REPORTED_ERRORS:
                    stats['errors'].append(f"Row {row_number}: {e.message}")

        return parsed, stats
