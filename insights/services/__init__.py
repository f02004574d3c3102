"""
Services module for Charging Insights business logic.

Database-backed operations (ingestion, rebuild, analytics, carbon) kept
separate from the Flask route handlers and the pure calculations.
"""

from services.ingest_service import (
    clear_event_store,
    ingest_directory,
    ingest_file,
)
from services.rebuild_service import (
    rebuild_all,
    rebuild_profiles,
    rebuild_sessions,
)

__all__ = [
    # Ingestion
    'clear_event_store',
    'ingest_directory',
    'ingest_file',
    # Rebuild
    'rebuild_all',
    'rebuild_profiles',
    'rebuild_sessions',
]
