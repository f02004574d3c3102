"""
Session and profile rebuild service for Charging Insights.

Batch pipeline run after ingestion, in three sequential phases:
1. Delete every session and profile
2. Reconstruct sessions subject by subject, committing per subject
3. Compute one profile per subject

A subject whose rebuild fails is rolled back, logged and reported; the
remaining subjects are still processed. Any phase can be re-run from
scratch with the same result.
"""

import logging
from typing import List, Optional, Tuple

from calculations.profiles import compute_user_profile
from calculations.records import EventRecord, SessionRecord
from calculations.sessions import reconstruct_sessions
from exceptions import SessionReconstructionError
from models import ChargingEvent, ChargingSession, UserStats
from utils.error_codes import ErrorCode, StructuredError
from utils.wide_events import track_operation

logger = logging.getLogger(__name__)

SubjectKey = Tuple[Optional[str], str]


def load_subject_keys(db) -> List[SubjectKey]:
    """Every (group_id, user_id) that has at least one event."""
    rows = db.query(ChargingEvent.group_id, ChargingEvent.user_id).distinct().all()
    return sorted(((g, u) for g, u in rows), key=lambda key: (key[0] or "", key[1]))


def _subject_filter(model, key: SubjectKey):
    group_id, user_id = key
    group_clause = model.group_id.is_(None) if group_id is None else model.group_id == group_id
    return [model.user_id == user_id, group_clause]


def load_subject_events(db, key: SubjectKey) -> List[EventRecord]:
    """One subject's events in (timestamp, original row id, insertion) order."""
    rows = (
        db.query(ChargingEvent)
        .filter(*_subject_filter(ChargingEvent, key))
        .order_by(ChargingEvent.event_timestamp, ChargingEvent.original_row_id, ChargingEvent.id)
        .all()
    )
    return [row.to_record() for row in rows]


def load_subject_sessions(db, key: SubjectKey) -> List[SessionRecord]:
    rows = (
        db.query(ChargingSession)
        .filter(*_subject_filter(ChargingSession, key))
        .order_by(ChargingSession.connect_time, ChargingSession.id)
        .all()
    )
    return [row.to_record() for row in rows]


def rebuild_subject_sessions(db, key: SubjectKey) -> List[SessionRecord]:
    """
    Regenerate one subject's sessions from its events.

    Existing sessions for the subject are deleted first, so this is safe
    to re-run. The caller owns the commit.
    """
    db.query(ChargingSession).filter(*_subject_filter(ChargingSession, key)).delete(synchronize_session=False)
    sessions = reconstruct_sessions(load_subject_events(db, key))
    db.add_all([ChargingSession.from_record(s) for s in sessions])
    db.flush()
    return sessions


def _record_failure(db, key: SubjectKey, error: Exception, code: ErrorCode, failures: list) -> None:
    db.rollback()
    group_id, user_id = key
    wrapped = SessionReconstructionError(str(error), user_id=user_id, group_id=group_id)
    structured = StructuredError(code, wrapped.message, exception=error, user_id=user_id, group_id=group_id)
    logger.error(str(structured), exc_info=True, extra={"structured_error": structured.to_dict()})
    failures.append({"user_id": user_id, "group_id": group_id, "error": str(error)})


def rebuild_sessions(db) -> dict:
    """
    Phase 1 and 2: clear all sessions and profiles, then rebuild sessions per subject.

    Returns:
        Report with subjects, sessions_created, complete_sessions,
        incomplete_sessions and failed_subjects
    """
    report = {
        "subjects": 0,
        "sessions_created": 0,
        "complete_sessions": 0,
        "incomplete_sessions": 0,
        "failed_subjects": [],
    }

    with track_operation("session_rebuild") as event:
        with event.timer("truncate"):
            db.query(UserStats).delete(synchronize_session=False)
            db.query(ChargingSession).delete(synchronize_session=False)
            db.commit()

        with event.timer("reconstruct"):
            for key in load_subject_keys(db):
                report["subjects"] += 1
                try:
                    sessions = rebuild_subject_sessions(db, key)
                    db.commit()
                except Exception as e:
                    _record_failure(db, key, e, ErrorCode.E401_SESSION_REBUILD_FAILED, report["failed_subjects"])
                    continue

                complete = sum(1 for s in sessions if s.is_complete)
                report["sessions_created"] += len(sessions)
                report["complete_sessions"] += complete
                report["incomplete_sessions"] += len(sessions) - complete

        event.add_business_metric("subjects", report["subjects"])
        event.add_business_metric("sessions_created", report["sessions_created"])
        event.add_business_metric("complete_sessions", report["complete_sessions"])
        event.add_business_metric("failed_subjects", len(report["failed_subjects"]))

    logger.info(
        f"Rebuilt {report['sessions_created']} sessions for {report['subjects']} subjects "
        f"({report['complete_sessions']} complete, {report['incomplete_sessions']} incomplete, "
        f"{len(report['failed_subjects'])} failed)"
    )
    return report


def rebuild_profiles(db, skip: Optional[set] = None) -> dict:
    """
    Phase 3: compute one profile per subject from its events and sessions.

    Subjects in ``skip`` (those whose session rebuild failed) get no profile.

    Returns:
        Report with profiles_created, anomalous_users and failed_subjects
    """
    report = {"profiles_created": 0, "anomalous_users": 0, "failed_subjects": []}

    with track_operation("profile_rebuild") as event:
        db.query(UserStats).delete(synchronize_session=False)
        db.commit()

        for key in load_subject_keys(db):
            if skip and key in skip:
                continue
            try:
                profile = compute_user_profile(load_subject_events(db, key), load_subject_sessions(db, key))
                if profile is None:
                    continue
                db.add(UserStats.from_profile(profile))
                db.commit()
            except Exception as e:
                _record_failure(db, key, e, ErrorCode.E402_PROFILE_COMPUTATION_FAILED, report["failed_subjects"])
                continue

            report["profiles_created"] += 1
            if profile.is_anomalous:
                report["anomalous_users"] += 1

        event.add_business_metric("profiles_created", report["profiles_created"])
        event.add_business_metric("anomalous_users", report["anomalous_users"])
        event.add_business_metric("failed_subjects", len(report["failed_subjects"]))

    logger.info(
        f"Computed {report['profiles_created']} profiles "
        f"({report['anomalous_users']} anomalous, {len(report['failed_subjects'])} failed)"
    )
    return report


def rebuild_all(db) -> dict:
    """Run the full rebuild: clear, reconstruct sessions, then compute profiles."""
    sessions_report = rebuild_sessions(db)
    failed = {(f["group_id"], f["user_id"]) for f in sessions_report["failed_subjects"]}
    profiles_report = rebuild_profiles(db, skip=failed)
    return {
        "subjects": sessions_report["subjects"],
        "sessions_created": sessions_report["sessions_created"],
        "complete_sessions": sessions_report["complete_sessions"],
        "incomplete_sessions": sessions_report["incomplete_sessions"],
        "profiles_created": profiles_report["profiles_created"],
        "anomalous_users": profiles_report["anomalous_users"],
        "failed_subjects": sessions_report["failed_subjects"] + profiles_report["failed_subjects"],
    }
