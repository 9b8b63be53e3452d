"""
Work-day time tracking tests.

Verifies:
- One active session per user; ending it closes an open break
- Worked time excludes breaks
- Settings: defaults, validation, disabled breaks, minimum session length
- Other users' sessions and reports need timeTracking.viewAll
- Daily summaries group completed sessions by day
"""

from datetime import datetime, timedelta

import pytest

from prodflow.models import AttendanceSession, AuditLog
from prodflow.services import timekeeping_service, permission_service
from prodflow.services.permission_service import PermissionDeniedError
from prodflow.services.timekeeping_service import TimekeepingError
from prodflow.time_utils import utcnow
from prodflow.validation import ValidationError, NotFoundError


def _backdate(db_session, session, *, hours=0, minutes=0):
    session.start_time = session.start_time - timedelta(hours=hours, minutes=minutes)
    for brk in session.breaks:
        brk.start_time = brk.start_time - timedelta(hours=hours, minutes=minutes)
    db_session.commit()


def _completed_session(db_session, user, *, start, work_hours=1, break_minutes=0):
    session = AttendanceSession(
        user_id=user.id,
        start_time=start,
        end_time=start + timedelta(hours=work_hours, minutes=break_minutes),
        status="COMPLETED",
        total_duration=work_hours * 3600,
        total_break_duration=break_minutes * 60,
    )
    db_session.add(session)
    db_session.commit()
    return session


# =============================================================================
# SESSIONS: lifecycle
# =============================================================================


class TestSessionLifecycle:

    def test_start_and_end(self, db_session, worker_user):
        session = timekeeping_service.start_session(user_id=worker_user.id, notes="  Early shift ")
        assert session.status == "ACTIVE"
        assert session.notes == "Early shift"

        _backdate(db_session, session, hours=2)
        ended = timekeeping_service.end_session(user_id=worker_user.id)

        assert ended.status == "COMPLETED"
        assert ended.end_time is not None
        assert 7190 <= ended.total_duration <= 7210
        assert ended.notes == "Early shift"
        assert db_session.query(AuditLog).filter_by(module="timeTracking", action="end_session").count() == 1

    def test_second_active_session_rejected(self, db_session, worker_user):
        timekeeping_service.start_session(user_id=worker_user.id)
        with pytest.raises(TimekeepingError):
            timekeeping_service.start_session(user_id=worker_user.id)

    def test_end_without_session(self, db_session, worker_user):
        with pytest.raises(TimekeepingError):
            timekeeping_service.end_session(user_id=worker_user.id)

    def test_end_notes_replace_stored_notes(self, db_session, worker_user):
        timekeeping_service.start_session(user_id=worker_user.id, notes="start")
        ended = timekeeping_service.end_session(user_id=worker_user.id, notes="done")
        assert ended.notes == "done"

    def test_current_session_reports_status(self, db_session, worker_user):
        assert timekeeping_service.get_current_session(worker_user.id)["status"] == "OFF"

        timekeeping_service.start_session(user_id=worker_user.id)
        assert timekeeping_service.get_current_session(worker_user.id)["status"] == "WORKING"

        timekeeping_service.start_break(user_id=worker_user.id)
        current = timekeeping_service.get_current_session(worker_user.id)
        assert current["status"] == "ON_BREAK"
        assert current["session"]["break_start_time"] is not None


# =============================================================================
# BREAKS: durations are subtracted from worked time
# =============================================================================


class TestBreaks:

    def test_break_is_subtracted(self, db_session, worker_user):
        session = timekeeping_service.start_session(user_id=worker_user.id)
        brk = timekeeping_service.start_break(user_id=worker_user.id)
        brk.start_time = brk.start_time - timedelta(minutes=30)
        session.start_time = session.start_time - timedelta(hours=2)
        db_session.commit()

        timekeeping_service.end_break(user_id=worker_user.id)
        ended = timekeeping_service.end_session(user_id=worker_user.id)

        assert 1790 <= ended.total_break_duration <= 1810
        assert 5390 <= ended.total_duration <= 5410

    def test_end_session_closes_open_break(self, db_session, worker_user):
        timekeeping_service.start_session(user_id=worker_user.id)
        timekeeping_service.start_break(user_id=worker_user.id)

        ended = timekeeping_service.end_session(user_id=worker_user.id)

        assert all(b.status == "COMPLETED" and b.end_time is not None for b in ended.breaks)
        assert ended.to_dict()["on_break"] is False

    def test_second_break_rejected(self, db_session, worker_user):
        timekeeping_service.start_session(user_id=worker_user.id)
        timekeeping_service.start_break(user_id=worker_user.id)
        with pytest.raises(TimekeepingError):
            timekeeping_service.start_break(user_id=worker_user.id)

    def test_end_break_without_break(self, db_session, worker_user):
        timekeeping_service.start_session(user_id=worker_user.id)
        with pytest.raises(TimekeepingError):
            timekeeping_service.end_break(user_id=worker_user.id)

    def test_break_needs_session(self, db_session, worker_user):
        with pytest.raises(TimekeepingError):
            timekeeping_service.start_break(user_id=worker_user.id)


# =============================================================================
# SETTINGS
# =============================================================================


class TestSettings:

    def test_defaults_created_on_first_read(self, db_session):
        settings = timekeeping_service.get_settings()
        assert settings.enable_break_button is True
        assert settings.min_session_duration == 0
        assert settings.max_session_duration == 720
        assert settings.max_break_duration == 60

    def test_update_accepts_camel_case(self, db_session, manager_user):
        settings = timekeeping_service.update_settings(
            {"maxBreakDuration": 45, "enableBreakButton": False}, user_id=manager_user.id
        )
        assert settings.max_break_duration == 45
        assert settings.enable_break_button is False

    @pytest.mark.parametrize("payload", [
        {"minSessionDuration": 800, "maxSessionDuration": 600},
        {"maxBreakDuration": -5},
        {"maxBreakDuration": "soon"},
        {"enableBreakButton": "yes"},
        {},
    ])
    def test_invalid_settings_rejected(self, db_session, manager_user, payload):
        with pytest.raises(ValidationError):
            timekeeping_service.update_settings(payload, user_id=manager_user.id)

    def test_disabled_breaks(self, db_session, manager_user, worker_user):
        timekeeping_service.update_settings({"enableBreakButton": False}, user_id=manager_user.id)
        timekeeping_service.start_session(user_id=worker_user.id)
        with pytest.raises(TimekeepingError):
            timekeeping_service.start_break(user_id=worker_user.id)

    def test_minimum_session_length(self, db_session, manager_user, worker_user):
        timekeeping_service.update_settings({"minSessionDuration": 30}, user_id=manager_user.id)
        session = timekeeping_service.start_session(user_id=worker_user.id)

        with pytest.raises(TimekeepingError):
            timekeeping_service.end_session(user_id=worker_user.id)

        _backdate(db_session, session, minutes=31)
        assert timekeeping_service.end_session(user_id=worker_user.id).status == "COMPLETED"


# =============================================================================
# QUERIES: own vs. other users' data
# =============================================================================


class TestQueries:

    def test_user_sessions_with_stats(self, db_session, worker_user):
        day = utcnow().replace(hour=8, minute=0, second=0, microsecond=0) - timedelta(days=3)
        _completed_session(db_session, worker_user, start=day, work_hours=2, break_minutes=15)
        _completed_session(db_session, worker_user, start=day + timedelta(days=1), work_hours=1)
        perms = permission_service.snapshot_for_user(worker_user)

        result = timekeeping_service.list_user_sessions(worker_user.id, user_id=worker_user.id, permissions=perms)

        assert result["stats"] == {"total_work_duration": 3 * 3600, "total_break_duration": 900, "total_sessions": 2}
        assert result["sessions"][0]["start_time"] > result["sessions"][1]["start_time"]
        assert result["pagination"]["total"] == 2

    def test_date_filter(self, db_session, worker_user):
        _completed_session(db_session, worker_user, start=utcnow().replace(year=2026, month=3, day=10))
        _completed_session(db_session, worker_user, start=utcnow().replace(year=2026, month=4, day=10))
        perms = permission_service.snapshot_for_user(worker_user)

        result = timekeeping_service.list_user_sessions(
            worker_user.id, user_id=worker_user.id, permissions=perms, date_from="2026-03-01", date_to="2026-03-31",
        )
        assert result["stats"]["total_sessions"] == 1

    def test_other_user_needs_view_all(self, db_session, worker_user, manager_user):
        worker_perms = permission_service.snapshot_for_user(worker_user)
        with pytest.raises(PermissionDeniedError):
            timekeeping_service.list_user_sessions(manager_user.id, user_id=worker_user.id, permissions=worker_perms)

        manager_perms = permission_service.snapshot_for_user(manager_user)
        result = timekeeping_service.list_user_sessions(
            worker_user.id, user_id=manager_user.id, permissions=manager_perms,
        )
        assert result["sessions"] == []

    def test_daily_summaries(self, db_session, worker_user):
        _completed_session(db_session, worker_user, start=datetime(2026, 5, 4, 7), work_hours=4, break_minutes=30)
        _completed_session(db_session, worker_user, start=datetime(2026, 5, 4, 13), work_hours=3)
        _completed_session(db_session, worker_user, start=datetime(2026, 5, 5, 7), work_hours=8)
        _completed_session(db_session, worker_user, start=datetime(2026, 6, 1, 7), work_hours=8)
        perms = permission_service.snapshot_for_user(worker_user)

        days = timekeeping_service.get_daily_summaries(year=2026, month=5, user_id=worker_user.id, permissions=perms)

        assert days == [
            {"date": "2026-05-04", "work_duration": 7 * 3600, "break_duration": 1800, "session_count": 2},
            {"date": "2026-05-05", "work_duration": 8 * 3600, "break_duration": 0, "session_count": 1},
        ]

    def test_daily_summaries_reject_bad_month(self, db_session, worker_user):
        perms = permission_service.snapshot_for_user(worker_user)
        with pytest.raises(ValidationError):
            timekeeping_service.get_daily_summaries(year=2026, month=13, user_id=worker_user.id, permissions=perms)

    def test_active_sessions_search_and_flags(self, db_session, worker_user, warehouse_user, manager_user):
        late = timekeeping_service.start_session(user_id=worker_user.id)
        _backdate(db_session, late, hours=13)
        timekeeping_service.start_session(user_id=warehouse_user.id)
        perms = permission_service.snapshot_for_user(manager_user)

        everyone = timekeeping_service.get_all_active_sessions(permissions=perms)
        assert {s["user_id"] for s in everyone} == {worker_user.id, warehouse_user.id}

        found = timekeeping_service.get_all_active_sessions(permissions=perms, search="WORK")
        assert [s["user_id"] for s in found] == [worker_user.id]
        assert found[0]["over_max_duration"] is True

        worker_perms = permission_service.snapshot_for_user(worker_user)
        with pytest.raises(PermissionDeniedError):
            timekeeping_service.get_all_active_sessions(permissions=worker_perms)

    def test_update_notes_permissions(self, db_session, worker_user, warehouse_user, manager_user):
        session = timekeeping_service.start_session(user_id=worker_user.id)

        own = timekeeping_service.update_session_notes(
            session.id, "forklift training", user_id=worker_user.id,
            permissions=permission_service.snapshot_for_user(worker_user),
        )
        assert own.notes == "forklift training"

        with pytest.raises(PermissionDeniedError):
            timekeeping_service.update_session_notes(
                session.id, "edited", user_id=warehouse_user.id,
                permissions=permission_service.snapshot_for_user(warehouse_user),
            )

        edited = timekeeping_service.update_session_notes(
            session.id, "edited", user_id=manager_user.id,
            permissions=permission_service.snapshot_for_user(manager_user),
        )
        assert edited.notes == "edited"

        with pytest.raises(NotFoundError):
            timekeeping_service.update_session_notes(
                9999, "x", user_id=worker_user.id, permissions=permission_service.snapshot_for_user(worker_user),
            )


# =============================================================================
# REPORT
# =============================================================================


class TestReport:

    def test_report_per_user(self, db_session, worker_user, warehouse_user, admin_user):
        _completed_session(db_session, worker_user, start=datetime(2026, 5, 4, 7), work_hours=8, break_minutes=30)
        _completed_session(db_session, worker_user, start=datetime(2026, 5, 6, 7), work_hours=6)
        _completed_session(db_session, warehouse_user, start=datetime(2026, 5, 20, 7), work_hours=4)
        perms = permission_service.snapshot_for_user(admin_user)

        report = timekeeping_service.get_report(
            user_ids=[worker_user.id, warehouse_user.id],
            start_date="2026-05-01",
            end_date="2026-05-10",
            user_id=admin_user.id,
            permissions=perms,
        )

        worker, warehouse = report
        assert worker["name"] == "Worker"
        assert worker["total_work_duration"] == 14 * 3600
        assert worker["total_break_duration"] == 1800
        assert [d["date"] for d in worker["daily_data"]] == ["2026-05-04", "2026-05-06"]
        assert warehouse["daily_data"] == []

    def test_report_on_others_needs_view_all(self, db_session, worker_user, warehouse_user):
        perms = permission_service.snapshot_for_user(worker_user)
        with pytest.raises(PermissionDeniedError):
            timekeeping_service.get_report(
                user_ids=[warehouse_user.id], start_date="2026-05-01", end_date="2026-05-31",
                user_id=worker_user.id, permissions=perms,
            )

    @pytest.mark.parametrize("user_ids,start,end", [
        ([], "2026-05-01", "2026-05-31"),
        (["1"], "2026-05-01", "2026-05-31"),
        (None, "2026-05-01", "2026-05-31"),
    ])
    def test_report_rejects_bad_input(self, db_session, admin_user, user_ids, start, end):
        perms = permission_service.snapshot_for_user(admin_user)
        with pytest.raises(ValidationError):
            timekeeping_service.get_report(
                user_ids=user_ids, start_date=start, end_date=end, user_id=admin_user.id, permissions=perms,
            )

    def test_report_rejects_reversed_range(self, db_session, admin_user):
        perms = permission_service.snapshot_for_user(admin_user)
        with pytest.raises(ValidationError):
            timekeeping_service.get_report(
                user_ids=[admin_user.id], start_date="2026-06-01", end_date="2026-05-01",
                user_id=admin_user.id, permissions=perms,
            )


# =============================================================================
# ROUTES
# =============================================================================


class TestTimeTrackingRoutes:

    def test_worker_day(self, client, worker_headers):
        started = client.post('/api/time-tracking/sessions/start', json={"notes": "Line 2"}, headers=worker_headers)
        assert started.status_code == 201

        assert client.post('/api/time-tracking/breaks/start', headers=worker_headers).status_code == 201
        assert client.post('/api/time-tracking/breaks/end', headers=worker_headers).status_code == 200

        current = client.get('/api/time-tracking/sessions/current', headers=worker_headers)
        assert current.json["status"] == "WORKING"

        ended = client.post('/api/time-tracking/sessions/end', json={}, headers=worker_headers)
        assert ended.status_code == 200
        assert ended.json["session"]["status"] == "COMPLETED"

        again = client.post('/api/time-tracking/sessions/end', json={}, headers=worker_headers)
        assert again.status_code == 400

    def test_worker_cannot_change_settings(self, client, worker_headers):
        response = client.put('/api/time-tracking/settings', json={"maxBreakDuration": 5}, headers=worker_headers)
        assert response.status_code == 403
        assert response.json["required_permission"] == "timeTracking.manageSettings"

    def test_manager_updates_settings(self, client, manager_headers):
        response = client.put('/api/time-tracking/settings', json={"maxBreakDuration": 45}, headers=manager_headers)
        assert response.status_code == 200
        assert response.json["settings"]["max_break_duration"] == 45

    def test_worker_cannot_list_active_sessions(self, client, worker_headers):
        assert client.get('/api/time-tracking/sessions/active', headers=worker_headers).status_code == 403

    def test_manager_lists_user_sessions(self, client, manager_headers, worker_user):
        response = client.get(f'/api/time-tracking/sessions/user/{worker_user.id}', headers=manager_headers)
        assert response.status_code == 200
        assert response.json["stats"]["total_sessions"] == 0

    def test_report_requires_view_reports(self, client, worker_headers, worker_user):
        response = client.post('/api/time-tracking/report', json={
            "userIds": [worker_user.id], "startDate": "2026-05-01", "endDate": "2026-05-31",
        }, headers=worker_headers)
        assert response.status_code == 403

    def test_admin_report(self, client, admin_headers, worker_user):
        response = client.post('/api/time-tracking/report', json={
            "userIds": [worker_user.id], "startDate": "2026-05-01", "endDate": "2026-05-31",
        }, headers=admin_headers)
        assert response.status_code == 200
        assert response.json["report"][0]["user_id"] == worker_user.id

    def test_daily_summaries_route(self, client, worker_headers):
        response = client.get('/api/time-tracking/daily-summaries?year=2026&month=5', headers=worker_headers)
        assert response.status_code == 200
        assert response.json["days"] == []
