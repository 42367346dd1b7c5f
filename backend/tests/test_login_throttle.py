# Overview: Pytest coverage for failed-login tracking and lockout.

from datetime import timedelta

from tillbook.models import LoginAttempt
from tillbook.services import login_throttle_service
from tillbook.time_utils import utcnow

PASSWORD = "Password123!"


def fail(email, times):
    status = None
    for _ in range(times):
        status = login_throttle_service.record_failed_attempt(email, ip_address="10.0.0.9")
    return status


class TestLockout:

    def test_locks_after_max_failures(self, db_session, staff_a):
        status = fail(staff_a.email, 4)
        assert status.locked is False
        assert status.remaining_attempts == 1

        status = fail(staff_a.email, 1)
        assert status.locked is True
        assert 0 < status.seconds_until_unlock <= 15 * 60

        attempt = db_session.query(LoginAttempt).filter_by(identifier=staff_a.email).first()
        assert attempt.user_id == staff_a.id
        assert attempt.ip_address == "10.0.0.9"

    def test_email_case_and_spacing_share_a_counter(self, db_session, staff_a):
        fail("  STAFF@acme.test ", 3)
        fail("staff@acme.test", 2)
        assert login_throttle_service.get_lockout_status("Staff@Acme.Test").locked is True

    def test_unknown_email_throttled_too(self, db_session):
        status = fail("ghost@nowhere.test", 5)
        assert status.locked is True
        assert db_session.query(LoginAttempt).filter_by(identifier="ghost@nowhere.test").first().user_id is None

    def test_lock_expires_after_window(self, db_session, staff_a):
        fail(staff_a.email, 5)
        later = utcnow() + timedelta(minutes=16)
        status = login_throttle_service.get_lockout_status(staff_a.email, now=later)
        assert status.locked is False
        assert status.failed_attempts == 0

    def test_success_resets_count(self, db_session, staff_a):
        fail(staff_a.email, 4)
        login_throttle_service.record_successful_login(staff_a)
        status = fail(staff_a.email, 1)
        assert status.locked is False
        assert status.failed_attempts == 1

    def test_other_emails_unaffected(self, db_session, staff_a, manager_a):
        fail(staff_a.email, 5)
        assert login_throttle_service.get_lockout_status(manager_a.email).locked is False

    def test_purge(self, db_session, staff_a):
        fail(staff_a.email, 2)
        assert login_throttle_service.purge_attempts(utcnow() - timedelta(days=1)) == 0
        assert login_throttle_service.purge_attempts(utcnow() + timedelta(seconds=1)) == 2


class TestLoginApi:

    def login(self, client, email, password):
        return client.post("/api/auth/login", json={"email": email, "password": password})

    def test_warning_then_429(self, client, staff_a):
        for _ in range(2):
            resp = self.login(client, staff_a.email, "Wrong123!")
            assert resp.status_code == 401
            assert "warning" not in resp.json

        resp = self.login(client, staff_a.email, "Wrong123!")
        assert resp.status_code == 401
        assert resp.json["warning"].startswith("2 attempts remaining")

        self.login(client, staff_a.email, "Wrong123!")
        resp = self.login(client, staff_a.email, "Wrong123!")
        assert resp.status_code == 429
        assert resp.json["locked"] is True
        assert int(resp.headers["Retry-After"]) > 0

    def test_correct_password_refused_while_locked(self, client, db_session, staff_a):
        fail(staff_a.email, 5)
        resp = self.login(client, staff_a.email, PASSWORD)
        assert resp.status_code == 429
        assert db_session.query(LoginAttempt).count() == 5

    def test_successful_login_recorded(self, client, db_session, staff_a):
        resp = self.login(client, staff_a.email, PASSWORD)
        assert resp.status_code == 200
        attempt = db_session.query(LoginAttempt).one()
        assert attempt.success is True
        assert attempt.user_id == staff_a.id

    def test_purge_command(self, app, db_session, staff_a):
        fail(staff_a.email, 3)
        result = app.test_cli_runner().invoke(args=["maintenance", "purge-login-attempts", "--days", "0"])
        assert result.exit_code == 0, result.output
        assert "Deleted 3 login attempts" in result.output
