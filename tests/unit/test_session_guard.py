"""Unit tests for browser session security checks."""

import pytest

from tokenguard.services.session_guard import (
    ACTION_IP_VERIFICATION,
    MESSAGE_FINGERPRINT_MISMATCH,
    MESSAGE_IP_CHANGED,
    MESSAGE_IP_VERIFICATION_TIMEOUT,
    MESSAGE_SESSION_EXPIRED,
    InMemorySessionStore,
    SessionSecurityGuard,
    hash_user_agent,
)

UA = "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0"
HOME_IP = "203.0.113.10"
CAFE_IP = "198.51.100.7"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def guard(store, clock):
    guard = SessionSecurityGuard(
        store,
        idle_timeout=7200,
        absolute_timeout=28800,
        ip_verification_timeout=300,
        clock=clock,
    )
    guard.set_user_session(1, HOME_IP, UA)
    return guard


class TestSessionLifecycle:
    """Tests for session creation and timeouts."""

    def test_login_regenerates_session_id(self, store, clock):
        guard = SessionSecurityGuard(store, session_id="pre-login", clock=clock)

        guard.set_user_session(1, HOME_IP, UA)

        assert guard.session_id != "pre-login"
        assert store.get("pre-login") is None
        assert guard.session.user_id == 1
        assert guard.session.user_agent_hash == hash_user_agent(UA)
        assert len(store) == 1

    def test_fresh_session_valid(self, guard):
        assert guard.is_session_valid()

    def test_no_session_invalid(self, store, clock):
        assert not SessionSecurityGuard(store, clock=clock).is_session_valid()

    def test_idle_timeout(self, guard, clock):
        clock.advance(7201)

        assert not guard.is_session_valid()

    def test_activity_extends_idle_window(self, guard, clock):
        clock.advance(7000)
        guard.update_activity()
        clock.advance(7000)

        assert guard.is_session_valid()

    def test_absolute_timeout_despite_activity(self, guard, clock):
        for _ in range(5):
            clock.advance(6000)
            guard.update_activity()

        assert not guard.is_session_valid()

    def test_destroy(self, guard, store):
        guard.destroy()

        assert guard.session is None
        assert len(store) == 0

    def test_regenerate_keeps_data(self, guard):
        old_id = guard.session_id

        new_id = guard.regenerate_session_id()

        assert new_id != old_id
        assert guard.session.user_id == 1


class TestSecurityCheck:
    """Tests for SessionSecurityGuard.perform_security_check()."""

    def test_same_ip_and_agent(self, guard):
        result = guard.perform_security_check(HOME_IP, UA)

        assert result.valid is True
        assert result.requires_action is False

    def test_expired_session_destroyed(self, guard, clock):
        clock.advance(30000)

        result = guard.perform_security_check(HOME_IP, UA)

        assert result.valid is False
        assert result.message == MESSAGE_SESSION_EXPIRED
        assert guard.session is None

    def test_user_agent_change_destroys_session(self, guard):
        result = guard.perform_security_check(HOME_IP, "curl/8.0")

        assert result.valid is False
        assert result.message == MESSAGE_FINGERPRINT_MISMATCH
        assert guard.session is None

    def test_ip_change_requires_verification(self, guard):
        result = guard.perform_security_check(CAFE_IP, UA)

        assert result.valid is True
        assert result.requires_action is True
        assert result.action_type == ACTION_IP_VERIFICATION
        assert result.message == MESSAGE_IP_CHANGED
        assert guard.requires_ip_verification()
        assert guard.session.pending_ip == CAFE_IP

    def test_pending_verification_within_window(self, guard, clock):
        guard.perform_security_check(CAFE_IP, UA)
        clock.advance(200)

        result = guard.perform_security_check(CAFE_IP, UA)

        assert result.requires_action is True
        assert guard.session is not None

    def test_verification_timeout_destroys_session(self, guard, clock):
        guard.perform_security_check(CAFE_IP, UA)
        clock.advance(301)

        result = guard.perform_security_check(CAFE_IP, UA)

        assert result.valid is False
        assert result.message == MESSAGE_IP_VERIFICATION_TIMEOUT
        assert guard.session is None

    def test_returning_to_original_ip_passes(self, guard):
        guard.perform_security_check(CAFE_IP, UA)

        result = guard.perform_security_check(HOME_IP, UA)

        assert result.valid is True
        assert result.requires_action is False

    def test_confirm_ip_change(self, guard):
        guard.perform_security_check(CAFE_IP, UA)

        guard.confirm_ip_change()

        assert not guard.requires_ip_verification()
        assert guard.validate_ip(CAFE_IP)
        result = guard.perform_security_check(CAFE_IP, UA)
        assert result.valid is True
        assert result.requires_action is False

    def test_confirm_explicit_ip(self, guard):
        guard.confirm_ip_change("192.0.2.1")

        assert guard.validate_ip("192.0.2.1")
