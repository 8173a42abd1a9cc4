"""Session security guard - idle/absolute timeouts, UA binding and IP change checks."""

import hashlib
import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from tokenguard.core.config import settings

logger = logging.getLogger(__name__)

ACTION_IP_VERIFICATION = "ip_verification"

MESSAGE_SESSION_EXPIRED = "Session expired"
MESSAGE_FINGERPRINT_MISMATCH = "Browser fingerprint mismatch, possible session hijack"
MESSAGE_IP_VERIFICATION_TIMEOUT = "IP verification timed out, please log in again"
MESSAGE_IP_CHANGED = "IP address change detected, please verify your identity"


def hash_user_agent(user_agent: str) -> str:
    return hashlib.sha256(user_agent.encode("utf-8")).hexdigest()


@dataclass
class SessionData:
    """Server-side state of one browser session."""

    user_id: int | None = None
    user_ip: str | None = None
    user_agent_hash: str | None = None
    created_at: float | None = None
    last_activity: float | None = None
    requires_ip_verification: bool = False
    pending_ip: str | None = None
    ip_change_detected_at: float | None = None


@dataclass
class SecurityCheckResult:
    """Outcome of perform_security_check()."""

    valid: bool = True
    requires_action: bool = False
    action_type: str | None = None
    message: str | None = None


class SessionStore(Protocol):
    """Keyed storage for session state."""

    def get(self, session_id: str) -> SessionData | None: ...

    def set(self, session_id: str, data: SessionData) -> None: ...

    def delete(self, session_id: str) -> None: ...

    def clear(self) -> None: ...

    def regenerate_id(self, session_id: str) -> str: ...


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class InMemorySessionStore:
    """Process-local SessionStore.

    Designed for single-instance deployments; sessions do not survive a
    restart.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionData] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> SessionData | None:
        with self._lock:
            return self._sessions.get(session_id)

    def set(self, session_id: str, data: SessionData) -> None:
        with self._lock:
            self._sessions[session_id] = data

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def regenerate_id(self, session_id: str) -> str:
        """Move a session's state to a fresh identifier; the old one stops existing."""
        new_id = new_session_id()
        with self._lock:
            data = self._sessions.pop(session_id, None)
            if data is not None:
                self._sessions[new_id] = data
        return new_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class SessionSecurityGuard:
    """Security checks for a single session.

    State machine: no session -> active (set_user_session) -> ip change
    pending -> active (confirm_ip_change) or destroyed (timeout).
    """

    def __init__(
        self,
        store: SessionStore,
        session_id: str | None = None,
        idle_timeout: int | None = None,
        absolute_timeout: int | None = None,
        ip_verification_timeout: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.session_id = session_id or new_session_id()
        self.idle_timeout = idle_timeout or settings.session_idle_timeout
        self.absolute_timeout = absolute_timeout or settings.session_absolute_timeout
        self.ip_verification_timeout = (
            ip_verification_timeout or settings.session_ip_verification_timeout
        )
        self._clock = clock

    @property
    def session(self) -> SessionData | None:
        return self.store.get(self.session_id)

    def set_user_session(self, user_id: int, ip_address: str, user_agent: str) -> None:
        """Bind the session to a user, then rotate its identifier against fixation."""
        now = self._clock()
        self.store.set(
            self.session_id,
            SessionData(
                user_id=user_id,
                user_ip=ip_address,
                user_agent_hash=hash_user_agent(user_agent),
                created_at=now,
                last_activity=now,
            ),
        )
        self.regenerate_session_id()

    def regenerate_session_id(self) -> str:
        """Call on login and on privilege elevation."""
        self.session_id = self.store.regenerate_id(self.session_id)
        return self.session_id

    def destroy(self) -> None:
        self.store.delete(self.session_id)

    def update_activity(self) -> None:
        data = self.session
        if data is not None:
            data.last_activity = self._clock()
            self.store.set(self.session_id, data)

    def is_session_valid(self) -> bool:
        data = self.session
        if data is None or data.user_id is None or data.created_at is None:
            return False

        now = self._clock()
        if data.last_activity is not None and now - data.last_activity > self.idle_timeout:
            return False
        return now - data.created_at <= self.absolute_timeout

    def validate_ip(self, ip_address: str) -> bool:
        data = self.session
        return data is not None and data.user_ip == ip_address

    def validate_user_agent(self, user_agent: str) -> bool:
        data = self.session
        return data is not None and data.user_agent_hash == hash_user_agent(user_agent)

    def requires_ip_verification(self) -> bool:
        data = self.session
        return data is not None and data.requires_ip_verification

    def mark_ip_change_detected(self, new_ip: str) -> None:
        data = self.session
        if data is None:
            return
        data.requires_ip_verification = True
        data.pending_ip = new_ip
        data.ip_change_detected_at = self._clock()
        self.store.set(self.session_id, data)

    def is_ip_verification_expired(self) -> bool:
        data = self.session
        if data is None or data.ip_change_detected_at is None:
            return False
        return self._clock() - data.ip_change_detected_at > self.ip_verification_timeout

    def confirm_ip_change(self, new_ip: str | None = None) -> None:
        """Accept the pending IP (or new_ip) after the user re-verified."""
        data = self.session
        if data is None:
            return
        confirmed_ip = new_ip or data.pending_ip
        if confirmed_ip:
            data.user_ip = confirmed_ip
        data.requires_ip_verification = False
        data.pending_ip = None
        data.ip_change_detected_at = None
        self.store.set(self.session_id, data)

    def perform_security_check(self, ip_address: str, user_agent: str) -> SecurityCheckResult:
        if not self.is_session_valid():
            self.destroy()
            return SecurityCheckResult(valid=False, message=MESSAGE_SESSION_EXPIRED)

        if not self.validate_user_agent(user_agent):
            user_id = self.session.user_id
            self.destroy()
            logger.warning(f"User-Agent mismatch on session of user {user_id}")
            return SecurityCheckResult(valid=False, message=MESSAGE_FINGERPRINT_MISMATCH)

        if self.validate_ip(ip_address):
            return SecurityCheckResult()

        if self.requires_ip_verification():
            if self.is_ip_verification_expired():
                self.destroy()
                return SecurityCheckResult(valid=False, message=MESSAGE_IP_VERIFICATION_TIMEOUT)
        else:
            self.mark_ip_change_detected(ip_address)
            logger.info(f"IP change detected on session of user {self.session.user_id}")

        return SecurityCheckResult(
            requires_action=True,
            action_type=ACTION_IP_VERIFICATION,
            message=MESSAGE_IP_CHANGED,
        )
