"""Static credential gate for the single-user dashboard."""

import hmac
import logging

from app.config import AUTH_EMAIL, AUTH_PASSWORD

logger = logging.getLogger(__name__)


class AuthGate:
    def __init__(self, email: str = AUTH_EMAIL, password: str = AUTH_PASSWORD):
        self._email = email.strip().lower()
        self._password = password
        self.is_open = False

    def login(self, email: str, password: str) -> bool:
        ok = hmac.compare_digest(email.strip().lower(), self._email) and hmac.compare_digest(
            password, self._password
        )
        self.is_open = ok or self.is_open
        if not ok:
            logger.info("Rejected login attempt")
        return ok

    def logout(self) -> None:
        self.is_open = False


# Global instance
auth_gate = AuthGate()
