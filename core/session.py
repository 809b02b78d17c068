from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

SessionStatus = Literal["loading", "authenticated", "unauthenticated"]


@dataclass(frozen=True)
class SessionUser:
    id: str
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class SessionContext:
    """Who is signed in for one page session. Passed explicitly to pipelines."""

    status: SessionStatus = "unauthenticated"
    user: Optional[SessionUser] = None

    @classmethod
    def authenticated(cls, user: SessionUser) -> "SessionContext":
        return cls(status="authenticated", user=user)

    @classmethod
    def anonymous(cls) -> "SessionContext":
        return cls(status="unauthenticated", user=None)

    @classmethod
    def loading(cls) -> "SessionContext":
        return cls(status="loading", user=None)

    def current_user(self) -> Optional[SessionUser]:
        return self.user if self.status == "authenticated" else None

    @property
    def user_id(self) -> Optional[str]:
        user = self.current_user()
        return user.id if user and user.id else None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


class Credentials(BaseModel):
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=8)


@dataclass(frozen=True)
class UserAccount:
    id: str
    name: str
    email: str
    password_sha256: str

    @classmethod
    def with_password(cls, id: str, name: str, email: str, password: str) -> "UserAccount":
        return cls(id=id, name=name, email=email.lower(), password_sha256=_digest(password))


def _digest(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


class CredentialsProvider:
    """Email/password sign-in against a fixed set of accounts."""

    def __init__(self, accounts: Iterable[UserAccount]):
        self._accounts: List[UserAccount] = list(accounts)

    def authenticate(self, email: str, password: str) -> SessionContext:
        try:
            creds = Credentials(email=(email or "").strip(), password=password or "")
        except ValidationError:
            return SessionContext.anonymous()

        digest = _digest(creds.password)
        for account in self._accounts:
            if account.email == creds.email.lower() and hmac.compare_digest(account.password_sha256, digest):
                logger.info("User %s signed in", account.id)
                return SessionContext.authenticated(SessionUser(id=account.id, name=account.name, email=account.email))
        logger.info("Failed sign-in for %s", creds.email)
        return SessionContext.anonymous()
