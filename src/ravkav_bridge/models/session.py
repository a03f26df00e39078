"""Per-login session record held by the session store."""
import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class LoginStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_VERIFICATION = "awaiting_verification"
    AUTHENTICATED = "authenticated"


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    secret: str = Field(repr=False)


class AuthResult(BaseModel):
    """Outcome of the most recent login attempt."""
    success: bool = False
    access_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_token_payload(cls, payload: Dict[str, Any]) -> "AuthResult":
        return cls(
            success=True,
            access_token=payload.get("access_token"),
            refresh_token=payload.get("refresh_token"),
        )

    @classmethod
    def failure(cls, errors: List[str]) -> "AuthResult":
        return cls(success=False, errors=list(errors))


class Session:
    def __init__(self, identifier: str, secret: str, session_id: Optional[str] = None):
        self._id = session_id or uuid.uuid4().hex
        self._credentials = Credentials(identifier=identifier, secret=secret)
        self.verification_code: Optional[str] = None
        self._status = LoginStatus.UNAUTHENTICATED
        self._auth_result = AuthResult()
        self.created_at = time.time()
        self.last_used_at = self.created_at

    @property
    def id(self) -> str:
        return self._id

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def identifier(self) -> str:
        return self._credentials.identifier

    @property
    def secret(self) -> str:
        return self._credentials.secret

    @property
    def status(self) -> LoginStatus:
        return self._status

    @property
    def auth_result(self) -> AuthResult:
        return self._auth_result

    @property
    def access_token(self) -> Optional[str]:
        return self._auth_result.access_token

    @property
    def is_authenticated(self) -> bool:
        return self._status == LoginStatus.AUTHENTICATED

    def matches(self, identifier: str, secret: str) -> bool:
        return self._credentials.identifier == identifier and self._credentials.secret == secret

    def record_login(self, status: LoginStatus, auth_result: AuthResult) -> None:
        """Replace status and last outcome together.

        A token is only accepted alongside AUTHENTICATED; any other status
        requires an outcome without tokens.
        """
        status = LoginStatus(status)
        has_token = bool(auth_result.access_token)
        if has_token != (status == LoginStatus.AUTHENTICATED):
            raise ValueError(
                f"Access token presence does not match login status {status.value}"
            )
        self._status = status
        self._auth_result = auth_result
        self.touch()

    def touch(self) -> None:
        self.last_used_at = time.time()

    def __repr__(self) -> str:
        return f"<Session(id='{self._id}', identifier='{self.identifier}', status={self._status.value})>"
