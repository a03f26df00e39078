"""Login state machine: credential submission with verification-code challenge."""
from enum import Enum
from typing import Any, Dict, List, Tuple
from pydantic import BaseModel, Field
from ravkav_bridge.config.logging import get_logger
from ravkav_bridge.models.session import AuthResult, LoginStatus, Session

logger = get_logger("upstream.auth")

VERIFICATION_REQUIRED = "verification_required"
VERIFICATION_CODE_SENT = "verification_code_sent"


class LoginOutcome(str, Enum):
    AUTHENTICATED = "authenticated"
    VERIFICATION_PENDING = "verification_pending"
    FAILED = "failed"


class AuthEvent(str, Enum):
    LOGIN_ACCEPTED = "login_accepted"
    VERIFICATION_CODE_SENT = "verification_code_sent"
    VERIFICATION_ISSUE_FAILED = "verification_issue_failed"
    LOGIN_REJECTED = "login_rejected"


# (current status, event) -> next status.
# Rejections keep the current status, except that an authenticated session
# which fails to log in again loses its token and drops to UNAUTHENTICATED.
TRANSITIONS: Dict[Tuple[LoginStatus, AuthEvent], LoginStatus] = {
    (LoginStatus.UNAUTHENTICATED, AuthEvent.LOGIN_ACCEPTED): LoginStatus.AUTHENTICATED,
    (LoginStatus.AWAITING_VERIFICATION, AuthEvent.LOGIN_ACCEPTED): LoginStatus.AUTHENTICATED,
    (LoginStatus.AUTHENTICATED, AuthEvent.LOGIN_ACCEPTED): LoginStatus.AUTHENTICATED,

    (LoginStatus.UNAUTHENTICATED, AuthEvent.VERIFICATION_CODE_SENT): LoginStatus.AWAITING_VERIFICATION,
    (LoginStatus.AWAITING_VERIFICATION, AuthEvent.VERIFICATION_CODE_SENT): LoginStatus.AWAITING_VERIFICATION,
    (LoginStatus.AUTHENTICATED, AuthEvent.VERIFICATION_CODE_SENT): LoginStatus.AWAITING_VERIFICATION,

    (LoginStatus.UNAUTHENTICATED, AuthEvent.VERIFICATION_ISSUE_FAILED): LoginStatus.UNAUTHENTICATED,
    (LoginStatus.AWAITING_VERIFICATION, AuthEvent.VERIFICATION_ISSUE_FAILED): LoginStatus.AWAITING_VERIFICATION,
    (LoginStatus.AUTHENTICATED, AuthEvent.VERIFICATION_ISSUE_FAILED): LoginStatus.UNAUTHENTICATED,

    (LoginStatus.UNAUTHENTICATED, AuthEvent.LOGIN_REJECTED): LoginStatus.UNAUTHENTICATED,
    (LoginStatus.AWAITING_VERIFICATION, AuthEvent.LOGIN_REJECTED): LoginStatus.AWAITING_VERIFICATION,
    (LoginStatus.AUTHENTICATED, AuthEvent.LOGIN_REJECTED): LoginStatus.UNAUTHENTICATED,
}


def next_status(current: LoginStatus, event: AuthEvent) -> LoginStatus:
    return TRANSITIONS[(LoginStatus(current), AuthEvent(event))]


class LoginResult(BaseModel):
    """What a login call reports back to the caller.

    ``success`` is also true when a verification code was sent; use
    ``outcome`` to tell a finished login from a pending one.
    """
    outcome: LoginOutcome
    success: bool
    data: Any = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def authenticated(cls, payload: Any) -> "LoginResult":
        return cls(outcome=LoginOutcome.AUTHENTICATED, success=True, data=payload)

    @classmethod
    def verification_pending(cls) -> "LoginResult":
        return cls(outcome=LoginOutcome.VERIFICATION_PENDING, success=True, data=[VERIFICATION_CODE_SENT])

    @classmethod
    def failed(cls, errors: List[str]) -> "LoginResult":
        return cls(outcome=LoginOutcome.FAILED, success=False, data=[], errors=list(errors))

    @property
    def is_authenticated(self) -> bool:
        return self.outcome == LoginOutcome.AUTHENTICATED


def is_verification_required(detail: Any) -> bool:
    if isinstance(detail, str):
        return detail == VERIFICATION_REQUIRED
    if isinstance(detail, (list, tuple)):
        return VERIFICATION_REQUIRED in detail
    return False


class AuthFlow:
    """Drives one login attempt and applies the outcome to the session.

    ``client`` must provide ``request_login(session)`` and
    ``issue_verification_code(session)``, both returning an upstream result
    with ``success``, ``data``, ``errors`` and ``detail``.
    """

    def __init__(self, client):
        self.client = client

    async def login(self, session: Session) -> LoginResult:
        log = logger.bind(session_id=session.id, identifier=session.identifier)
        log.info("Login attempt", status=session.status.value,
                 with_verification_code=session.verification_code is not None)

        response = await self.client.request_login(session)

        if response.success:
            payload = response.data if isinstance(response.data, dict) else {}
            if payload.get("access_token"):
                result = LoginResult.authenticated(response.data)
                return self._apply(session, AuthEvent.LOGIN_ACCEPTED, result,
                                   AuthResult.from_token_payload(payload))
            log.warning("Login response did not include an access token")
            result = LoginResult.failed(["Login response did not include an access token"])
            return self._apply(session, AuthEvent.LOGIN_REJECTED, result,
                               AuthResult.failure(result.errors))

        if is_verification_required(response.detail):
            log.info("Upstream requires a verification code, issuing one")
            issued = await self.client.issue_verification_code(session)
            if issued.success:
                return self._apply(session, AuthEvent.VERIFICATION_CODE_SENT,
                                   LoginResult.verification_pending(), AuthResult(success=True))
            result = LoginResult.failed(issued.errors)
            return self._apply(session, AuthEvent.VERIFICATION_ISSUE_FAILED, result,
                               AuthResult.failure(result.errors))

        result = LoginResult.failed(response.errors)
        return self._apply(session, AuthEvent.LOGIN_REJECTED, result, AuthResult.failure(result.errors))

    def _apply(self, session: Session, event: AuthEvent, result: LoginResult,
               auth_result: AuthResult) -> LoginResult:
        previous = session.status
        status = next_status(previous, event)
        session.record_login(status, auth_result)
        logger.info("Login outcome",
                    session_id=session.id,
                    auth_event=event.value,
                    outcome=result.outcome.value,
                    previous_status=previous.value,
                    status=status.value,
                    errors=result.errors)
        return result
