import re
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from ravkav_bridge.models.session import LoginStatus
from ravkav_bridge.services.auth_flow import LoginOutcome

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ReturnFormat(str, Enum):
    JSON = "json"
    PDF_BINARY = "pdfBinary"
    PDF_BASE64 = "pdfBase64"
    EXCEL = "excel"


ALLOWED_RETURN_FORMATS = [fmt.value for fmt in ReturnFormat]


def _is_valid_date(value: str) -> bool:
    if not DATE_PATTERN.match(value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    password: Optional[str] = None
    verification_code: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    @field_validator("verification_code", mode="before")
    @classmethod
    def coerce_verification_code(cls, value: Any) -> Any:
        # The web form posts the code as a number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return _blank_to_none(value)

    @model_validator(mode="after")
    def check_credentials(self) -> "LoginRequest":
        if not self.email or not self.password:
            raise ValueError("Email and password are required")
        if not EMAIL_PATTERN.match(self.email):
            raise ValueError("Invalid email format")
        return self


class TransactionsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    return_format: Optional[str] = Field(default=None, alias="returnFormat")

    @field_validator("start_date", "end_date", "return_format", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @model_validator(mode="after")
    def check_query(self) -> "TransactionsRequest":
        if not self.session_id:
            raise ValueError("Session ID is required")
        if self.start_date and not _is_valid_date(self.start_date):
            raise ValueError("Invalid start date format, expected format: YYYY-MM-DD")
        if self.end_date and not _is_valid_date(self.end_date):
            raise ValueError("Invalid end date format, expected format: YYYY-MM-DD")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("Start date must be before end date")
        if self.return_format and self.return_format not in ALLOWED_RETURN_FORMATS:
            raise ValueError(
                f"Invalid return format, Please use: {', '.join(ALLOWED_RETURN_FORMATS)}"
            )
        return self

    @property
    def format(self) -> ReturnFormat:
        return ReturnFormat(self.return_format or ReturnFormat.JSON.value)


class LoginResultPayload(BaseModel):
    success: bool
    outcome: LoginOutcome
    data: Any = None
    errors: List[str] = Field(default_factory=list)


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    status: LoginStatus
    login_result: LoginResultPayload = Field(alias="loginResult")


class HealthResponse(BaseModel):
    status: str
    timestamp: str
