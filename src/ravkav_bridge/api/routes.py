from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
import structlog
from ravkav_bridge.api.exceptions import ExportNotSupported
from ravkav_bridge.api.schemas import (
    HealthResponse, LoginRequest, LoginResponse, LoginResultPayload,
    ReturnFormat, TransactionsRequest
)
from ravkav_bridge.services.bridge_service import BridgeService
from ravkav_bridge.services.export_pipeline import NO_TRANSACTIONS, ExportFormat

logger = structlog.get_logger("api")

PDF_FILENAME = "transactions.pdf"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def get_bridge(request: Request) -> BridgeService:
    return request.app.state.bridge


def create_router() -> APIRouter:
    router = APIRouter()

    @router.post("/login", response_model=LoginResponse, response_model_by_alias=True)
    async def login(body: LoginRequest, bridge: BridgeService = Depends(get_bridge)):
        """Log in to the portal.

        When the portal answers ``verification_required`` a code is sent to the
        user's registered contact and ``loginResult.outcome`` is
        ``verification_pending``. Send the same request again with
        ``verification_code`` to complete the login on the same session.
        """
        logger.info("API: login", email=body.email,
                    with_verification_code=body.verification_code is not None)
        session, result = await bridge.login(
            identifier=body.email,
            secret=body.password,
            verification_code=body.verification_code,
            session_id=body.session_id,
        )
        return LoginResponse(
            session_id=session.id,
            status=session.status,
            login_result=LoginResultPayload(**result.model_dump()),
        )

    @router.post("/get-transactions")
    async def get_transactions(body: TransactionsRequest, bridge: BridgeService = Depends(get_bridge)):
        """Fetch charged transactions as JSON or as one merged approval PDF."""
        return_format = body.format
        logger.info("API: get-transactions", session_id=body.session_id,
                    start_date=body.start_date, end_date=body.end_date,
                    return_format=return_format.value)

        session = bridge.get_session(body.session_id)

        if return_format == ReturnFormat.EXCEL:
            raise ExportNotSupported("Return format excel is not implemented")

        if return_format == ReturnFormat.JSON:
            fetched = await bridge.fetch_transactions(session, body.start_date, body.end_date)
            return JSONResponse(
                status_code=fetched.http_status,
                content={
                    "status": "OK" if fetched.success else "ERROR",
                    "httpStatus": fetched.http_status,
                    "data": fetched.data,
                    "errors": fetched.errors,
                    "timestamp": utc_timestamp(),
                },
            )

        export_format = ExportFormat(return_format.value)
        fetched, exported = await bridge.export_transactions(
            session, export_format, body.start_date, body.end_date
        )

        if exported is None:
            return JSONResponse(
                status_code=fetched.http_status,
                content={
                    "status": "ERROR",
                    "httpStatus": fetched.http_status,
                    "data": None,
                    "errors": fetched.errors,
                },
            )

        if not exported.success:
            status_code = 404 if exported.errors == [NO_TRANSACTIONS] else 500
            return JSONResponse(
                status_code=status_code,
                content={"status": "ERROR", "data": None, "errors": exported.errors},
            )

        if export_format == ExportFormat.PDF_BINARY:
            return Response(
                content=exported.content,
                media_type="application/pdf",
                headers={"Content-Disposition": f'attachment; filename="{PDF_FILENAME}"'},
            )

        return JSONResponse(
            status_code=200,
            content={"status": "OK", "data": {"pdfBase64": exported.content}, "errors": []},
        )

    @router.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(status="OK", timestamp=utc_timestamp())

    return router
