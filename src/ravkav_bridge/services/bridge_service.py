from typing import Optional, Tuple
from pydantic import ValidationError
from ravkav_bridge.api.exceptions import SessionNotAuthenticated, SessionNotFound
from ravkav_bridge.clients.ravkav_client import UpstreamClient, UpstreamResult
from ravkav_bridge.config.logging import get_logger
from ravkav_bridge.models.session import Session
from ravkav_bridge.models.transaction import parse_transactions
from ravkav_bridge.services.auth_flow import LoginResult
from ravkav_bridge.services.export_pipeline import ExportFormat, ExportPipeline, ExportResult
from ravkav_bridge.services.session_store import SessionStore

logger = get_logger("bridge")


class BridgeService:
    """Glue between the HTTP layer, the session store and the upstream portal."""

    def __init__(self, store: SessionStore, client: UpstreamClient, pipeline: ExportPipeline):
        self.store = store
        self.client = client
        self.pipeline = pipeline

    def _resolve_session(self, identifier: str, secret: str, session_id: Optional[str]) -> Session:
        if session_id:
            existing = self.store.get(session_id)
            if existing is not None and existing.matches(identifier, secret):
                return existing

        existing = self.store.find_by_credentials(identifier, secret)
        if existing is not None:
            return existing

        session = Session(identifier=identifier, secret=secret)
        self.store.put(session)
        logger.info("Session created", session_id=session.id, identifier=identifier)
        return session

    async def login(self, identifier: str, secret: str, verification_code: Optional[str] = None,
                    session_id: Optional[str] = None) -> Tuple[Session, LoginResult]:
        session = self._resolve_session(identifier, secret, session_id)
        async with self.store.lock(session.id):
            session.verification_code = verification_code or None
            result = await self.client.login(session)
        return session, result

    def get_session(self, session_id: str) -> Session:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound()
        return session

    def require_authenticated(self, session: Session) -> None:
        if not session.is_authenticated:
            raise SessionNotAuthenticated()

    async def fetch_transactions(self, session: Session, start_date: Optional[str] = None,
                                 end_date: Optional[str] = None) -> UpstreamResult:
        self.require_authenticated(session)
        async with self.store.lock(session.id):
            session.touch()
            return await self.client.fetch_transactions(session, start_date=start_date, end_date=end_date)

    async def export_transactions(self, session: Session, output_format: ExportFormat,
                                  start_date: Optional[str] = None,
                                  end_date: Optional[str] = None) -> Tuple[UpstreamResult, Optional[ExportResult]]:
        """Fetch and export in one go. The export result is None when the fetch failed."""
        self.require_authenticated(session)
        async with self.store.lock(session.id):
            session.touch()
            fetched = await self.client.fetch_transactions(session, start_date=start_date, end_date=end_date)
            if not fetched.success:
                return fetched, None

            try:
                transactions = parse_transactions(fetched.data)
            except ValidationError as e:
                logger.error("Unexpected transaction payload", session_id=session.id, error=str(e))
                return fetched, ExportResult(success=False, errors=["Unexpected transaction payload from upstream"])

            logger.info("Exporting transactions", session_id=session.id,
                        transactions=len(transactions), output_format=ExportFormat(output_format).value)
            return fetched, await self.pipeline.export(transactions, output_format)
