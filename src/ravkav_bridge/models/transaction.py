from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class TransactionRecord(BaseModel):
    """Upstream transaction, reduced to the fields the PDF export needs."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    approval_document_url: str = Field(alias="purchase_approval_link")
    period_label: Optional[str] = Field(default=None, alias="period_description")


def extract_transactions(payload: Any) -> List[Dict[str, Any]]:
    """Pull the ordered result list out of a transactions response body.

    The portal wraps results as ``{"results": [...]}``; some deployments nest
    that once more under ``data``.
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []

    container: Optional[Any] = payload
    if "results" not in container and isinstance(container.get("data"), dict):
        container = container["data"]

    results = container.get("results") if isinstance(container, dict) else None
    return results if isinstance(results, list) else []


def parse_transactions(payload: Any) -> List[TransactionRecord]:
    return [TransactionRecord.model_validate(item) for item in extract_transactions(payload)]
