from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_webhook_secret
from app.schemas.webhooks import (
    IListWebhookPayload,
    WebhookChallengeOut,
    WebhookResultOut,
    WebhookStatusOut,
)
from app.services.webhooks import IListWebhookService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_webhook_service() -> IListWebhookService:
    return IListWebhookService()


@router.post("/ilist", response_model=WebhookResultOut, dependencies=[Depends(require_webhook_secret)])
def receive_ilist_webhook(
    payload: IListWebhookPayload,
    db: Annotated[Session, Depends(get_db)],
    service: Annotated[IListWebhookService, Depends(get_webhook_service)],
):
    result = service.handle_event(db, payload)
    return WebhookResultOut(event=payload.event, timestamp=datetime.now(UTC), result=result)


@router.get("/ilist", response_model=WebhookChallengeOut | WebhookStatusOut)
def verify_ilist_webhook(challenge: str | None = None):
    # iList verifies the endpoint by echoing a challenge; no secret is sent.
    if challenge:
        return WebhookChallengeOut(challenge=challenge)
    return WebhookStatusOut(status="Webhook endpoint active", timestamp=datetime.now(UTC))
