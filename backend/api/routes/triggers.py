"""Trigger API routes: CRUD for event triggers + business event ingestion."""

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.execution import DispatchResponse
from api.schemas.trigger import EventIngest, TriggerCreate, TriggerResponse, TriggerUpdate
from app.config import get_settings
from app.dependencies import get_actor_id, get_db, get_dispatcher
from core.exceptions import UnauthorizedError
from core.webhook_signing import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_webhook_signature
from services.dispatch_service import DispatchService
from services.trigger_service import TriggerService

logger = structlog.get_logger(__name__)

router = APIRouter()
events_router = APIRouter()


# -- CRUD --

@router.get("/", response_model=List[TriggerResponse], summary="List triggers")
async def list_triggers(
    workflow_id: Optional[str] = None,
    event_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    filters = {k: v for k, v in (("workflow_id", workflow_id), ("event_type", event_type)) if v}
    triggers, _ = await TriggerService(db).list(limit=200, filters=filters or None)
    return [TriggerResponse.model_validate(t) for t in triggers]


@router.post("/", response_model=TriggerResponse, status_code=http_status.HTTP_201_CREATED)
async def create_trigger(
    body: TriggerCreate,
    actor_id: Optional[str] = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Create a trigger; triggered runs are attributed to its owner."""
    trigger = await TriggerService(db).create_trigger(
        workflow_id=body.workflow_id,
        event_type=body.event_type,
        conditions=body.conditions,
        name=body.name,
        is_active=body.is_active,
        owner_id=actor_id,
    )
    return TriggerResponse.model_validate(trigger)


@router.get("/{trigger_id}", response_model=TriggerResponse)
async def get_trigger(trigger_id: str, db: AsyncSession = Depends(get_db)):
    return TriggerResponse.model_validate(await TriggerService(db).get_trigger(trigger_id))


@router.put("/{trigger_id}", response_model=TriggerResponse)
async def update_trigger(
    trigger_id: str,
    body: TriggerUpdate,
    db: AsyncSession = Depends(get_db),
):
    trigger = await TriggerService(db).update_trigger(
        trigger_id,
        event_type=body.event_type,
        conditions=body.conditions,
        name=body.name,
        is_active=body.is_active,
    )
    return TriggerResponse.model_validate(trigger)


@router.delete("/{trigger_id}", status_code=http_status.HTTP_204_NO_CONTENT)
async def delete_trigger(trigger_id: str, db: AsyncSession = Depends(get_db)):
    await TriggerService(db).delete_trigger(trigger_id)


# -- Event ingestion --

@events_router.post("/", response_model=DispatchResponse, status_code=http_status.HTTP_202_ACCEPTED)
async def ingest_event(
    request: Request,
    body: EventIngest,
    actor_id: Optional[str] = Depends(get_actor_id),
    signature: Optional[str] = Header(default=None, alias=SIGNATURE_HEADER),
    timestamp: Optional[str] = Header(default=None, alias=TIMESTAMP_HEADER),
    dispatcher: DispatchService = Depends(get_dispatcher),
):
    """
    Ingest a business event and run every workflow whose trigger matches.

    With ``WEBHOOK_SIGNING_SECRET`` configured every request must carry a
    valid ``X-Workflow-Signature``. Without it only unsigned requests are
    accepted.
    """
    secret = get_settings().WEBHOOK_SIGNING_SECRET
    if secret and signature is None:
        raise UnauthorizedError("Missing event signature")
    if signature is not None:
        if not secret:
            raise UnauthorizedError("Signed events are not accepted: no signing secret configured")
        raw_body = await request.body()
        if not verify_webhook_signature(raw_body, secret, signature, timestamp):
            logger.warning("Rejected event with invalid signature", event_type=body.event_type)
            raise UnauthorizedError("Invalid event signature")

    mode = await dispatcher.dispatch_event(
        actor_id,
        body.event_type,
        body.entity_id,
        body.entity_type,
        body.payload,
    )
    return DispatchResponse(mode=mode)
