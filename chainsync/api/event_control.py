"""
Event Control API Endpoints

POST /api/event-control/start - Start (or extend) a timed listening session
POST /api/event-control/stop - Stop the listening session
POST /api/event-control/extend - Reset the session countdown
GET  /api/event-control/status - Session status
GET  /api/event-control/connection - Supervisor status
POST /api/event-control/reconcile - Run reconciliation now
GET  /api/event-control/watchers/{contract_id} - Is a watcher running
GET  /api/event-control/failed/{kind} - Records that failed reconciliation
POST /api/event-control/requeue/{kind}/{tx_hash} - Make a failed record eligible again
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from chainsync.errors import StorageNotConnectedError
from chainsync.models.pending_event import PendingEventKind
from chainsync.services.admin_control import AdminControl

router = APIRouter(prefix="/api/event-control", tags=["Event Control"])


def get_admin_control(request: Request) -> AdminControl:
    """AdminControl attached to the app by the lifespan handler"""
    admin = getattr(request.app.state, 'admin_control', None)
    if admin is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return admin


def parse_kind(kind: str) -> PendingEventKind:
    try:
        return PendingEventKind(kind)
    except ValueError:
        valid = ', '.join(k.value for k in PendingEventKind)
        raise HTTPException(status_code=400, detail=f"Unknown event kind '{kind}'. Use one of: {valid}")


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class StartSessionInput(BaseModel):
    reason: Optional[str] = None
    duration_ms: Optional[int] = Field(default=None, gt=0)


class StopSessionInput(BaseModel):
    reason: Optional[str] = None


class FailedEventSummary(BaseModel):
    id: Optional[int]
    domain_name: str
    requester_address: str
    source_transaction_hash: str
    source_block_number: int
    processed_at: Optional[datetime]
    processing_error: Optional[str]


# =============================================================================
# SESSION
# =============================================================================

@router.post("/start")
async def start_session(body: StartSessionInput = StartSessionInput(), admin: AdminControl = Depends(get_admin_control)):
    return await admin.start_timed_session(body.reason, body.duration_ms)


@router.post("/stop")
async def stop_session(body: StopSessionInput = StopSessionInput(), admin: AdminControl = Depends(get_admin_control)):
    return await admin.stop_timed_session(body.reason)


@router.post("/extend")
async def extend_session(admin: AdminControl = Depends(get_admin_control)):
    extended = admin.extend_session()
    if not extended:
        raise HTTPException(status_code=409, detail="No active listening session")
    return admin.get_session_status()


@router.get("/status")
async def session_status(admin: AdminControl = Depends(get_admin_control)):
    return admin.get_session_status()


# =============================================================================
# SUPERVISOR / WATCHERS / RECONCILIATION
# =============================================================================

@router.get("/connection")
async def connection_status(admin: AdminControl = Depends(get_admin_control)):
    return admin.get_connection_status()


@router.post("/reconcile")
async def reconcile_now(admin: AdminControl = Depends(get_admin_control)):
    try:
        return await admin.trigger_reconciliation_now()
    except StorageNotConnectedError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/watchers/{contract_id}")
async def watcher_status(contract_id: str, admin: AdminControl = Depends(get_admin_control)):
    return {'contract_id': contract_id, 'running': admin.get_watcher_status(contract_id)}


@router.get("/failed/{kind}", response_model=List[FailedEventSummary])
async def failed_events(kind: str, limit: int = 50, admin: AdminControl = Depends(get_admin_control)):
    try:
        events = await admin.list_failed_events(parse_kind(kind), limit)
    except StorageNotConnectedError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return [
        FailedEventSummary(
            id=e.id,
            domain_name=e.domain_name,
            requester_address=e.requester_address,
            source_transaction_hash=e.source_transaction_hash,
            source_block_number=e.source_block_number,
            processed_at=e.processed_at,
            processing_error=e.processing_error,
        )
        for e in events
    ]


@router.post("/requeue/{kind}/{tx_hash}")
async def requeue_event(kind: str, tx_hash: str, admin: AdminControl = Depends(get_admin_control)):
    try:
        requeued = await admin.requeue_event(parse_kind(kind), tx_hash)
    except StorageNotConnectedError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not requeued:
        raise HTTPException(status_code=404, detail=f"No failed {kind} record for {tx_hash}")
    return {'requeued': True, 'kind': kind, 'transaction_hash': tx_hash}
