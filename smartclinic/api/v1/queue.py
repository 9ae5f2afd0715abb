import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.security import UserRole, CLINIC_MANAGER_ROLES, CLINIC_STAFF_ROLES, AuthorizationError
from ...api.deps import (
    get_current_user, get_clinic_manager, get_clinic_member, get_patient_user, ensure_same_clinic
)
from ...models.user import User
from ...services.auth_service import AuthService
from ...services.queue_service import QueueService
from ...services.queue_broadcaster import queue_broadcaster, jsonable_position
from ...schemas.queue import QueueJoin, QueueAdd, QueueStatusUpdate, QueueTokenResponse, QueuePosition

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["Queue"])

def _clinic_doctor(service: QueueService, doctor_id: int, current_user: User) -> User:
    doctor = service.get_doctor(doctor_id)
    ensure_same_clinic(current_user, doctor.clinic_id)
    return doctor

@router.post("/join", response_model=QueueTokenResponse)
async def join_queue(
    data: QueueJoin,
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    """Take a token in a doctor's queue for today."""
    token = QueueService(db).join_queue(
        current_user.id, data.doctor_id, data.appointment_id, data.priority
    )
    await queue_broadcaster.broadcast(token.doctor_id, db)
    return QueueTokenResponse.model_validate(token)

@router.post("/add", response_model=QueueTokenResponse)
async def add_to_queue(
    data: QueueAdd,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    """Front desk adds an arriving patient, optionally with raised priority."""
    service = QueueService(db)
    _clinic_doctor(service, data.doctor_id, current_user)
    patient = db.query(User).filter(
        User.id == data.patient_id,
        User.role == UserRole.PATIENT
    ).first()
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")

    token = service.join_queue(patient.id, data.doctor_id, data.appointment_id, data.priority)
    await queue_broadcaster.broadcast(token.doctor_id, db)
    return QueueTokenResponse.model_validate(token)

@router.post("/reorder/{doctor_id}", response_model=List[QueueTokenResponse])
async def reorder_queue(
    doctor_id: int,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    service = QueueService(db)
    _clinic_doctor(service, doctor_id, current_user)
    pending = service.reorder_queue(doctor_id)
    service.recalculate_wait_times(doctor_id)
    db.commit()
    await queue_broadcaster.broadcast(doctor_id, db)
    return [QueueTokenResponse.model_validate(t) for t in pending]

@router.post("/cleanup")
async def cleanup_queue(
    current_user: User = Depends(get_clinic_manager),
    db: Session = Depends(get_db)
):
    """Remove duplicate tokens held by the same patient with the same doctor."""
    removed = QueueService(db).cleanup_duplicates(current_user.clinic_id)
    for doctor_id in removed:
        await queue_broadcaster.broadcast(doctor_id, db)
    return {
        "message": "Queue cleanup completed",
        "removed": sum(removed.values()),
        "doctors": sorted(removed),
    }

@router.get("/doctor/{doctor_id}")
async def doctor_queue(
    doctor_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    service = QueueService(db)
    service.get_doctor(doctor_id)
    return service.snapshot(doctor_id)

@router.post("/doctor/{doctor_id}/call-next")
async def call_next_patient(
    doctor_id: int,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    service = QueueService(db)
    _clinic_doctor(service, doctor_id, current_user)
    token = service.call_next(doctor_id)
    await queue_broadcaster.broadcast(doctor_id, db)
    return {
        "message": "Next patient called" if token else "No patients waiting",
        "token": QueueTokenResponse.model_validate(token) if token else None,
    }

@router.get("/position", response_model=QueuePosition)
async def queue_position(
    doctor_id: Optional[int] = Query(None),
    current_user: User = Depends(get_patient_user),
    db: Session = Depends(get_db)
):
    return QueueService(db).get_position(current_user.id, doctor_id)

@router.get("/clinic")
async def clinic_queue(
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    """Today's tokens across all doctors of the caller's clinic."""
    return QueueService(db).clinic_queue(current_user.clinic_id)

@router.put("/{token_id}/status", response_model=QueueTokenResponse)
async def update_token_status(
    token_id: int,
    data: QueueStatusUpdate,
    current_user: User = Depends(get_clinic_member),
    db: Session = Depends(get_db)
):
    service = QueueService(db)
    token = service.get_token(token_id)
    ensure_same_clinic(current_user, token.clinic_id)
    token = service.update_status(token_id, data.status)
    await queue_broadcaster.broadcast(token.doctor_id, db)
    return QueueTokenResponse.model_validate(token)

@router.get("/events/{doctor_id}")
async def queue_events(
    doctor_id: int,
    request: Request,
    token: str = Query(..., description="Access token; EventSource cannot send headers"),
    db: Session = Depends(get_db)
):
    """Server-Sent Events feed of a doctor's queue."""
    AuthService(db).authenticate_token(token)
    service = QueueService(db)
    service.get_doctor(doctor_id)
    initial = service.snapshot(doctor_id)

    return StreamingResponse(
        queue_broadcaster.event_stream(doctor_id, initial, request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )

@router.websocket("/ws")
async def queue_websocket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Live queue updates for patients, doctors' displays and the front desk."""
    try:
        user = AuthService(db).authenticate_token(token or "")
    except HTTPException:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    await websocket.send_json({"type": "connected", "user_id": user.id, "role": user.role.value})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "message": "Invalid message"})
                continue

            db.expire_all()
            try:
                await _handle_message(websocket, message, user, db)
            except HTTPException as e:
                await websocket.send_json({"type": "error", "message": e.detail})
    except WebSocketDisconnect:
        logger.info(f"Queue WebSocket for user {user.id} disconnected")
    finally:
        queue_broadcaster.disconnect(websocket)

def _message_id(message: dict, key: str) -> int:
    value = message.get(key)
    if value is None:
        raise HTTPException(status_code=400, detail=f"{key} is required")
    if isinstance(value, bool):
        raise HTTPException(status_code=400, detail=f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{key} must be an integer")

async def _handle_message(websocket: WebSocket, message: dict, user: User, db: Session) -> None:
    message_type = message.get("type")
    service = QueueService(db)

    if message_type == "ping":
        await websocket.send_json({"type": "pong"})

    elif message_type == "subscribe":
        await websocket.send_json({"type": "subscribed", "channel": message.get("channel")})

    elif message_type == "subscribe_patient_queue":
        patient_id = user.id
        scope = None
        if user.role != UserRole.PATIENT:
            if user.role not in CLINIC_STAFF_ROLES:
                raise AuthorizationError("Clinic staff access required")
            patient_id = _message_id(message, "patient_id")
            if user.clinic_id not in service.patient_clinic_ids(patient_id):
                raise AuthorizationError("Patient is not in your clinic's queue today")
            scope = user.clinic_id
        queue_broadcaster.subscribe_patient(websocket, patient_id, scope)
        position = service.get_position(patient_id, clinic_id=scope)
        await websocket.send_json({"type": "queue_position", "data": jsonable_position(position)})

    elif message_type == "subscribe_admin_queue":
        if user.role not in CLINIC_MANAGER_ROLES or user.clinic_id is None:
            raise AuthorizationError("Admin or staff access required")
        queue_broadcaster.subscribe_admin(websocket, user.clinic_id)
        await websocket.send_json({
            "type": "admin_queue_update",
            "data": service.clinic_queue(user.clinic_id),
        })

    elif message_type == "subscribe_doctor_queue":
        doctor_id = _message_id(message, "doctor_id")
        doctor = service.get_doctor(doctor_id)
        if user.role != UserRole.PATIENT:
            ensure_same_clinic(user, doctor.clinic_id)
        queue_broadcaster.subscribe_doctor(websocket, doctor_id)
        await websocket.send_json({"type": "queue_update", "data": service.snapshot(doctor_id)})

    else:
        await websocket.send_json({
            "type": "error",
            "message": f"Unknown message type: {message_type}",
        })
