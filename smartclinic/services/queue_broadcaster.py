"""In-process fan-out of queue state to SSE streams and WebSockets."""
import asyncio
import json
import logging
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple

from fastapi import Request, WebSocket
from sqlalchemy.orm import Session

from ..core.config import settings
from .queue_service import QueueService

logger = logging.getLogger(__name__)

class QueueBroadcaster:
    """Tracks who is watching which queue and pushes updates to them.

    Subscriptions live in memory only; viewers reconnect after a restart.
    """

    def __init__(self):
        self._streams: Dict[int, List[asyncio.Queue]] = {}
        self._doctor_sockets: Dict[int, Set[WebSocket]] = {}
        self._admin_sockets: Dict[int, Set[WebSocket]] = {}
        self._patient_sockets: Dict[WebSocket, Tuple[int, Optional[int]]] = {}

    # Server-Sent Events

    def open_stream(self, doctor_id: int) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._streams.setdefault(doctor_id, []).append(queue)
        return queue

    def close_stream(self, doctor_id: int, queue: asyncio.Queue) -> None:
        streams = self._streams.get(doctor_id, [])
        if queue in streams:
            streams.remove(queue)
        if not streams:
            self._streams.pop(doctor_id, None)

    def stream_count(self, doctor_id: int) -> int:
        return len(self._streams.get(doctor_id, []))

    async def event_stream(
        self,
        doctor_id: int,
        initial: dict,
        request: Optional[Request] = None,
        keepalive: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Yield SSE frames: the current snapshot, then one per change."""
        keepalive = keepalive or settings.SSE_KEEPALIVE_SECONDS
        queue = self.open_stream(doctor_id)
        try:
            yield f"data: {json.dumps(initial)}\n\n"
            while True:
                if request is not None and await request.is_disconnected():
                    break
                try:
                    snapshot = await asyncio.wait_for(queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield f"data: {json.dumps(snapshot)}\n\n"
        finally:
            self.close_stream(doctor_id, queue)
            logger.info(f"SSE client for doctor {doctor_id} disconnected")

    # WebSockets

    def subscribe_doctor(self, websocket: WebSocket, doctor_id: int) -> None:
        self._doctor_sockets.setdefault(doctor_id, set()).add(websocket)

    def subscribe_admin(self, websocket: WebSocket, clinic_id: int) -> None:
        self._admin_sockets.setdefault(clinic_id, set()).add(websocket)

    def subscribe_patient(self, websocket: WebSocket, patient_id: int, clinic_id: Optional[int] = None) -> None:
        """Follow a patient's position; staff subscriptions are limited to their clinic."""
        self._patient_sockets[websocket] = (patient_id, clinic_id)

    def disconnect(self, websocket: WebSocket) -> None:
        self._patient_sockets.pop(websocket, None)
        for registry in (self._doctor_sockets, self._admin_sockets):
            for key in list(registry):
                registry[key].discard(websocket)
                if not registry[key]:
                    del registry[key]

    async def _send(self, websocket: WebSocket, message: dict) -> None:
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Dropping queue subscriber after failed send: {str(e)}")
            self.disconnect(websocket)

    # Fan-out

    async def broadcast(self, doctor_id: int, db: Session) -> None:
        """Push the doctor's current queue to everyone watching it."""
        service = QueueService(db)
        snapshot = service.snapshot(doctor_id)

        for queue in list(self._streams.get(doctor_id, [])):
            queue.put_nowait(snapshot)

        for websocket in list(self._doctor_sockets.get(doctor_id, set())):
            await self._send(websocket, {"type": "queue_update", "data": snapshot})

        clinic_id = snapshot["clinic_id"]
        if clinic_id is not None and self._admin_sockets.get(clinic_id):
            tokens = service.clinic_queue(clinic_id)
            for websocket in list(self._admin_sockets.get(clinic_id, set())):
                await self._send(websocket, {"type": "admin_queue_update", "data": tokens})

        if self._patient_sockets:
            in_queue = service.patient_ids_for_doctor(doctor_id)
            for websocket, (patient_id, scope) in list(self._patient_sockets.items()):
                if patient_id not in in_queue:
                    continue
                if scope is not None and scope != clinic_id:
                    continue
                position = service.get_position(patient_id, clinic_id=scope)
                await self._send(websocket, {
                    "type": "queue_position",
                    "data": jsonable_position(position),
                })

        logger.info(f"Broadcast queue update for doctor {doctor_id}")

def jsonable_position(position: dict) -> dict:
    data = dict(position)
    if data.get("status") is not None:
        data["status"] = data["status"].value
    return data

queue_broadcaster = QueueBroadcaster()
