from __future__ import annotations

import asyncio
import json
import logging
from typing import Dict, Set
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.schemas.events import WsMessage

logger = logging.getLogger("app.ws")
router = APIRouter()


class WsHub:
    """Fan-out of vehicle updates to map clients, keyed by shipment id."""

    def __init__(self):
        self._clients: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, shipment_id: str, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._clients.setdefault(shipment_id, set()).add(ws)

    async def disconnect(self, shipment_id: str, ws: WebSocket) -> None:
        async with self._lock:
            watchers = self._clients.get(shipment_id)
            if watchers and ws in watchers:
                watchers.remove(ws)
                if not watchers:
                    self._clients.pop(shipment_id, None)

    async def broadcast(self, shipment_id: str, message: dict) -> None:
        async with self._lock:
            clients = list(self._clients.get(shipment_id, set()))
        if not clients:
            return

        payload = json.dumps(message, ensure_ascii=False)
        dead = []
        for ws in clients:
            try:
                await ws.send_text(payload)
            except Exception:
                dead.append(ws)
        for ws in dead:
            await self.disconnect(shipment_id, ws)


hub = WsHub()


@router.websocket("/ws/simulations/{shipment_id}")
async def ws_simulation(shipment_id: str, ws: WebSocket):
    logger.info("WS connect: shipment=%s", shipment_id)
    await hub.connect(shipment_id, ws)

    # Send the current state right away so the map does not wait for a tick
    svc = getattr(ws.app.state, "simulation", None)
    if svc is not None:
        try:
            vehicle = svc.get_state(shipment_id)
            if vehicle is not None:
                msg = WsMessage(kind="vehicle", shipment_id=shipment_id, data=vehicle.model_dump(mode="json"))
                await ws.send_text(msg.model_dump_json())
        except Exception as e:
            logger.warning("WS initial state failed for %s: %s", shipment_id, e)

    try:
        while True:
            _ = await ws.receive_text()
    except WebSocketDisconnect:
        logger.info("WS disconnect: shipment=%s", shipment_id)
        await hub.disconnect(shipment_id, ws)
    except Exception:
        logger.info("WS error/disconnect: shipment=%s", shipment_id)
        await hub.disconnect(shipment_id, ws)
