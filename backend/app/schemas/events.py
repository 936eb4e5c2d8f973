from __future__ import annotations

from pydantic import BaseModel
from typing import Any, Dict


class WsMessage(BaseModel):
    kind: str  # vehicle
    shipment_id: str
    data: Dict[str, Any]
