"""
Registro de auditoría en memoria.

Guarda los últimos eventos de creación, modificación, cambio de estado y
borrado, más recientes primero.
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional
import logging

from facturasimple.core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = ("create", "update", "delete", "status")

SYSTEM_USER = "system"


@dataclass(frozen=True)
class AuditEvent:
    action: str
    entity: str
    entity_id: str
    tenant_id: str
    user_id: str
    timestamp: int
    details: Dict[str, Any] = field(default_factory=dict)


class AuditTrail:
    def __init__(self, max_size: int = 200, clock: Optional[Clock] = None):
        self._events: Deque[AuditEvent] = deque(maxlen=max_size)
        self._clock = clock or SystemClock()

    def record(
        self,
        action: str,
        entity: str,
        entity_id: str,
        tenant_id: str,
        user_id: str = SYSTEM_USER,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Acción de auditoría desconocida: {action}")
        event = AuditEvent(
            action=action,
            entity=entity,
            entity_id=entity_id,
            tenant_id=tenant_id,
            user_id=user_id,
            timestamp=self._clock.now(),
            details=dict(details or {}),
        )
        self._events.appendleft(event)
        logger.debug(f"[AUDIT] {event}")
        return event

    def list(self, tenant_id: Optional[str] = None, user_id: Optional[str] = None) -> List[AuditEvent]:
        return [
            event for event in self._events
            if (tenant_id is None or event.tenant_id == tenant_id)
            and (user_id is None or event.user_id == user_id)
        ]

    def __len__(self) -> int:
        return len(self._events)
