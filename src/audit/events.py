"""Fire-and-forget security event logging for webhook verification."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import TYPE_CHECKING, Any, Literal

from src.models import AuditEvent, AuditEventType, RiskLevel, VerificationError

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

EventType = Literal["success", "failure"]


class SecurityEventLogger:
    """Emits ``webhook_security`` events without touching the request path.

    Failures are logged at WARNING and successes at DEBUG. When an event loop
    is running, emission is deferred with ``call_soon`` so the caller never
    waits on a handler or the audit file.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._logger = logger or logging.getLogger("src.webhook.security")
        self._audit = audit_logger

    def log(
        self,
        event_type: EventType,
        error: VerificationError | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        # Only code and message; details may hold received header values.
        data: dict[str, Any] = {"type": "webhook_security", "eventType": event_type}
        if error is not None:
            data["error"] = {"code": error.code.value, "message": error.message}
        if metadata:
            data.update(metadata)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._emit(event_type, data)
        else:
            loop.call_soon(self._emit, event_type, data)

    def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        try:
            if event_type == "failure":
                self._logger.warning("Webhook security event: failure", extra={"security": data})
            else:
                self._logger.debug("Webhook security event: success", extra={"security": data})
            if self._audit is not None:
                self._audit.log(self._to_audit_event(event_type, data))
        except Exception:  # noqa: BLE001
            if event_type == "failure":
                sys.stderr.write(f"[WEBHOOK_SECURITY] {json.dumps(data, default=str)}\n")

    @staticmethod
    def _to_audit_event(event_type: EventType, data: dict[str, Any]) -> AuditEvent:
        failed = event_type == "failure"
        error = data.get("error") or {}
        return AuditEvent(
            event_type=AuditEventType.WEBHOOK_REJECTED if failed else AuditEventType.WEBHOOK_VERIFIED,
            source_ip=data.get("sourceIp"),
            identifier=data.get("organizationId"),
            action="verify_webhook",
            result="failure" if failed else "success",
            risk_level=RiskLevel.HIGH if failed else RiskLevel.INFO,
            details={"code": error["code"]} if error else None,
        )
