"""Backends de entrega de notificaciones.

send() devuelve True si el destino aceptó la notificación. Un False o una
excepción cuentan como fallo para el reintento y el circuit breaker.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import requests

logger = logging.getLogger(__name__)


class NotificationBackend(ABC):
    @abstractmethod
    def send(self, recipients: Sequence[str], payload: dict) -> bool:
        ...


class HttpPushBackend(NotificationBackend):
    """Dispara la entrega vía el endpoint interno del backend web.

    El alertId viaja en el payload para que el backend deduplique
    reintentos a nivel destinatario.
    """

    PATH = "/notifications/internal/trigger-push"

    def __init__(
        self,
        base_url: str,
        internal_key: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self._url = base_url.rstrip("/") + self.PATH
        self._internal_key = internal_key
        self._timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls) -> Optional["HttpPushBackend"]:
        internal_key = os.getenv("INTERNAL_API_KEY")
        if not internal_key:
            logger.warning("[PUSH] INTERNAL_API_KEY not configured - push backend disabled")
            return None
        return cls(
            base_url=os.getenv("BACKEND_URL", "http://localhost:3000"),
            internal_key=internal_key,
            timeout=float(os.getenv("NOTIFY_HTTP_TIMEOUT", "5")),
        )

    def send(self, recipients: Sequence[str], payload: dict) -> bool:
        try:
            response = self._session.post(
                self._url,
                json={"type": "alert", "recipients": list(recipients), **payload},
                headers={
                    "X-Internal-Key": self._internal_key,
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.warning("[PUSH] request error alertId=%s err=%s", payload.get("alertId"), e)
            return False

        if response.ok:
            logger.info("[PUSH] Alert push triggered for alertId=%s", payload.get("alertId"))
            return True

        logger.warning("[PUSH] Failed to trigger push: %s %s", response.status_code, response.text[:200])
        return False


class LoggingBackend(NotificationBackend):
    """Solo loguea. Útil en desarrollo y sin backend web."""

    def __init__(self) -> None:
        self.sent: list[tuple[tuple[str, ...], dict]] = []

    def send(self, recipients: Sequence[str], payload: dict) -> bool:
        self.sent.append((tuple(recipients), payload))
        logger.info(
            "[NOTIFY] alert=%s severity=%s to=%s: %s",
            payload.get("alertId"),
            payload.get("severity"),
            ",".join(recipients) or "-",
            payload.get("message", ""),
        )
        return True
