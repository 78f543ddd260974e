"""AlertGuard: punto único de creación de alertas.

Una llamada = una operación atómica del store (find_or_create_active)
acotada por timeout. Los reintentos los decide el coordinador.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Optional

from ..domain.alert import AlertRecord, Severity
from ..domain.events import Parameter
from ..resilience.timeouts import StoreCallRunner
from .messages import build_alert_message
from .store import AlertStore, new_alert_id

logger = logging.getLogger(__name__)


class AlertGuard:
    def __init__(self, store: AlertStore, store_runner: Optional[StoreCallRunner] = None):
        self._store = store
        self._runner = store_runner
        self._lock = threading.Lock()
        self._created = 0
        self._reinforced = 0

    @property
    def store(self) -> AlertStore:
        return self._store

    def ensure_active_alert(
        self,
        device_id: str,
        parameter: Parameter,
        severity: Severity,
        value: float,
        threshold: Optional[float],
        now: datetime,
        alert_id: Optional[str] = None,
    ) -> tuple[AlertRecord, bool]:
        """Garantiza exactamente una alerta Active para (device_id, parameter).

        Quien reintenta debe pasar el mismo `alert_id` en cada intento: un
        intento que expiró por timeout puede haber confirmado la creación
        igualmente, y el reintento tiene que seguir viéndola como creada.

        Raises:
            StoreUnavailable: store caído o timeout.
            ValueError: severity None (no es una violación).
        """
        if not severity.is_violation():
            raise ValueError("ensure_active_alert requires a violating severity")

        message = build_alert_message(parameter, severity, value, threshold)
        alert_id = alert_id or new_alert_id()

        def _call() -> tuple[AlertRecord, bool]:
            return self._store.find_or_create_active(
                device_id, parameter, severity, value, threshold, message, now, alert_id=alert_id
            )

        record, created = self._runner.call(_call) if self._runner is not None else _call()

        with self._lock:
            if created:
                self._created += 1
            else:
                self._reinforced += 1

        if created:
            logger.warning(
                "[ALERT_GUARD] created alert=%s device=%s param=%s severity=%s value=%.3f",
                record.alert_id, device_id, parameter.value, record.severity.value, value,
            )
        else:
            logger.debug(
                "[ALERT_GUARD] reinforced alert=%s occurrences=%d",
                record.alert_id, record.occurrence_count,
            )
        return record, created

    @property
    def stats(self) -> dict:
        with self._lock:
            return {"created": self._created, "reinforced": self._reinforced}
