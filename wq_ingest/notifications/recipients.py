"""Preferencias de notificación por destinatario.

Archivo JSON (WQ_RECIPIENTS_FILE), lista de objetos:

    [{"email": "ops@example.org",
      "emailNotifications": true,
      "alertSeverities": ["Critical", "Warning"],
      "parameters": ["pH"],          # vacío = todos
      "devices": [],                 # vacío = todos
      "quietHoursEnabled": true,
      "quietHoursStart": "22:00",
      "quietHoursEnd": "07:00"}]

Durante quiet hours solo pasan alertas Critical.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timezone, tzinfo
from pathlib import Path
from typing import Iterable, Optional, Sequence

import orjson

from ..domain.alert import AlertRecord, Severity
from ..domain.events import Parameter

logger = logging.getLogger(__name__)

_DEFAULT_SEVERITIES = frozenset({Severity.ADVISORY, Severity.WARNING, Severity.CRITICAL})


class RecipientConfigError(ValueError):
    pass


def _parse_hhmm(raw: str) -> time:
    try:
        hours, minutes = raw.split(":")
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError) as e:
        raise RecipientConfigError(f"invalid HH:MM value {raw!r}") from e


@dataclass(frozen=True)
class RecipientPreference:
    email: str
    email_notifications: bool = True
    alert_severities: frozenset = _DEFAULT_SEVERITIES
    parameters: frozenset = field(default_factory=frozenset)
    devices: frozenset = field(default_factory=frozenset)
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None

    def in_quiet_hours(self, local_time: time) -> bool:
        if self.quiet_hours_start is None or self.quiet_hours_end is None:
            return False
        start, end = self.quiet_hours_start, self.quiet_hours_end
        if start <= end:
            return start <= local_time < end
        # Cruza medianoche (22:00-07:00).
        return local_time >= start or local_time < end

    def wants(self, alert: AlertRecord, local_time: time) -> bool:
        if not self.email_notifications:
            return False
        if alert.severity not in self.alert_severities:
            return False
        if self.parameters and alert.parameter not in self.parameters:
            return False
        if self.devices and alert.device_id not in self.devices:
            return False
        if alert.severity != Severity.CRITICAL and self.in_quiet_hours(local_time):
            return False
        return True


def parse_recipient(raw: dict) -> RecipientPreference:
    if not isinstance(raw, dict):
        raise RecipientConfigError(f"recipient entry must be an object, got {type(raw).__name__}")
    email = raw.get("email")
    if not email or not isinstance(email, str):
        raise RecipientConfigError("recipient without email")

    try:
        severities = frozenset(Severity(s) for s in raw.get("alertSeverities") or []) or _DEFAULT_SEVERITIES
    except ValueError as e:
        raise RecipientConfigError(f"recipient {email}: {e}") from e

    parameters = set()
    for name in raw.get("parameters") or []:
        parameter = Parameter.parse(name)
        if parameter is None:
            raise RecipientConfigError(f"recipient {email}: unknown parameter {name!r}")
        parameters.add(parameter)

    start = end = None
    if raw.get("quietHoursEnabled") and raw.get("quietHoursStart") and raw.get("quietHoursEnd"):
        start = _parse_hhmm(raw["quietHoursStart"])
        end = _parse_hhmm(raw["quietHoursEnd"])

    return RecipientPreference(
        email=email,
        email_notifications=bool(raw.get("emailNotifications", True)),
        alert_severities=severities,
        parameters=frozenset(parameters),
        devices=frozenset(raw.get("devices") or []),
        quiet_hours_start=start,
        quiet_hours_end=end,
    )


def load_recipients(path: Optional[str]) -> list[RecipientPreference]:
    if not path:
        return []
    file = Path(path)
    if not file.exists():
        raise RecipientConfigError(f"recipients file not found: {path}")
    try:
        data = orjson.loads(file.read_bytes())
    except orjson.JSONDecodeError as e:
        raise RecipientConfigError(f"recipients file {path} is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise RecipientConfigError("recipients file must contain a JSON list")
    recipients = [parse_recipient(item) for item in data]
    logger.info("[NOTIFY] loaded %d recipients from %s", len(recipients), path)
    return recipients


class RecipientResolver:
    def __init__(self, preferences: Iterable[RecipientPreference] = (), tz: tzinfo = timezone.utc):
        self._preferences: Sequence[RecipientPreference] = tuple(preferences)
        self._tz = tz

    def __len__(self) -> int:
        return len(self._preferences)

    def resolve(self, alert: AlertRecord, now: datetime) -> list[str]:
        local_time = now.astimezone(self._tz).time()
        return [p.email for p in self._preferences if p.wants(alert, local_time)]
