"""Frontera de transporte: topic + bytes -> eventos tipados.

Cualquier mensaje se resuelve aquí, una sola vez, a la unión cerrada
InboundEvent. Lo que no se puede interpretar sale como UnknownEvent (no
se lanza).

Topics:
    devices/{id}/data        -> Reading (uno por parámetro presente)
    devices/{id}/register    -> DeviceRegistration  (alias: registration)
    devices/{id}/presence    -> DeviceHeartbeat
    devices/{id}/status      -> DeviceStatusReport  (last-will)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

import orjson
from pydantic import ValidationError

from ..domain.events import (
    DeviceHeartbeat,
    DeviceRegistration,
    DeviceStatusReport,
    InboundEvent,
    Parameter,
    Reading,
    UnknownEvent,
)
from .schemas import (
    BatchPayload,
    PresencePayload,
    RegistrationPayload,
    SensorDataPayload,
    SingleReadingPayload,
    StatusPayload,
)

logger = logging.getLogger(__name__)

TOPIC_PREFIX = "devices"
SUBSCRIPTIONS = (
    "devices/+/data",
    "devices/+/register",
    "devices/+/registration",
    "devices/+/presence",
    "devices/+/status",
)

_KIND_ALIASES = {"registration": "register"}


def parse_topic(topic: str) -> Optional[tuple[str, str]]:
    """devices/{id}/{kind} -> (device_id, kind). None si no coincide."""
    parts = topic.split("/")
    if len(parts) != 3 or parts[0] != TOPIC_PREFIX or not parts[1]:
        return None
    kind = _KIND_ALIASES.get(parts[2], parts[2])
    return parts[1], kind


def _readings_from_sensor_data(device_id: str, data: SensorDataPayload, now: datetime) -> list[Reading]:
    ts = data.timestamp_or(now)
    fields = (
        (Parameter.PH, data.ph, data.ph_valid),
        (Parameter.TDS, data.tds, data.tds_valid),
        (Parameter.TURBIDITY, data.turbidity, data.turbidity_valid),
        (Parameter.TEMPERATURE, data.temperature, data.temperature_valid),
    )
    return [
        Reading(device_id=device_id, parameter=p, value=v, validity_flag=valid, timestamp=ts)
        for p, v, valid in fields
        if v is not None
    ]


def _decode_reading_item(device_id: str, item: dict[str, Any], now: datetime, source: str) -> list[InboundEvent]:
    try:
        if "parameter" in item:
            single = SingleReadingPayload.model_validate(item)
            parameter = Parameter.parse(single.parameter)
            if parameter is None:
                return [UnknownEvent(source, f"unknown parameter {single.parameter!r}", item)]
            return [
                Reading(
                    device_id=device_id,
                    parameter=parameter,
                    value=single.value,
                    validity_flag=single.valid,
                    timestamp=single.timestamp_or(now),
                )
            ]

        data = SensorDataPayload.model_validate(item)
    except ValidationError as e:
        return [UnknownEvent(source, f"invalid sensor payload: {e.error_count()} errors", item)]

    if not data.has_any_value():
        return [UnknownEvent(source, "sensor payload without values", item)]
    return list(_readings_from_sensor_data(device_id, data, now))


def decode_device_payload(
    device_id: str,
    kind: str,
    data: Any,
    now: Optional[datetime] = None,
    source: Optional[str] = None,
) -> list[InboundEvent]:
    """Decodifica un payload ya parseado (dict) de un tipo de mensaje."""
    now = now or datetime.now(timezone.utc)
    source = source or f"{TOPIC_PREFIX}/{device_id}/{kind}"

    if not isinstance(data, dict):
        return [UnknownEvent(source, "payload is not a JSON object", data)]

    try:
        if kind == "data":
            if "readings" in data:
                batch = BatchPayload.model_validate(data)
                events: list[InboundEvent] = []
                for item in batch.readings:
                    events.extend(_decode_reading_item(device_id, item, now, source))
                return events
            return _decode_reading_item(device_id, data, now, source)

        if kind == "register":
            reg = RegistrationPayload.model_validate(data)
            return [
                DeviceRegistration(
                    device_id=device_id,
                    timestamp=reg.timestamp_or(now),
                    name=reg.name,
                    device_type=reg.device_type,
                    firmware_version=reg.firmware_version,
                    sensors=tuple(reg.sensors),
                    location=reg.location_text(),
                )
            ]

        if kind == "presence":
            presence = PresencePayload.model_validate(data)
            return [DeviceHeartbeat(device_id=device_id, timestamp=presence.timestamp_or(now))]

        if kind == "status":
            status = StatusPayload.model_validate(data)
            return [
                DeviceStatusReport(
                    device_id=device_id,
                    online=status.status == "online",
                    timestamp=status.timestamp_or(now),
                )
            ]
    except ValidationError as e:
        return [UnknownEvent(source, f"invalid {kind} payload: {e.error_count()} errors", data)]

    return [UnknownEvent(source, f"unsupported message kind {kind!r}", data)]


def decode_message(
    topic: str,
    payload: Union[bytes, str],
    now: Optional[datetime] = None,
) -> list[InboundEvent]:
    """Decodifica un mensaje MQTT completo."""
    parsed_topic = parse_topic(topic)
    if parsed_topic is None:
        return [UnknownEvent(topic, "invalid topic format", payload)]
    device_id, kind = parsed_topic

    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        logger.debug("[DECODER] invalid JSON topic=%s err=%s", topic, e)
        return [UnknownEvent(topic, "invalid JSON", payload)]

    return decode_device_payload(device_id, kind, data, now=now, source=topic)
