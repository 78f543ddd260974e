"""Transportes de entrada (MQTT, HTTP) y decodificación de payloads."""

from .decoder import SUBSCRIPTIONS, decode_device_payload, decode_message, parse_topic
from .mqtt_receiver import MQTTDeviceReceiver

__all__ = [
    "SUBSCRIPTIONS",
    "decode_device_payload",
    "decode_message",
    "parse_topic",
    "MQTTDeviceReceiver",
]
