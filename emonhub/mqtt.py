import json
from typing import Any, Callable, Dict, Optional
from paho.mqtt import client as mqtt
from pydantic import ValidationError
import logging

from emonhub.models import MeterReading

log = logging.getLogger(__name__)


class Mqtt:
    def __init__(self, cfg):
        self.cfg = cfg
        self.cli = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=cfg.client_id, clean_session=True)
        if cfg.username:
            self.cli.username_pw_set(cfg.username, cfg.password or "")
        self.cli.connect_async(cfg.host, cfg.port, keepalive=cfg.keepalive)
        self.cli.loop_start()

    def pub(self, topic: str, payload: Dict[str, Any], retain: bool = False):
        try:
            p = json.dumps(payload, separators=(",", ":"), default=str)
            log.debug("MQTT PUB %s %s", topic, p)
            self.cli.publish(topic, p, qos=0, retain=retain)
        except Exception as e:
            log.error(f"Failed to publish MQTT message to {topic}: {e}", exc_info=True)
            raise

    def sub(self, topic: str, handler: Callable[[str, Any], None]):
        def on_message(_cli, _ud, msg):
            try:
                data = json.loads(msg.payload.decode())
            except (UnicodeDecodeError, ValueError):
                handler(msg.topic, msg.payload.decode(errors="replace"))
                return
            handler(msg.topic, data)
        self.cli.subscribe(topic, qos=0)
        self.cli.message_callback_add(topic, on_message)

    def stop(self):
        self.cli.loop_stop()
        self.cli.disconnect()


def serial_from_topic(topic: str) -> Optional[str]:
    """Serial number segment of 'prefix/{serial}/readings'."""
    parts = topic.split("/")
    return parts[-2] if len(parts) >= 3 else None


def decode_readings(topic: str, payload: Any) -> Dict[str, MeterReading]:
    """
    Decode a readings payload into a {serial: MeterReading} map.

    The payload is either one reading (serial from the body or the topic) or a
    map of serial -> reading. Entries that fail validation are dropped.
    """
    if not isinstance(payload, dict):
        log.warning(f"Ignoring non-JSON readings payload on {topic}")
        return {}

    if "energy" in payload or "serialNumber" in payload:
        entries = {payload.get("serialNumber") or serial_from_topic(topic) or "": payload}
    else:
        entries = payload

    readings: Dict[str, MeterReading] = {}
    for serial, body in entries.items():
        if not isinstance(body, dict):
            continue
        body = dict(body)
        body.setdefault("serialNumber", serial)
        try:
            reading = MeterReading.model_validate(body)
        except ValidationError as e:
            log.warning(f"Dropping invalid reading for {serial} on {topic}: {e.error_count()} error(s)")
            continue
        readings[reading.serial_number] = reading
    return readings


class ReadingsFeed:
    """
    Keeps the latest reading per plug and hands the snapshot to a callback
    after every message.
    """

    def __init__(self, mqtt_client: Mqtt, topic: str, on_snapshot: Callable[[Dict[str, MeterReading]], None],
                 debug: bool = False):
        self.mqtt = mqtt_client
        self.topic = topic
        self.on_snapshot = on_snapshot
        self.debug = debug
        self.snapshot: Dict[str, MeterReading] = {}

    def start(self):
        self.mqtt.sub(self.topic, self.handle)
        log.info(f"Subscribed to readings on {self.topic}")

    def handle(self, topic: str, payload: Any):
        if self.debug:
            log.debug(f"MQTT message on {topic}: {payload}")
        readings = decode_readings(topic, payload)
        if not readings:
            return
        self.snapshot.update(readings)
        try:
            self.on_snapshot(dict(self.snapshot))
        except Exception as e:
            log.error(f"Readings handler failed for message on {topic}: {e}", exc_info=True)
