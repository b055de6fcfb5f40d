import json
import logging
import time
from typing import Callable, Optional
import paho.mqtt.client as mqtt
from .recognize.types import FeedbackEvent

logger = logging.getLogger(__name__)

class MQTTManager:
    """
    Publishes gate feedback and a liveness heartbeat over MQTT so door
    displays, buzzers and dashboards can react. Usable as a FeedbackSink.
    """
    def __init__(
        self,
        broker: str = "localhost",
        port: int = 1883,
        kiosk_id: str = "gate-1",
        topic_prefix: str = "attendance",
        heartbeat_interval: float = 5.0,
        client: Optional[mqtt.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.broker = broker
        self.port = port
        self.kiosk_id = kiosk_id
        self.topic_prefix = topic_prefix
        self.heartbeat_interval = float(heartbeat_interval)
        self.clock = clock
        self._last_heartbeat: Optional[float] = None
        self._owns_client = client is None

        if client is None:
            client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            client.on_connect = self._on_connect
            client.on_disconnect = self._on_disconnect
            try:
                client.connect(self.broker, self.port, 60)
                client.loop_start()
            except OSError as e:
                logger.error(f"Failed to connect to MQTT broker {self.broker}:{self.port}: {e}")
        self.client = client

    @property
    def feedback_topic(self) -> str:
        return f"{self.topic_prefix}/{self.kiosk_id}/feedback"

    @property
    def heartbeat_topic(self) -> str:
        return f"{self.topic_prefix}/{self.kiosk_id}/heartbeat"

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        logger.info(f"MQTT connected: {reason_code}")
        if not reason_code.is_failure:
            self.publish_heartbeat()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        logger.warning(f"MQTT disconnected: {reason_code}")

    def _publish(self, topic: str, payload: dict):
        try:
            info = self.client.publish(topic, json.dumps(payload))
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                logger.warning(f"MQTT publish to {topic} returned rc={info.rc}")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to publish to {topic}: {e}")

    def emit(self, event: FeedbackEvent):
        payload = {
            "status": event.status.value,
            "label": event.label,
            "time": event.time.strftime("%H:%M:%S"),
            "timestamp": int(time.time()),
        }
        if event.reason is not None:
            payload["reason"] = event.reason
        self._publish(self.feedback_topic, payload)

    def publish_heartbeat(self):
        payload = {
            "node": self.kiosk_id,
            "status": "ONLINE",
            "timestamp": int(time.time()),
        }
        self._publish(self.heartbeat_topic, payload)
        self._last_heartbeat = self.clock()

    def maybe_heartbeat(self):
        """Publish a heartbeat if heartbeat_interval has passed since the last one."""
        now = self.clock()
        if self._last_heartbeat is None or now - self._last_heartbeat >= self.heartbeat_interval:
            self.publish_heartbeat()

    def stop(self):
        if self._owns_client:
            self.client.loop_stop()
            self.client.disconnect()
