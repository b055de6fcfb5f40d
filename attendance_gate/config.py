"""
Configuration for the attendance gate kiosk.

Defaults are the production values. Environment variables (GATE_*) override
them, and kiosk CLI flags override the environment.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, TypeVar

from .recognize.errors import ConfigError

T = TypeVar("T")

@dataclass
class GateConfig:
    """Anti-spoofing thresholds. Depend on camera placement and lighting."""
    min_face_fraction: float = 0.15
    min_confidence: float = 0.8
    max_center_offset_fraction: float = 0.30

@dataclass
class MatchConfig:
    match_threshold: float = 0.45  # L2 distance, lower is stricter

@dataclass
class SessionConfig:
    cooldown_duration: float = 30 * 60.0  # seconds
    lock_release_delay: float = 4.0
    io_timeout: float = 5.0

@dataclass
class KioskConfig:
    tick_interval: float = 0.2
    camera_index: int = 0
    kiosk_id: str = "gate-1"
    roster_path: Path = Path("data/db/roster.npz")
    ledger_path: Path = Path("data/attendance.db")
    activity_log_path: Path = Path("data/gate_activity.txt")
    detector_model_path: Path = Path("models/blaze_face_short_range.tflite")
    landmarker_model_path: Path = Path("models/face_landmarker.task")
    embedder_model_path: Path = Path("models/embedder_arcface.onnx")

@dataclass
class MQTTConfig:
    enabled: bool = True
    broker: str = "localhost"
    port: int = 1883
    topic_prefix: str = "attendance"
    heartbeat_interval: float = 5.0

@dataclass
class LoggingConfig:
    level: str = "INFO"

@dataclass
class Config:
    gate: GateConfig = field(default_factory=GateConfig)
    match: MatchConfig = field(default_factory=MatchConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    kiosk: KioskConfig = field(default_factory=KioskConfig)
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "Config":
        """Build a validated config from defaults plus GATE_* variables."""
        env = os.environ if environ is None else environ
        cfg = cls()

        def read(name: str, cast: Callable[[str], T], current: T) -> T:
            raw = env.get(f"GATE_{name}")
            if raw is None or raw == "":
                return current
            try:
                return cast(raw)
            except ValueError as e:
                raise ConfigError(f"GATE_{name}={raw!r} is not valid: {e}") from e

        cfg.gate.min_face_fraction = read("MIN_FACE_FRACTION", float, cfg.gate.min_face_fraction)
        cfg.gate.min_confidence = read("MIN_CONFIDENCE", float, cfg.gate.min_confidence)
        cfg.gate.max_center_offset_fraction = read(
            "MAX_CENTER_OFFSET_FRACTION", float, cfg.gate.max_center_offset_fraction
        )
        cfg.match.match_threshold = read("MATCH_THRESHOLD", float, cfg.match.match_threshold)
        cfg.session.cooldown_duration = read("COOLDOWN_SECONDS", float, cfg.session.cooldown_duration)
        cfg.session.lock_release_delay = read("LOCK_RELEASE_DELAY", float, cfg.session.lock_release_delay)
        cfg.session.io_timeout = read("IO_TIMEOUT", float, cfg.session.io_timeout)
        cfg.kiosk.tick_interval = read("TICK_INTERVAL", float, cfg.kiosk.tick_interval)
        cfg.kiosk.camera_index = read("CAMERA_INDEX", int, cfg.kiosk.camera_index)
        cfg.kiosk.kiosk_id = read("KIOSK_ID", str, cfg.kiosk.kiosk_id)
        cfg.kiosk.roster_path = read("ROSTER_PATH", Path, cfg.kiosk.roster_path)
        cfg.kiosk.ledger_path = read("LEDGER_PATH", Path, cfg.kiosk.ledger_path)
        cfg.kiosk.activity_log_path = read("ACTIVITY_LOG", Path, cfg.kiosk.activity_log_path)
        cfg.kiosk.detector_model_path = read("DETECTOR_MODEL", Path, cfg.kiosk.detector_model_path)
        cfg.kiosk.landmarker_model_path = read("LANDMARKER_MODEL", Path, cfg.kiosk.landmarker_model_path)
        cfg.kiosk.embedder_model_path = read("EMBEDDER_MODEL", Path, cfg.kiosk.embedder_model_path)
        cfg.mqtt.enabled = read("MQTT_ENABLED", _parse_bool, cfg.mqtt.enabled)
        cfg.mqtt.broker = read("MQTT_BROKER", str, cfg.mqtt.broker)
        cfg.mqtt.port = read("MQTT_PORT", int, cfg.mqtt.port)
        cfg.mqtt.topic_prefix = read("MQTT_TOPIC_PREFIX", str, cfg.mqtt.topic_prefix)
        cfg.logging.level = read("LOG_LEVEL", str.upper, cfg.logging.level)

        cfg.validate()
        return cfg

    def validate(self) -> None:
        errors = []

        for name in ("min_face_fraction", "max_center_offset_fraction"):
            value = getattr(self.gate, name)
            if not 0.0 < value <= 1.0:
                errors.append(f"gate.{name} must be in (0, 1], got {value}")
        if not 0.0 <= self.gate.min_confidence <= 1.0:
            errors.append(f"gate.min_confidence must be in [0, 1], got {self.gate.min_confidence}")

        if self.match.match_threshold <= 0:
            errors.append("match.match_threshold must be positive")

        for name in ("cooldown_duration", "lock_release_delay"):
            if getattr(self.session, name) < 0:
                errors.append(f"session.{name} must be non-negative")
        if self.session.io_timeout <= 0:
            errors.append("session.io_timeout must be positive")

        if self.kiosk.tick_interval <= 0:
            errors.append("kiosk.tick_interval must be positive")
        if self.kiosk.camera_index < 0:
            errors.append("kiosk.camera_index must be non-negative")

        if self.mqtt.heartbeat_interval <= 0:
            errors.append("mqtt.heartbeat_interval must be positive")

        if self.logging.level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"logging.level {self.logging.level!r} is not a logging level")

        if errors:
            raise ConfigError("; ".join(errors))

def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError("expected true/false")
