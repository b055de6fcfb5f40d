"""
Attendance gate kiosk loop.

Tick -> sample one frame -> anti-spoofing gate -> identity match ->
session controller (single-flight IN/OUT ledger write) -> feedback.

Run:
python -m attendance_gate.kiosk --roster data/db/roster.npz --ledger data/attendance.db

Signals:
SIGHUP : reload the roster from disk
Ctrl+C : stop (an in-flight ledger write is abandoned)
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional
import numpy as np

from .camera import CameraDetectionProvider
from .config import Config
from .ledger import SqliteLedger
from .mqtt_manager import MQTTManager
from .recognize.errors import AttendanceGateError, EmbeddingMismatch, ProviderUnavailable, RosterError
from .recognize.logger import ActivityLogger, FeedbackFanout
from .recognize.matcher import IdentityMatcher
from .recognize.ports import DetectionProvider, FeedbackSink, RosterSource
from .recognize.session import AttendanceSessionController, SessionContext
from .recognize.spoof_gate import AntiSpoofingGate
from .recognize.types import FeedbackEvent, FeedbackStatus, MatchResult
from .roster import NpzRoster
from .scheduler import Tick, TickScheduler

logger = logging.getLogger(__name__)

UNKNOWN_HINT = "UNKNOWN"

class KioskSession:
    def __init__(
        self,
        provider: DetectionProvider,
        gate: AntiSpoofingGate,
        matcher: IdentityMatcher,
        controller: AttendanceSessionController,
        sink: Optional[FeedbackSink] = None,
        tick_interval: float = 0.2,
        on_tick: Optional[Callable[[], None]] = None,
        on_stop: Optional[Callable[[], None]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.provider = provider
        self.gate = gate
        self.matcher = matcher
        self.controller = controller
        self.sink = sink
        self.tick_interval = float(tick_interval)
        self.on_tick = on_tick
        self.on_stop = on_stop
        self.clock = clock
        self.scheduler: Optional[TickScheduler] = None
        self._last_hint: Optional[str] = None
        self._sampling: Optional[asyncio.Future] = None
        self._mismatch_logged = False

    def _provider_dim(self) -> Optional[int]:
        return getattr(self.provider, "embedding_dim", None)

    def _check_dims(self, roster_dim: Optional[int]):
        provider_dim = self._provider_dim()
        if roster_dim is not None and provider_dim is not None and roster_dim != provider_dim:
            raise EmbeddingMismatch(
                f"Roster embeddings have {roster_dim} dims, detection model produces {provider_dim}"
            )

    def reload_roster(self, roster: RosterSource):
        """Swap in a new roster. A roster the provider cannot match against is refused."""
        identities = roster.list_enrolled_identities()
        if identities:
            self._check_dims(int(np.asarray(identities[0].embedding).size))
        self.matcher.reload(identities)
        self._mismatch_logged = False

    def _hint(self, reason: Optional[str]):
        """Passive UI hint, emitted only when it changes."""
        if reason == self._last_hint:
            return
        self._last_hint = reason
        if reason is None or self.sink is None:
            return
        label = "Unknown" if reason == UNKNOWN_HINT else "Gate"
        event = FeedbackEvent(status=FeedbackStatus.WARNING, label=label, time=self.clock().time(), reason=reason)
        try:
            self.sink.emit(event)
        except Exception as e:
            logger.error(f"Feedback sink failed: {e}")

    async def handle_tick(self, tick: Optional[Tick] = None) -> Optional[MatchResult]:
        """One detect-and-decide cycle. Returns the match when a face reached the matcher."""
        if self.on_tick is not None:
            self.on_tick()

        # shielded so stop() can wait for the worker thread before closing the provider
        self._sampling = asyncio.ensure_future(asyncio.to_thread(self.provider.sample_frame))
        sample = await asyncio.shield(self._sampling)
        # success display is on screen while the lock settles, keep hints off it
        busy = self.controller.context.is_locked(self.clock())

        if sample is None:
            self._hint(None)
            return None

        verdict = self.gate.evaluate(sample)
        if not verdict.passed:
            if not busy:
                self._hint(verdict.reason.value)
            return None

        try:
            match = self.matcher.match(sample.embedding)
        except EmbeddingMismatch as e:
            if not self._mismatch_logged:
                logger.error(f"Face treated as unknown: {e}")
                self._mismatch_logged = True
            match = MatchResult(identity=None, distance=float("inf"))
        if not match.accepted:
            if not busy:
                self._hint(UNKNOWN_HINT)
            return match

        self._hint(None)
        self.controller.offer(match)
        return match

    async def run(self, max_ticks: Optional[int] = None):
        """
        Open the provider and process ticks until cancelled or max_ticks.
        ProviderUnavailable propagates and ends the session.
        """
        self.provider.open()
        handled = 0
        try:
            self._check_dims(self.matcher.dim)
            self.scheduler = TickScheduler(self.tick_interval)
            self.scheduler.start()
            logger.info(f"Kiosk running: {len(self.matcher)} enrolled, tick every {self.tick_interval}s")
            while max_ticks is None or handled < max_ticks:
                tick = await self.scheduler.queue.get()
                await self.handle_tick(tick)
                handled += 1
        finally:
            await self.stop()

    async def stop(self):
        if self.scheduler is not None:
            await self.scheduler.stop()
            self.scheduler = None

        task = self.controller.pending
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self._sampling is not None:
            # a frame read may still be running in its worker thread
            await asyncio.gather(self._sampling, return_exceptions=True)
            self._sampling = None

        self.provider.close()
        if self.on_stop is not None:
            self.on_stop()
        logger.info("Kiosk stopped")

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Face recognition attendance gate kiosk")
    parser.add_argument("--roster", type=Path, help="roster .npz file")
    parser.add_argument("--ledger", type=Path, help="SQLite attendance ledger file")
    parser.add_argument("--camera", type=int, help="camera device index")
    parser.add_argument("--kiosk-id", help="kiosk identifier used in MQTT topics")
    parser.add_argument("--mqtt-broker", help="MQTT broker host")
    parser.add_argument("--no-mqtt", action="store_true", help="disable MQTT feedback")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    return parser.parse_args(argv)

def load_config(args: argparse.Namespace) -> Config:
    cfg = Config.from_env()
    if args.roster is not None:
        cfg.kiosk.roster_path = args.roster
    if args.ledger is not None:
        cfg.kiosk.ledger_path = args.ledger
    if args.camera is not None:
        cfg.kiosk.camera_index = args.camera
    if args.kiosk_id:
        cfg.kiosk.kiosk_id = args.kiosk_id
    if args.mqtt_broker:
        cfg.mqtt.broker = args.mqtt_broker
    if args.no_mqtt:
        cfg.mqtt.enabled = False
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    cfg.validate()
    return cfg

def build_session(cfg: Config, provider: Optional[DetectionProvider] = None) -> KioskSession:
    fanout = FeedbackFanout([ActivityLogger(str(cfg.kiosk.activity_log_path))])
    on_tick = None
    on_stop = None
    if cfg.mqtt.enabled:
        mqtt_manager = MQTTManager(
            broker=cfg.mqtt.broker,
            port=cfg.mqtt.port,
            kiosk_id=cfg.kiosk.kiosk_id,
            topic_prefix=cfg.mqtt.topic_prefix,
            heartbeat_interval=cfg.mqtt.heartbeat_interval,
        )
        fanout.add(mqtt_manager)
        on_tick = mqtt_manager.maybe_heartbeat
        on_stop = mqtt_manager.stop

    if provider is None:
        provider = CameraDetectionProvider(
            camera_index=cfg.kiosk.camera_index,
            detector_model=cfg.kiosk.detector_model_path,
            landmarker_model=cfg.kiosk.landmarker_model_path,
            embedder_model=cfg.kiosk.embedder_model_path,
        )

    controller = AttendanceSessionController(
        ledger=SqliteLedger(cfg.kiosk.ledger_path),
        sink=fanout,
        cooldown_duration=cfg.session.cooldown_duration,
        lock_release_delay=cfg.session.lock_release_delay,
        io_timeout=cfg.session.io_timeout,
        context=SessionContext(),
    )
    session = KioskSession(
        provider=provider,
        gate=AntiSpoofingGate(
            min_face_fraction=cfg.gate.min_face_fraction,
            min_confidence=cfg.gate.min_confidence,
            max_center_offset_fraction=cfg.gate.max_center_offset_fraction,
        ),
        matcher=IdentityMatcher(match_threshold=cfg.match.match_threshold),
        controller=controller,
        sink=fanout,
        tick_interval=cfg.kiosk.tick_interval,
        on_tick=on_tick,
        on_stop=on_stop,
    )
    session.reload_roster(NpzRoster(cfg.kiosk.roster_path))
    return session

async def _serve(session: KioskSession, roster: RosterSource):
    def reload():
        try:
            session.reload_roster(roster)
        except RosterError as e:
            logger.error(f"Roster reload failed, keeping previous roster: {e}")

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGHUP, reload)
    except (NotImplementedError, AttributeError):
        pass  # no SIGHUP on Windows
    await session.run()

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = load_config(args)
    except AttendanceGateError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, cfg.logging.level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        session = build_session(cfg)
        asyncio.run(_serve(session, NpzRoster(cfg.kiosk.roster_path)))
    except ProviderUnavailable as e:
        logger.critical(f"Detection provider unavailable, kiosk halted: {e}")
        return 1
    except AttendanceGateError as e:
        logger.critical(f"Kiosk failed to start: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0

if __name__ == "__main__":
    sys.exit(main())
