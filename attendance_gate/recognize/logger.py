import logging
import time
from pathlib import Path
from typing import Iterable, List, Optional
from .ports import FeedbackSink
from .types import FeedbackEvent, FeedbackStatus

logger = logging.getLogger(__name__)

class ActivityLogger:
    """
    Appends gate activity to a plain text file, one line per event:
    [YYYY-mm-dd HH:MM:SS] <label>: <activity>
    Usable as a FeedbackSink.
    """
    def __init__(self, log_file_path: str = "data/gate_activity.txt", log_hints: bool = False):
        self.log_file_path = Path(log_file_path)
        self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_hints = bool(log_hints)

    def log_activity(self, label: str, activity: str):
        """Log an activity with timestamp to the file."""
        timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
        log_entry = f"[{timestamp}] {label}: {activity}\n"
        try:
            with open(self.log_file_path, "a", encoding="utf-8") as f:
                f.write(log_entry)
        except OSError as e:
            logger.error(f"Error writing activity log {self.log_file_path}: {e}")

    def emit(self, event: FeedbackEvent):
        if event.status is FeedbackStatus.SUCCESS_IN:
            self.log_activity(event.label, "punched IN")
        elif event.status is FeedbackStatus.SUCCESS_OUT:
            self.log_activity(event.label, "punched OUT")
        elif self.log_hints:
            self.log_activity(event.label, f"hint {event.reason}")

class FeedbackFanout:
    """Forwards each event to every sink. One failing sink does not starve the rest."""
    def __init__(self, sinks: Optional[Iterable[FeedbackSink]] = None):
        self.sinks: List[FeedbackSink] = list(sinks or [])

    def add(self, sink: FeedbackSink):
        self.sinks.append(sink)

    def emit(self, event: FeedbackEvent):
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception as e:
                logger.error(f"Feedback sink {type(sink).__name__} failed: {e}")
