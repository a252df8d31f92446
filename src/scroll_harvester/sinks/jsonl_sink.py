import json
import os
import threading
from pathlib import Path

from scroll_harvester.core.models import OutputRecord
from scroll_harvester.sinks.base import OutputSink
from scroll_harvester.utils.logging import get_logger


class JsonlSink(OutputSink):
    """Sink that appends records to a JSONL (JSON Lines) file, one fsync per record."""

    def __init__(self, path: str = "output/records.jsonl"):
        self.path = path
        parent = Path(path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._file = open(path, "a", encoding="utf-8")
        self.log = get_logger("scroll_harvester.sink.jsonl")

    def emit(self, record: OutputRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False, default=str)
        with self._lock:
            self._file.write(line + "\n")
            self._file.flush()
            os.fsync(self._file.fileno())

    def close(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.close()
                self.log.info("JSONL sink closed: path=%s", self.path)
