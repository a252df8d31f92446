from __future__ import annotations

import csv
import os
import threading
from pathlib import Path
from typing import Dict, List

from scroll_harvester.core.models import EntityType, OutputRecord
from scroll_harvester.sinks.base import OutputSink
from scroll_harvester.utils.logging import get_logger

_USER_COLUMNS = ["displayName", "username", "profilePicUrl", "isPrivate", "isVerified", "sourceId"]

COLUMNS: Dict[EntityType, List[str]] = {
    EntityType.COMMENTS: ["postId", "text", "ownerId", "ownerIsVerified", "ownerUsername", "ownerProfilePicUrl"],
    EntityType.PROFILE_POSTS: ["queryUsername", "shortCode", "type", "caption", "url", "commentsCount", "likesCount", "ownerId", "displayUrl"],
    EntityType.HASHTAG_POSTS: ["queryTag", "shortCode", "type", "caption", "url", "commentsCount", "likesCount", "ownerId", "displayUrl"],
    EntityType.LOCATION_POSTS: ["queryLocation", "shortCode", "type", "caption", "url", "commentsCount", "likesCount", "ownerId", "displayUrl"],
    EntityType.FOLLOWERS: _USER_COLUMNS,
    EntityType.FOLLOWING: _USER_COLUMNS,
    EntityType.LIKERS: _USER_COLUMNS,
}


class CsvSink(OutputSink):
    """Sink that appends records to a CSV file with a fixed per-type header."""

    def __init__(self, path: str, entity_type: EntityType):
        self.path = path
        self.columns = ["id", "position", "timestamp"] + COLUMNS[entity_type]
        self._ensure_parent_dir(path)
        self._lock = threading.Lock()
        write_header = not self._file_has_content(path)
        self._file = open(path, "a", newline="", encoding="utf-8")
        self._writer = csv.DictWriter(self._file, fieldnames=self.columns, extrasaction="ignore")
        if write_header:
            self._writer.writeheader()
            self._file.flush()
        self.log = get_logger("scroll_harvester.sink.csv")

    def emit(self, record: OutputRecord) -> None:
        with self._lock:
            self._writer.writerow(record.to_dict())
            self._file.flush()
            os.fsync(self._file.fileno())

    def close(self) -> None:
        with self._lock:
            if not self._file.closed:
                self._file.close()
                self.log.info("CSV sink closed: path=%s", self.path)

    def _file_has_content(self, path: str) -> bool:
        return os.path.exists(path) and os.path.getsize(path) > 0

    def _ensure_parent_dir(self, path: str) -> None:
        parent = Path(path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
