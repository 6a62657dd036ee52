"""Turn downloader and transcoder log lines into progress updates."""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import PurePath

logger = logging.getLogger(__name__)

# "[download] Downloading item 3 of 10", "Downloading video 1 of 119",
# "[Playlist] Some Title: Downloading 1 of 119"
ITEM_POSITION_RE = re.compile(r"(\d+)\s+of\s+(\d+)")

# "[download]  45.2% of 10.00MiB at 1.00MiB/s ETA 00:05"
PERCENT_RE = re.compile(r"\[download\]\s+(\d+\.?\d*)%")

DESTINATION_MARKER = "[download] Destination:"

# ffmpeg banner and status lines
DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
TIME_RE = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


@dataclass
class ProgressSnapshot:
    """Progress of the item currently being processed.

    ``percent`` is passed through as reported and may exceed 100; consumers
    clamp it.
    """

    current_item: int = 0
    total_items: int = 1
    percent: float = 0.0
    label: str = ""

    def reset(self) -> None:
        self.current_item = 0
        self.total_items = 1
        self.percent = 0.0
        self.label = ""

    def copy(self) -> "ProgressSnapshot":
        return replace(self)


LineParser = Callable[[str, ProgressSnapshot], bool]


def parse_item_position(line: str, snapshot: ProgressSnapshot) -> bool:
    match = ITEM_POSITION_RE.search(line)
    if not match:
        return False
    current, total = int(match.group(1)), int(match.group(2))
    # "1 of 1" says nothing about a playlist
    if total <= 1:
        return False
    if not 1 <= current <= total:
        logger.debug(f"Ignoring out-of-range item position: {line.strip()}")
        return False
    snapshot.current_item = current
    snapshot.total_items = total
    return True


def parse_percent(line: str, snapshot: ProgressSnapshot) -> bool:
    match = PERCENT_RE.search(line)
    if not match:
        return False
    try:
        snapshot.percent = float(match.group(1))
    except ValueError:
        return False
    return True


def parse_destination(line: str, snapshot: ProgressSnapshot) -> bool:
    index = line.find(DESTINATION_MARKER)
    if index < 0:
        return False
    path = line[index + len(DESTINATION_MARKER):].strip()
    if not path:
        return False
    # yt-dlp prints native paths; accept either separator
    snapshot.label = PurePath(path.replace("\\", "/")).name
    return True


def parse_line(line: str, snapshot: ProgressSnapshot) -> bool:
    """Apply every downloader pattern to ``line``.

    Returns True when the snapshot changed. Unrecognised lines are ignored.
    """
    updated = parse_item_position(line, snapshot)
    updated = parse_percent(line, snapshot) or updated
    return parse_destination(line, snapshot) or updated


def _seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class TranscodeProgressParser:
    """Derive percent-complete from ffmpeg's duration banner and status lines.

    Stateful: remembers the input duration, so use one instance per item.
    """

    def __init__(self, label: str = ""):
        self.label = label
        self.duration: float | None = None

    def __call__(self, line: str, snapshot: ProgressSnapshot) -> bool:
        updated = False
        if self.label and snapshot.label != self.label:
            snapshot.label = self.label
            updated = True

        if self.duration is None:
            match = DURATION_RE.search(line)
            if match:
                duration = _seconds(*match.groups())
                if duration > 0:
                    self.duration = duration
                    logger.debug(f"Input duration {duration:.2f}s")
            return updated

        match = TIME_RE.search(line)
        if not match:
            return updated
        snapshot.percent = _seconds(*match.groups()) / self.duration * 100
        return True
