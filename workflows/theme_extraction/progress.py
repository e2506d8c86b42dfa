"""Progress events for running extractions.

Each extraction request gets its own channel keyed by request id. The
orchestrator opens the channel when a request starts and closes it when the
request completes, fails or is cancelled. Subscribers receive every event
published on the channel (including ones published before they subscribed)
and their iteration ends when the channel closes.
"""

import asyncio
import html
import logging
import re
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from workflows.theme_extraction.types import (
    ExtractionProgress,
    ExtractionStage,
    LiveStats,
    ProgressStatus,
)

logger = logging.getLogger(__name__)

MAX_HISTORY = 1000
MAX_TITLE_CHARS = 60

# Share of overall progress covered by each stage, as (start, end) percentages
STAGE_PROGRESS: dict[ExtractionStage, tuple[float, float]] = {
    ExtractionStage.FAMILIARIZATION: (0.0, 20.0),
    ExtractionStage.CODING: (20.0, 50.0),
    ExtractionStage.GENERATION: (50.0, 65.0),
    ExtractionStage.REVIEW: (65.0, 75.0),
    ExtractionStage.LABELING: (75.0, 95.0),
    ExtractionStage.AGGREGATION: (95.0, 100.0),
}

_CLOSED = object()
_TAG_RE = re.compile(r"<[^>]+>")


def sanitize_title(title: Optional[str], max_chars: int = MAX_TITLE_CHARS) -> str:
    """Plain, single-line title suitable for a progress message."""
    if not title:
        return "Untitled"
    text = html.unescape(_TAG_RE.sub("", title))
    text = " ".join(text.split())
    if len(text) > max_chars:
        text = text[: max_chars - 3].rstrip() + "..."
    return text or "Untitled"


@dataclass
class _Channel:
    history: deque = field(default_factory=lambda: deque(maxlen=MAX_HISTORY))
    subscribers: list[asyncio.Queue] = field(default_factory=list)
    closed: bool = False


class ProgressBroadcaster:
    """Per-request pub/sub for ExtractionProgress events."""

    def __init__(self):
        self._channels: dict[str, _Channel] = {}

    def open(self, request_id: str) -> None:
        channel = self._channels.get(request_id)
        if channel is None or channel.closed:
            self._channels[request_id] = _Channel()
        logger.debug(f"Opened progress channel {request_id}")

    def is_open(self, request_id: str) -> bool:
        channel = self._channels.get(request_id)
        return channel is not None and not channel.closed

    def publish(self, event: ExtractionProgress) -> None:
        channel = self._channels.get(event.request_id)
        if channel is None or channel.closed:
            logger.debug(f"Dropping progress event for closed channel {event.request_id}")
            return
        channel.history.append(event)
        for queue in channel.subscribers:
            queue.put_nowait(event)

    def close(self, request_id: str) -> None:
        channel = self._channels.get(request_id)
        if channel is None or channel.closed:
            return
        channel.closed = True
        for queue in channel.subscribers:
            queue.put_nowait(_CLOSED)
        channel.subscribers.clear()
        logger.debug(f"Closed progress channel {request_id} after {len(channel.history)} events")

    def discard(self, request_id: str) -> None:
        """Forget a closed channel and its history."""
        channel = self._channels.get(request_id)
        if channel is not None and channel.closed:
            del self._channels[request_id]

    def history(self, request_id: str) -> list[ExtractionProgress]:
        channel = self._channels.get(request_id)
        return list(channel.history) if channel else []

    async def subscribe(self, request_id: str) -> AsyncIterator[ExtractionProgress]:
        """Iterate over a request's events until its channel closes.

        Subscribing before the request starts is allowed; the channel is
        created and later reused by ``open``.
        """
        channel = self._channels.setdefault(request_id, _Channel())
        backlog = list(channel.history)
        if channel.closed:
            for event in backlog:
                yield event
            return

        queue: asyncio.Queue = asyncio.Queue()
        channel.subscribers.append(queue)
        try:
            for event in backlog:
                yield event
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in channel.subscribers:
                channel.subscribers.remove(queue)

    @asynccontextmanager
    async def channel(self, request_id: str):
        """Open a channel for the duration of the block."""
        self.open(request_id)
        try:
            yield self
        finally:
            self.close(request_id)


class ProgressReporter:
    """Publishes events for one request, mapping stage fractions to overall percentage."""

    def __init__(
        self,
        broadcaster: Optional[ProgressBroadcaster],
        request_id: str,
        user_id: Optional[str] = None,
    ):
        self.broadcaster = broadcaster
        self.request_id = request_id
        self.user_id = user_id
        self._last_stats = LiveStats()
        self._last_event: Optional[ExtractionProgress] = None

    @property
    def last_stats(self) -> LiveStats:
        return self._last_stats

    def emit(
        self,
        stage: ExtractionStage,
        fraction: float,
        message: str,
        live_stats: Optional[LiveStats] = None,
        status: ProgressStatus = "running",
        item_id: Optional[str] = None,
    ) -> ExtractionProgress:
        start, end = STAGE_PROGRESS[stage]
        fraction = min(1.0, max(0.0, fraction))
        if live_stats is not None:
            self._last_stats = live_stats
        event = ExtractionProgress(
            request_id=self.request_id,
            user_id=self.user_id,
            stage=stage,
            stage_number=stage.number,
            percentage=start + (end - start) * fraction,
            message=message,
            live_stats=self._last_stats,
            status=status,
            item_id=item_id,
        )
        if self.broadcaster is not None:
            self.broadcaster.publish(event)
        self._last_event = event
        return event

    def finish(self, status: ProgressStatus, message: str) -> ExtractionProgress:
        """Terminal event at wherever the request got to."""
        last = self._last_event
        stage = last.stage if last else ExtractionStage.FAMILIARIZATION
        event = ExtractionProgress(
            request_id=self.request_id,
            user_id=self.user_id,
            stage=stage,
            stage_number=stage.number,
            percentage=last.percentage if last else 0.0,
            message=message,
            live_stats=self._last_stats,
            status=status,
        )
        if self.broadcaster is not None:
            self.broadcaster.publish(event)
        self._last_event = event
        return event


class LiveStatsCounter:
    """Single writer for the familiarization counters.

    Workers never touch the counters directly; each completed or failed source
    is recorded through one synchronous call that returns an immutable
    snapshot. Calls run on the event loop thread with no await inside, so
    counts only ever grow and each snapshot is consistent.
    """

    def __init__(self, total_articles: int):
        self.total_articles = total_articles
        self._analyzed = 0
        self._full_text = 0
        self._abstracts = 0
        self._words = 0
        self._failed = 0

    def record_source(self, title: str, is_full_text: bool, words: int) -> LiveStats:
        self._analyzed += 1
        self._words += words
        if is_full_text:
            self._full_text += 1
        else:
            self._abstracts += 1
        return self.snapshot(
            current_operation="Reading full text" if is_full_text else "Reading abstract",
            article_title=sanitize_title(title),
            article_type="full-text" if is_full_text else "abstract",
            article_words=words,
        )

    def record_failure(self, title: str) -> LiveStats:
        self._analyzed += 1
        self._failed += 1
        return self.snapshot(
            current_operation="Skipped source",
            article_title=sanitize_title(title),
        )

    @property
    def processed(self) -> int:
        return self._analyzed

    def snapshot(self, **extra) -> LiveStats:
        return LiveStats(
            sources_analyzed=self._analyzed - self._failed,
            full_text_read=self._full_text,
            abstracts_read=self._abstracts,
            total_words_read=self._words,
            current_article=self._analyzed,
            total_articles=self.total_articles,
            failed_items=self._failed,
            **extra,
        )
