"""Single outbound channel for one turn.

The turn producer writes reply text and control events; the HTTP body
consumes encoded frames. Frames are queued as soon as they are produced.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable

from strategist.models.events import (
    ActivityEvent,
    ActivityType,
    CappedFieldPayload,
    MessageIdEvent,
    ProfileUpdatedEvent,
    SearchMetadataEvent,
    StreamEvent,
)
from strategist.models.profile import CappedField
from strategist.streaming.protocol import FrameEncoder

logger = logging.getLogger(__name__)

_QUEUE_SIZE = 256
# A consumer that accepts nothing for this long is treated as gone
_SEND_TIMEOUT_SECONDS = 30.0


class StreamMultiplexer:
    """Interleaves reply text with control events on one byte stream.

    ``transcript`` accumulates exactly the text that was framed, so the
    visible reply and the persisted assistant message never diverge.
    """

    def __init__(self, encoder: FrameEncoder, send_timeout: float = _SEND_TIMEOUT_SECONDS) -> None:
        self._encoder = encoder
        self._send_timeout = send_timeout
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=_QUEUE_SIZE)
        self._parts: list[str] = []
        self._search_meta_sent = False
        self._message_ids: set[str] = set()
        self._closed = False
        self.disconnected = False

    @property
    def media_type(self) -> str:
        return self._encoder.media_type

    @property
    def transcript(self) -> str:
        return "".join(self._parts)

    @property
    def closed(self) -> bool:
        return self._closed

    async def _enqueue(self, frame: bytes | None) -> bool:
        # The body generator may never start if the client leaves early
        try:
            await asyncio.wait_for(self._queue.put(frame), timeout=self._send_timeout)
        except (asyncio.TimeoutError, TimeoutError):
            self.disconnected = True
            logger.info(
                "Stream consumer stalled, dropping further frames",
                extra={"send_timeout_seconds": self._send_timeout},
            )
            return False
        return True

    async def _put(self, frame: bytes) -> bool:
        if self._closed or self.disconnected:
            return False
        return await self._enqueue(frame)

    async def write_text(self, text: str) -> None:
        """Queue a run of visible reply text."""
        if not text:
            return
        if await self._put(self._encoder.encode_text(text)):
            self._parts.append(text)

    async def emit(self, event: StreamEvent) -> bool:
        return await self._put(self._encoder.encode_event(event))

    async def activity(self, activity_type: ActivityType, message: str = "") -> None:
        await self.emit(ActivityEvent(type=activity_type, message=message))

    async def clear_activity(self) -> None:
        await self.emit(ActivityEvent(type=None, message=""))

    async def search_metadata(
        self,
        search_performed: bool,
        citations: Iterable[str] = (),
        search_query: str = "",
    ) -> bool:
        """Emit search metadata; only the first call in a turn is sent."""
        if self._search_meta_sent:
            return False
        self._search_meta_sent = True
        return await self.emit(
            SearchMetadataEvent(
                search_performed=search_performed,
                citations=list(citations),
                search_query=search_query,
            )
        )

    async def message_id(self, message_id: str) -> bool:
        """Announce a persisted message id; repeated ids are ignored."""
        if message_id in self._message_ids:
            return False
        self._message_ids.add(message_id)
        return await self.emit(MessageIdEvent(message_id=message_id))

    async def profile_updated(
        self,
        changed_fields: list[str],
        completeness: int,
        capped_fields: Iterable[CappedField] = (),
    ) -> None:
        await self.emit(
            ProfileUpdatedEvent(
                changed_fields=changed_fields,
                completeness=completeness,
                capped_fields=[CappedFieldPayload(**capped.to_dict()) for capped in capped_fields],
            )
        )

    async def close(self) -> None:
        """End the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if not self.disconnected:
            await self._enqueue(None)

    async def frames(self) -> AsyncIterator[bytes]:
        """Yield encoded frames until the producer closes the stream.

        If the consumer stops iterating first, the multiplexer is marked
        disconnected and any later writes are dropped.
        """
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    return
                yield frame
        finally:
            if not self._closed:
                self.disconnected = True
                logger.info("Client disconnected mid-stream")
            # Unblock a producer waiting on a full queue
            while not self._queue.empty():
                self._queue.get_nowait()
