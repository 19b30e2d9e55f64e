"""Wire framing for turn streams.

A turn response is one ordered byte stream carrying reply text and control
events. Two framings are supported:

- NDJSON (default): one JSON object per line, ``{"kind": "text", "text": ...}``
  or ``{"kind": <event kind>, "data": {...}}``. A frame is complete only at
  its newline, so a reader never interprets half an event.
- Markers (legacy ``text/plain``): reply text interleaved with bracket tags
  such as ``[AI_ACTIVITY]{...}[/AI_ACTIVITY]``.

Both decoders are incremental: they accept arbitrary chunk splits and only
emit an event once its frame or marker is complete.
"""

import json
import re
from collections.abc import Iterable, Iterator
from typing import Any, Literal, Protocol

from strategist.models.events import StreamEvent

StreamFormat = Literal["ndjson", "markers"]

Frame = tuple[str, Any]

MARKER_TAGS: dict[str, str] = {
    "activity": "AI_ACTIVITY",
    "search_meta": "SEARCH_META",
    "message_id": "MESSAGE_ID",
    "profile_updated": "PROFILE_UPDATED",
}
_KIND_BY_TAG = {tag: kind for kind, tag in MARKER_TAGS.items()}
_OPEN_TAG = re.compile(r"\[(" + "|".join(MARKER_TAGS.values()) + r")\]")


def _marker_payload(body: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


class FrameEncoder(Protocol):
    media_type: str

    def encode_text(self, text: str) -> bytes: ...

    def encode_event(self, event: StreamEvent) -> bytes: ...


def _dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


class NdjsonFrameEncoder:
    """Newline-delimited JSON frames."""

    media_type = "application/x-ndjson"

    def encode_text(self, text: str) -> bytes:
        return (_dumps({"kind": "text", "text": text}) + "\n").encode("utf-8")

    def encode_event(self, event: StreamEvent) -> bytes:
        return (_dumps({"kind": event.kind, "data": event.to_payload()}) + "\n").encode("utf-8")


class MarkerFrameEncoder:
    """Legacy bracket-marker framing; each marker is written as one unit.

    Reply text is written unescaped, so a reply that itself contains a tag
    such as ``[AI_ACTIVITY]`` is ambiguous on the wire. Readers treat a tag
    whose body is not a JSON object as text, and hold back text after an
    unclosed tag until the closing tag or the end of the stream.
    """

    media_type = "text/plain; charset=utf-8"

    def encode_text(self, text: str) -> bytes:
        return text.encode("utf-8")

    def encode_event(self, event: StreamEvent) -> bytes:
        tag = MARKER_TAGS[event.kind]
        suffix = "\n" if event.kind == "search_meta" else ""
        return f"[{tag}]{_dumps(event.to_payload())}[/{tag}]{suffix}".encode()


def get_encoder(stream_format: StreamFormat) -> FrameEncoder:
    if stream_format == "markers":
        return MarkerFrameEncoder()
    return NdjsonFrameEncoder()


class NdjsonFrameDecoder:
    """Incremental NDJSON frame reader."""

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> Iterator[Frame]:
        """Consume a chunk and yield every frame it completes.

        Raises:
            ValueError: If a complete line is not a valid frame.
        """
        self._buffer += chunk
        while b"\n" in self._buffer:
            line, self._buffer = self._buffer.split(b"\n", 1)
            if not line.strip():
                continue
            try:
                frame = json.loads(line.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ValueError(f"Malformed stream frame: {line[:100]!r}") from e
            if frame.get("kind") == "text":
                yield ("text", frame.get("text", ""))
            else:
                yield (frame.get("kind", "unknown"), frame.get("data"))

    def close(self) -> Iterator[Frame]:
        """Flush a final frame that was not newline-terminated."""
        if self._buffer.strip():
            yield from self.feed(b"\n")
        self._buffer = b""


class MarkerFrameDecoder:
    """Incremental bracket-marker reader.

    Text is released only when it cannot be the start of a marker; a marker
    is released only once its closing tag has arrived.
    """

    _MAX_TAG = max(len(tag) for tag in MARKER_TAGS.values()) + 2

    def __init__(self) -> None:
        self._bytes = b""
        self._text = ""
        self._skip_newline = False

    def _decode_available(self) -> None:
        # Hold back an incomplete trailing UTF-8 sequence
        for cut in range(len(self._bytes), max(len(self._bytes) - 4, -1), -1):
            try:
                self._text += self._bytes[:cut].decode("utf-8")
            except UnicodeDecodeError:
                continue
            self._bytes = self._bytes[cut:]
            return

    def feed(self, chunk: bytes) -> Iterator[Frame]:
        """Consume a chunk and yield text runs and completed markers."""
        self._bytes += chunk
        self._decode_available()
        yield from self._drain(final=False)

    def close(self) -> Iterator[Frame]:
        """Flush remaining text; an unterminated marker is returned as text."""
        self._decode_available()
        yield from self._drain(final=True)
        if self._text:
            yield ("text", self._text)
        self._text = ""

    def _drain(self, final: bool) -> Iterator[Frame]:
        # The newline after SEARCH_META can arrive in a later chunk
        if self._skip_newline and self._text:
            self._skip_newline = False
            if self._text.startswith("\n"):
                self._text = self._text[1:]
        while self._text:
            match = _OPEN_TAG.search(self._text)
            if match is None:
                keep = 0 if final else self._partial_tag_suffix()
                emit = self._text[: len(self._text) - keep]
                if emit:
                    yield ("text", emit)
                self._text = self._text[len(self._text) - keep :]
                return

            if match.start() > 0:
                yield ("text", self._text[: match.start()])
                self._text = self._text[match.start() :]
                continue

            tag = match.group(1)
            closing = f"[/{tag}]"
            end = self._text.find(closing)
            if end == -1:
                return
            payload = _marker_payload(self._text[match.end() : end])
            if payload is None:
                # A tag without a JSON object body is literal reply text
                yield ("text", match.group(0))
                self._text = self._text[match.end() :]
                continue
            self._text = self._text[end + len(closing) :]
            if tag == "SEARCH_META":
                if self._text.startswith("\n"):
                    self._text = self._text[1:]
                elif not self._text:
                    self._skip_newline = True
            yield (_KIND_BY_TAG[tag], payload)

    def _partial_tag_suffix(self) -> int:
        """Length of a trailing fragment that could still grow into an open tag."""
        start = self._text.rfind("[", max(0, len(self._text) - self._MAX_TAG))
        if start == -1:
            return 0
        fragment = self._text[start:]
        if any(f"[{tag}]".startswith(fragment) for tag in MARKER_TAGS.values()):
            return len(fragment)
        return 0


def decode_stream(chunks: Iterable[bytes], stream_format: StreamFormat) -> list[Frame]:
    """Decode a whole chunked stream into frames."""
    decoder: NdjsonFrameDecoder | MarkerFrameDecoder = (
        MarkerFrameDecoder() if stream_format == "markers" else NdjsonFrameDecoder()
    )
    frames: list[Frame] = []
    for chunk in chunks:
        frames.extend(decoder.feed(chunk))
    frames.extend(decoder.close())
    return frames


def strip_control(chunks: Iterable[bytes] | bytes, stream_format: StreamFormat) -> str:
    """Return only the visible reply text carried by a stream."""
    if isinstance(chunks, bytes):
        chunks = [chunks]
    return "".join(payload for kind, payload in decode_stream(chunks, stream_format) if kind == "text")
