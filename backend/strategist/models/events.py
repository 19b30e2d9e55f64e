"""Control events interleaved with reply text on the turn stream."""

from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ActivityType(str, Enum):
    """Activity indicator phases shown while the backend works."""

    THINKING = "thinking"
    REASONING = "reasoning"
    SEARCHING = "searching"
    RECALLING = "recalling"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    EXTRACTING_MEMORIES = "extracting_memories"
    SAVING_MEMORIES = "saving_memories"
    PROFILE_EXTRACTING = "profile_extracting"


class StreamEvent(BaseModel):
    """Base control event.

    ``kind`` names the frame category on the wire; the payload keeps the
    camelCase keys the chat client reads.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    kind: ClassVar[str]

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the JSON payload carried by the frame."""
        return self.model_dump(mode="json", by_alias=True)


class ActivityEvent(StreamEvent):
    """Activity indicator; ``type=None`` clears the indicator."""

    kind: ClassVar[str] = "activity"

    type: ActivityType | None = None
    message: str = ""


class SearchMetadataEvent(StreamEvent):
    """Whether a web search ran this turn and what it cited."""

    kind: ClassVar[str] = "search_meta"

    type: Literal["search_metadata"] = "search_metadata"
    search_performed: bool = False
    citations: list[str] = Field(default_factory=list)
    search_query: str = ""


class MessageIdEvent(StreamEvent):
    """Server-assigned id of the persisted assistant message."""

    kind: ClassVar[str] = "message_id"

    message_id: str


class CappedFieldPayload(StreamEvent):
    field: str
    limit: int
    attempted: int


class ProfileUpdatedEvent(StreamEvent):
    """Fields changed by this turn's profile merge."""

    kind: ClassVar[str] = "profile_updated"

    changed_fields: list[str] = Field(default_factory=list)
    completeness: int = 0
    capped_fields: list[CappedFieldPayload] = Field(default_factory=list)


EVENT_TYPES: dict[str, type[StreamEvent]] = {
    cls.kind: cls
    for cls in (ActivityEvent, SearchMetadataEvent, MessageIdEvent, ProfileUpdatedEvent)
}
