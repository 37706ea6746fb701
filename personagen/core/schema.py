from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

EventKind = Literal["log", "info", "warning", "error"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogEvent(BaseModel):
    kind: EventKind
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)
    subject: str | None = None


class EngagementStat(BaseModel):
    total: int = 0
    mean: float = 0.0


class PostDigest(BaseModel):
    id: str | None = None
    text: str
    created_at: str | None = None
    likes: int = 0
    reposts: int = 0
    replies: int = 0


class AnalyticsSummary(BaseModel):
    subject: str
    total_records: int = 0
    first_post_at: str | None = None
    last_post_at: str | None = None
    engagement: dict[str, EngagementStat] = Field(default_factory=dict)
    top_hashtags: list[tuple[str, int]] = Field(default_factory=list)
    top_mentions: list[tuple[str, int]] = Field(default_factory=list)
    active_hours: dict[str, int] = Field(default_factory=dict)
    top_posts: list[PostDigest] = Field(default_factory=list)
    sample_texts: list[str] = Field(default_factory=list)


class CharacterProfile(BaseModel):
    """Character document used verbatim as chat context.

    Older character files use ``handler`` and ``forum_*_system_prompt`` keys;
    both spellings are accepted on input. Unknown keys are kept.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    handle: str = Field(validation_alias=AliasChoices("handle", "handler"))
    bio: str
    description: str
    system_prompt_prefix: str = Field(
        default="",
        validation_alias=AliasChoices("system_prompt_prefix", "forum_start_system_prompt"),
    )
    system_prompt_suffix: str = Field(
        default="",
        validation_alias=AliasChoices("system_prompt_suffix", "forum_end_system_prompt"),
    )

    def system_context(self) -> str:
        return f"{self.system_prompt_prefix}\n\n{self.description}\n\n{self.system_prompt_suffix}"
