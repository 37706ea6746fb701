"""Aggregation of raw post records into an analytics summary."""
from __future__ import annotations

from typing import Any, Protocol

import pandas as pd

from personagen.core.schema import AnalyticsSummary, EngagementStat, PostDigest

TEXT_COLUMNS = ["text", "full_text", "content", "body"]
CREATED_COLUMNS = ["created_at", "timestamp", "date", "time"]
ID_COLUMNS = ["id", "id_str", "post_id"]
ENGAGEMENT_COLUMNS = {
    "likes": ["likes", "like_count", "favorite_count", "favorites"],
    "reposts": ["reposts", "retweets", "retweet_count", "repost_count"],
    "replies": ["replies", "reply_count"],
}

TOP_TAGS = 10
TOP_POSTS = 5
SAMPLE_TEXTS = 20


class Aggregator(Protocol):
    """Contract for analytics aggregation."""

    def aggregate(self, records: list[dict[str, Any]], subject: str) -> AnalyticsSummary:
        """Summarise the raw records collected for ``subject``."""


def _find_column(dataframe: pd.DataFrame, candidates: list[str]) -> str | None:
    lowered = {str(column).strip().lower(): column for column in dataframe.columns}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None


def _numeric(dataframe: pd.DataFrame, candidates: list[str]) -> pd.Series:
    column = _find_column(dataframe, candidates)
    if column is None:
        return pd.Series(0, index=dataframe.index, dtype="int64")
    return pd.to_numeric(dataframe[column], errors="coerce").fillna(0).astype("int64")


def _top_tokens(texts: pd.Series, pattern: str) -> list[tuple[str, int]]:
    tokens = texts.str.findall(pattern).explode().dropna()
    if tokens.empty:
        return []
    counts = tokens.str.lower().value_counts().head(TOP_TAGS)
    return [(str(token), int(count)) for token, count in counts.items()]


def _isoformat(value: Any) -> str | None:
    if value is None or pd.isna(value):
        return None
    return value.isoformat()


class PandasAggregator:
    """Default aggregator; tolerant of the column spellings common in post exports."""

    def aggregate(self, records: list[dict[str, Any]], subject: str) -> AnalyticsSummary:
        frame = pd.DataFrame(records)
        if frame.empty:
            return AnalyticsSummary(subject=subject)

        text_column = _find_column(frame, TEXT_COLUMNS)
        if text_column is None:
            texts = pd.Series("", index=frame.index, dtype="object")
        else:
            texts = frame[text_column].fillna("").astype(str)

        created_column = _find_column(frame, CREATED_COLUMNS)
        if created_column is None:
            created = pd.Series(pd.NaT, index=frame.index, dtype="datetime64[ns, UTC]")
        else:
            created = pd.to_datetime(frame[created_column], utc=True, errors="coerce")

        metrics = {name: _numeric(frame, columns) for name, columns in ENGAGEMENT_COLUMNS.items()}
        engagement = {
            name: EngagementStat(total=int(series.sum()), mean=round(float(series.mean()), 2))
            for name, series in metrics.items()
        }

        hours = created.dropna().dt.hour.value_counts().sort_index()
        active_hours = {f"{int(hour):02d}": int(count) for hour, count in hours.items()}

        id_column = _find_column(frame, ID_COLUMNS)
        scored = pd.DataFrame(
            {
                "id": frame[id_column].map(lambda value: None if pd.isna(value) else str(value))
                if id_column
                else None,
                "text": texts,
                "created_at": created,
                **metrics,
            }
        )
        scored["score"] = scored["likes"] + scored["reposts"] + scored["replies"]
        top_posts = [
            PostDigest(
                id=row["id"] if isinstance(row["id"], str) else None,
                text=row["text"],
                created_at=_isoformat(row["created_at"]),
                likes=int(row["likes"]),
                reposts=int(row["reposts"]),
                replies=int(row["replies"]),
            )
            for _, row in scored[scored["text"].str.strip() != ""].nlargest(TOP_POSTS, "score").iterrows()
        ]

        non_empty = scored[scored["text"].str.strip() != ""].sort_values(
            "created_at", ascending=False, na_position="last"
        )

        return AnalyticsSummary(
            subject=subject,
            total_records=int(len(frame)),
            first_post_at=_isoformat(created.min()),
            last_post_at=_isoformat(created.max()),
            engagement=engagement,
            top_hashtags=_top_tokens(texts, r"#(\w+)"),
            top_mentions=_top_tokens(texts, r"@(\w+)"),
            active_hours=active_hours,
            top_posts=top_posts,
            sample_texts=non_empty["text"].head(SAMPLE_TEXTS).tolist(),
        )


_aggregator: Aggregator = PandasAggregator()


def configure_aggregator(aggregator: Aggregator) -> None:
    """Install the aggregator used by the pipeline."""

    global _aggregator
    _aggregator = aggregator


def get_aggregator() -> Aggregator:
    return _aggregator
