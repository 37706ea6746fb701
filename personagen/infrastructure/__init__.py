"""Infrastructure layer exports."""

from .analytics import Aggregator, PandasAggregator, configure_aggregator, get_aggregator
from .characters import (
    CharacterDeriver,
    InferenceCharacterDeriver,
    configure_character_deriver,
    get_character_deriver,
)
from .collectors import (
    Collector,
    DirectoryCollector,
    HttpCollector,
    configure_collector,
    get_collector,
)
from .events import LogBroadcastHub, Subscription
from .inference import (
    InferenceClient,
    OpenAIChatClient,
    configure_inference_client,
    get_inference_client,
)
from .jobs import InMemoryJobRepository, JobRepository

__all__ = [
    "Aggregator",
    "CharacterDeriver",
    "Collector",
    "DirectoryCollector",
    "HttpCollector",
    "InMemoryJobRepository",
    "InferenceCharacterDeriver",
    "InferenceClient",
    "JobRepository",
    "LogBroadcastHub",
    "OpenAIChatClient",
    "PandasAggregator",
    "Subscription",
    "configure_aggregator",
    "configure_character_deriver",
    "configure_collector",
    "configure_inference_client",
    "get_aggregator",
    "get_character_deriver",
    "get_collector",
    "get_inference_client",
]
