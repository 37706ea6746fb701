"""Application services."""

from .chat import ChatGateway, get_chat_gateway
from .jobs import (
    JobService,
    get_event_hub,
    get_job_repository,
    get_job_service,
    reset_job_state,
)

__all__ = [
    "ChatGateway",
    "JobService",
    "get_chat_gateway",
    "get_event_hub",
    "get_job_repository",
    "get_job_service",
    "reset_job_state",
]
