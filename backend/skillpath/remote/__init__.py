"""Clients for the remote progress ledger and learning-path services."""

from .client import ApiClient
from .payloads import (
    RemotePathPayload,
    RemoteProgressPayload,
    completed_tasks_payload,
    parse_remote_path,
    parse_remote_progress,
    path_create_payload,
)
from .services import HttpLearningPathService, HttpProgressService, LearningPathService, ProgressService

__all__ = [
    "ApiClient",
    "HttpLearningPathService",
    "HttpProgressService",
    "LearningPathService",
    "ProgressService",
    "RemotePathPayload",
    "RemoteProgressPayload",
    "completed_tasks_payload",
    "parse_remote_path",
    "parse_remote_progress",
    "path_create_payload",
]
