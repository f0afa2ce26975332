"""
Messages exchanged between the main process and the report worker.

Requests (main -> worker): init, push, flush, destroy.
Responses (worker -> main): ready, sent, error, offline.

Messages cross the process boundary as plain dicts (``model_dump()``) and
are validated on arrival with ``parse_request`` / ``parse_response``.
"""

from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class WorkerConfig(BaseModel):
    dsn: str
    report_url: str
    batch_size: int = 10
    report_interval: int = 5000
    request_timeout: float = 10.0


class InitMessage(BaseModel):
    type: Literal["init"] = "init"
    config: WorkerConfig


class PushMessage(BaseModel):
    type: Literal["push"] = "push"
    data: Dict[str, Any]


class FlushMessage(BaseModel):
    type: Literal["flush"] = "flush"


class DestroyMessage(BaseModel):
    type: Literal["destroy"] = "destroy"


class ReadyMessage(BaseModel):
    type: Literal["ready"] = "ready"


class SentMessage(BaseModel):
    type: Literal["sent"] = "sent"
    count: int


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str
    network: bool = False


class OfflineMessage(BaseModel):
    """A batch the worker could not deliver; the main process persists it."""

    type: Literal["offline"] = "offline"
    count: int
    created_at: int
    events: List[Dict[str, Any]]


WorkerRequest = Annotated[
    Union[InitMessage, PushMessage, FlushMessage, DestroyMessage],
    Field(discriminator="type"),
]
WorkerResponse = Annotated[
    Union[ReadyMessage, SentMessage, ErrorMessage, OfflineMessage],
    Field(discriminator="type"),
]

_request_adapter = TypeAdapter(WorkerRequest)
_response_adapter = TypeAdapter(WorkerResponse)


def parse_request(data: Dict[str, Any]):
    return _request_adapter.validate_python(data)


def parse_response(data: Dict[str, Any]):
    return _response_adapter.validate_python(data)
