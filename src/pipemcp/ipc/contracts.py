"""Request/response envelope types exchanged over the pipes.

Each envelope is one line of compact JSON tagged by its ``type`` field.  The
core only relies on the routing fields (``client_id``, ``message_id``) and on
``is_lifecycle_signal``; tool names, arguments and payloads stay opaque.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    TypeAdapter,
    ValidationError,
)

from pipemcp.ipc.errors import EnvelopeDecodeError


def validate_client_id(value: str) -> str:
    """Reject ids that cannot be used as one file-name component."""
    if value in {".", ".."} or "/" in value or "\0" in value:
        msg = f"client id {value!r} is not a valid file-name component"
        raise ValueError(msg)
    return value


ClientId = Annotated[
    str,
    Field(min_length=1, description="Identifier of one helper process"),
    AfterValidator(validate_client_id),
]


def new_client_id() -> str:
    return uuid4().hex


def new_message_id() -> str:
    return uuid4().hex


def correlation_key(client_id: str, message_id: str) -> str:
    """Composite key identifying one in-flight call."""
    return f"{client_id}:{message_id}"


class _Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    def to_wire(self) -> str:
        """Serialise as a single compact JSON line (without the delimiter)."""
        return self.model_dump_json()


# ---------------------------------------------------------------------------
# Requests (helper -> host)
# ---------------------------------------------------------------------------


class _LifecycleRequest(_Envelope):
    """Routing signal without a correlated response."""

    client_id: ClientId

    @property
    def message_id(self) -> None:
        return None

    @property
    def is_lifecycle_signal(self) -> bool:
        return True


class InitializeRequest(_LifecycleRequest):
    """Asks the host to open this helper's response channel."""

    type: Literal["initialize"] = "initialize"


class DeinitializeRequest(_LifecycleRequest):
    """Asks the host to tear down this helper's response channel."""

    type: Literal["deinitialize"] = "deinitialize"


class _CorrelatedRequestBase(_Envelope):
    client_id: ClientId
    message_id: str = Field(default_factory=new_message_id)

    @property
    def is_lifecycle_signal(self) -> bool:
        return False


class ListToolsRequest(_CorrelatedRequestBase):
    """Asks the host for the metadata of every tool it serves."""

    type: Literal["list_tools"] = "list_tools"


class CallToolRequest(_CorrelatedRequestBase):
    """Invokes one tool on the host."""

    type: Literal["call_tool"] = "call_tool"
    tool_name: str = Field(description="Name of the tool to invoke")
    arguments: dict[str, Any] = Field(
        default_factory=dict,
        description="Tool-specific arguments",
    )


RequestEnvelope = Annotated[
    InitializeRequest | DeinitializeRequest | ListToolsRequest | CallToolRequest,
    Field(discriminator="type"),
]
CorrelatedRequest = ListToolsRequest | CallToolRequest


# ---------------------------------------------------------------------------
# Responses (host -> helper)
# ---------------------------------------------------------------------------


class ResultResponse(_Envelope):
    """Successful completion of a correlated request."""

    type: Literal["result"] = "result"
    client_id: ClientId
    message_id: str
    payload: JsonValue = None

    @staticmethod
    def success(request: CorrelatedRequest, payload: JsonValue = None) -> ResultResponse:
        """Create a result echoing the routing fields of *request*."""
        return ResultResponse(
            client_id=request.client_id,
            message_id=request.message_id,
            payload=payload,
        )


class ErrorResponse(_Envelope):
    """Application-level failure of a correlated request."""

    type: Literal["error"] = "error"
    client_id: ClientId
    message_id: str
    message: str

    @staticmethod
    def failure(request: CorrelatedRequest, message: str) -> ErrorResponse:
        """Create an error echoing the routing fields of *request*."""
        return ErrorResponse(
            client_id=request.client_id,
            message_id=request.message_id,
            message=message,
        )


ResponseEnvelope = Annotated[
    ResultResponse | ErrorResponse,
    Field(discriminator="type"),
]


def _empty_object_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


class ToolMetadata(BaseModel):
    """Description of one tool, as carried in a ``list_tools`` result."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=_empty_object_schema)


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------

_REQUEST_ADAPTER: TypeAdapter[RequestEnvelope] = TypeAdapter(RequestEnvelope)
_RESPONSE_ADAPTER: TypeAdapter[ResponseEnvelope] = TypeAdapter(ResponseEnvelope)


def encode_envelope(envelope: _Envelope) -> str:
    """Serialise any envelope to its wire line (without the delimiter)."""
    return envelope.to_wire()


def _decode[T](adapter: TypeAdapter[T], line: str) -> T:
    try:
        return adapter.validate_json(line)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        detail = errors[0]["msg"] if errors else str(exc)
        raise EnvelopeDecodeError(line, detail) from exc


def decode_request(line: str) -> RequestEnvelope:
    """Decode one wire line into a request envelope."""
    return _decode(_REQUEST_ADAPTER, line)


def decode_response(line: str) -> ResponseEnvelope:
    """Decode one wire line into a response envelope."""
    return _decode(_RESPONSE_ADAPTER, line)


__all__ = [
    "CallToolRequest",
    "ClientId",
    "CorrelatedRequest",
    "DeinitializeRequest",
    "ErrorResponse",
    "InitializeRequest",
    "ListToolsRequest",
    "RequestEnvelope",
    "ResponseEnvelope",
    "ResultResponse",
    "ToolMetadata",
    "correlation_key",
    "decode_request",
    "decode_response",
    "encode_envelope",
    "new_client_id",
    "new_message_id",
    "validate_client_id",
]
