"""Named-pipe transport, envelope contracts and request/response correlation."""

from __future__ import annotations

from pipemcp.ipc.channels import ResponseChannelRegistry
from pipemcp.ipc.client import PipeClient
from pipemcp.ipc.contracts import (
    CallToolRequest,
    DeinitializeRequest,
    ErrorResponse,
    InitializeRequest,
    ListToolsRequest,
    RequestEnvelope,
    ResponseEnvelope,
    ResultResponse,
    ToolMetadata,
)
from pipemcp.ipc.correlator import ResponseCorrelator
from pipemcp.ipc.fifo import FifoTransport
from pipemcp.ipc.listener import ListenerState, RequestListener, ResponseReader

__all__ = [
    "CallToolRequest",
    "DeinitializeRequest",
    "ErrorResponse",
    "FifoTransport",
    "InitializeRequest",
    "ListToolsRequest",
    "ListenerState",
    "PipeClient",
    "RequestEnvelope",
    "RequestListener",
    "ResponseChannelRegistry",
    "ResponseCorrelator",
    "ResponseEnvelope",
    "ResponseReader",
    "ResultResponse",
    "ToolMetadata",
]
