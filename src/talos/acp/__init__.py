"""Agent Client Protocol (newline-delimited JSON-RPC over stdio)."""

from talos.acp.client import (
    PROTOCOL_VERSION,
    PromptResult,
    ProtocolClient,
    Session,
    SessionInfo,
)

__all__ = ["PROTOCOL_VERSION", "PromptResult", "ProtocolClient", "Session", "SessionInfo"]
