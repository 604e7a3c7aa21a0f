"""HTTP API for the chat relay."""

from chat_relay.api.routes import router

__all__ = ["router"]
