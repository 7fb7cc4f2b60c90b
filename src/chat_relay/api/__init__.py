"""API package for the chat relay."""

from chat_relay.api.app import app, create_app

__all__ = ["app", "create_app"]
