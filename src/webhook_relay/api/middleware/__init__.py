"""API middleware: CORS."""

from webhook_relay.api.middleware.cors import setup_cors

__all__ = ["setup_cors"]
