"""webhook-relay: signed, durable webhook delivery with secret rotation."""

__version__ = "0.1.0"
