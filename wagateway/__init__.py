"""HTTP gateway multiplexing WhatsApp sessions and forwarding their events to a webhook."""

__version__ = "0.1.0"
