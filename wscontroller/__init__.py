"""Device agent for the WS Controller command channel."""

__version__ = "1.0.0"
