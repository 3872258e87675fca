"""backlinkhub background services: work queues, workers and billing cleanup."""

__version__ = "0.3.0"
