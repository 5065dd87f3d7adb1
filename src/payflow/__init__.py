"""Payment intents with idempotent creation and signed webhook delivery."""

__version__ = "0.1.0"
