from .metrics import MessagingMetrics

__all__ = ["MessagingMetrics"]
