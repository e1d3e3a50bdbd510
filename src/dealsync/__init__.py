"""DealSync - Offline resilience and rate governance for a deals marketplace."""

__version__ = "0.1.0"
