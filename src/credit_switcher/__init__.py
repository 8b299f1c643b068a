"""Credit-exhaustion model fallback for host chat sessions."""

__version__ = "0.1.0"

__all__ = ["__version__"]
