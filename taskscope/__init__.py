"""State model for an async runtime console: tasks, resources and async operations."""

__version__ = "0.1.0"

__all__ = ["__version__"]