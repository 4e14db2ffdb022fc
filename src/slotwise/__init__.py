"""Calendar provider adapters and event sync orchestration for scheduling."""

__version__ = "0.1.0"
