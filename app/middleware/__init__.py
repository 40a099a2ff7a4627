from .logging_middleware import RequestLoggingMiddleware, redact_path

__all__ = [
    "RequestLoggingMiddleware",
    "redact_path",
]
