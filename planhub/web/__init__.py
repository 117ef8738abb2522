"""HTTP error mapping for embedding the core in a FastAPI application."""

from .errors import planhub_error_handler, register_error_handlers, unhandled_error_handler

__all__ = ["planhub_error_handler", "register_error_handlers", "unhandled_error_handler"]
