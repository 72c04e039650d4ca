from .async_utils import error_fields, guarded_call
from .logging import log_event, sanitize_text, sanitize_value

__all__ = [
    "error_fields",
    "guarded_call",
    "log_event",
    "sanitize_text",
    "sanitize_value",
]
