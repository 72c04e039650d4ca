from .bootstrap import SwapRuntime, build_runtime
from .logging import JsonFormatter, setup_logger
from .settings import AppSettings

__all__ = [
    "AppSettings",
    "JsonFormatter",
    "SwapRuntime",
    "build_runtime",
    "setup_logger",
]
