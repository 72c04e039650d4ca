from .gateway import StorageGateway
from .memory import InMemoryReceiptStore
from .settings import StorageSettings

__all__ = [
    "InMemoryReceiptStore",
    "StorageGateway",
    "StorageSettings",
]
