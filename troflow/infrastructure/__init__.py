"""Infrastructure layer exports."""

from .notify import CollectingNotifier, LoggingNotifier, Notification, Notifier
from .offline import ConnectivityMonitor, InMemoryOfflineQueue, OfflineSyncManager, OfflineSyncQueue, PendingUpdate
from .renderer import (
    PacketRenderer,
    RenderedPacket,
    UnavailablePacketRenderer,
    configure_packet_renderer,
    get_packet_renderer,
)
from .stores import (
    DocumentStore,
    InMemoryDocumentStore,
    InMemoryVaultStore,
    InMemoryWorkflowStore,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    StoreError,
    VaultStore,
    WorkflowStore,
)

__all__ = [
    "CollectingNotifier",
    "ConnectivityMonitor",
    "DocumentStore",
    "InMemoryDocumentStore",
    "InMemoryOfflineQueue",
    "InMemoryVaultStore",
    "InMemoryWorkflowStore",
    "LoggingNotifier",
    "NetworkError",
    "NotFoundError",
    "Notification",
    "Notifier",
    "OfflineSyncManager",
    "OfflineSyncQueue",
    "PacketRenderer",
    "PendingUpdate",
    "PermissionDeniedError",
    "RenderedPacket",
    "StoreError",
    "UnavailablePacketRenderer",
    "VaultStore",
    "WorkflowStore",
    "configure_packet_renderer",
    "get_packet_renderer",
]
