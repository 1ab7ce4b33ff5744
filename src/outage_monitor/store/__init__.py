from .snapshots import SnapshotStore
from .subscribers import SubscriberStore

__all__ = ["SnapshotStore", "SubscriberStore"]
