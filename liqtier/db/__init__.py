from .position_store import PositionStore, StoredPosition, StoredAlert, StoreStats

__all__ = ["PositionStore", "StoredPosition", "StoredAlert", "StoreStats"]
