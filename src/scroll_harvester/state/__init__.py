from scroll_harvester.state.base import StatePersistence
from scroll_harvester.state.sqlite_store import SQLiteStatePersistence
from scroll_harvester.state.store import PaginationStateStore

__all__ = [
    "PaginationStateStore",
    "SQLiteStatePersistence",
    "StatePersistence",
]
