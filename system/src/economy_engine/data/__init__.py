from economy_engine.data.protocols import RunStoreProtocol
from economy_engine.data.storage import InMemoryRunStore, SqliteRunStore, write_json, write_markdown

__all__ = ["InMemoryRunStore", "RunStoreProtocol", "SqliteRunStore", "write_json", "write_markdown"]
