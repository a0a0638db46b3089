"""Record store used by the ingestion pipeline."""

from hmo_hunter.db.store import RecordFilter, RecordStore, SqliteRecordStore

__all__ = ["RecordFilter", "RecordStore", "SqliteRecordStore"]
