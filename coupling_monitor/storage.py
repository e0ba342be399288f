from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Protocol

import pandas as pd
from bson.errors import BSONError
from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from coupling_monitor.config import Settings
from coupling_monitor.errors import StoreConnectionError, StoreQueryError
from coupling_monitor.models import GraphSnapshot

logger = logging.getLogger(__name__)

WATERMARK_FIELD = "last_fetch_time"


class WatermarkStore(Protocol):
    """Append-only log of watermarks; the largest value is authoritative."""

    def latest(self) -> Optional[int]: ...

    def append(self, timestamp: int) -> None: ...


class SnapshotStore(Protocol):
    def insert_snapshot(self, snapshot: GraphSnapshot) -> None: ...

    def load_snapshots(self, limit: int = 20) -> List[GraphSnapshot]: ...


class GraphStore(WatermarkStore, SnapshotStore, Protocol):
    """Both halves of the persistence contract, as implemented by the backends below."""

    def close(self) -> None: ...


class MongoGraphStore:
    """MongoDB-backed store: one collection of snapshots, one of watermarks."""

    def __init__(
        self,
        uri: Optional[str],
        database: str,
        metrics_collection: str,
        update_log_collection: str,
        timeout_ms: int = 5000,
        client: Optional[MongoClient] = None,
    ) -> None:
        self.client = client or MongoClient(
            uri,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
        )
        db = self.client[database]
        self.metrics = db[metrics_collection]
        self.update_log = db[update_log_collection]

    def ping(self) -> None:
        try:
            self.client.admin.command("ping")
        except PyMongoError as exc:
            raise StoreConnectionError(f"Failed to connect to MongoDB: {exc}") from exc
        logger.info("Connected to MongoDB successfully.")

    def latest(self) -> Optional[int]:
        try:
            docs = list(self.update_log.find({}, {WATERMARK_FIELD: 1}).sort(WATERMARK_FIELD, DESCENDING).limit(1))
        except PyMongoError as exc:
            raise StoreQueryError(f"Error fetching last fetch time: {exc}") from exc
        if not docs:
            return None
        return int(docs[0][WATERMARK_FIELD])

    def append(self, timestamp: int) -> None:
        try:
            self.update_log.insert_one({WATERMARK_FIELD: int(timestamp)})
        except (PyMongoError, BSONError, OverflowError) as exc:
            raise StoreQueryError(f"Failed to update last fetched time: {exc}") from exc

    def insert_snapshot(self, snapshot: GraphSnapshot) -> None:
        record = snapshot.to_record()
        record["stored_at"] = datetime.now(timezone.utc)
        try:
            self.metrics.insert_one(record)
        except (PyMongoError, BSONError, OverflowError) as exc:
            raise StoreQueryError(f"Failed to insert graph: {exc}") from exc

    def load_snapshots(self, limit: int = 20) -> List[GraphSnapshot]:
        try:
            docs = list(self.metrics.find({}, {"_id": 0}).sort("end_time", DESCENDING).limit(limit))
        except PyMongoError as exc:
            raise StoreQueryError(f"Failed to load graphs: {exc}") from exc
        return [GraphSnapshot.from_record(doc) for doc in docs]

    def close(self) -> None:
        self.client.close()


class ParquetGraphStore:
    """Parquet-backed store for quick local iteration."""

    def __init__(self, snapshots_path: Path, watermarks_path: Path) -> None:
        self.snapshots_path = snapshots_path
        self.watermarks_path = watermarks_path
        self.snapshots_path.parent.mkdir(parents=True, exist_ok=True)
        self.watermarks_path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self, path: Path) -> pd.DataFrame:
        if not path.exists():
            return pd.DataFrame()
        try:
            return pd.read_parquet(path)
        except Exception as exc:  # noqa: BLE001
            raise StoreQueryError(f"Parquet file unreadable at {path}: {exc}") from exc

    def _append_row(self, path: Path, row: dict[str, Any]) -> None:
        df_new = pd.DataFrame([row])
        df_existing = self._read(path)
        df = pd.concat([df_existing, df_new], ignore_index=True) if not df_existing.empty else df_new
        # readers only ever see the old file or the complete new one
        tmp = path.with_suffix(".tmp")
        try:
            df.to_parquet(tmp, index=False)
            os.replace(tmp, path)
        except Exception as exc:  # noqa: BLE001
            tmp.unlink(missing_ok=True)
            raise StoreQueryError(f"Failed to write {path}: {exc}") from exc

    def latest(self) -> Optional[int]:
        df = self._read(self.watermarks_path)
        if df.empty:
            return None
        return int(df[WATERMARK_FIELD].max())

    def append(self, timestamp: int) -> None:
        self._append_row(
            self.watermarks_path,
            {WATERMARK_FIELD: int(timestamp), "recorded_at": datetime.now(timezone.utc)},
        )

    def insert_snapshot(self, snapshot: GraphSnapshot) -> None:
        record = snapshot.to_record()
        data = record.pop("data")
        record["nodes_json"] = json.dumps(data["nodes"])
        record["edges_json"] = json.dumps(data["edges"])
        record["stored_at"] = datetime.now(timezone.utc)
        self._append_row(self.snapshots_path, record)
        logger.info("Persisted graph for window %s - %s to %s", snapshot.window.start, snapshot.window.end, self.snapshots_path)

    def load_snapshots(self, limit: int = 20) -> List[GraphSnapshot]:
        df = self._read(self.snapshots_path)
        if df.empty:
            return []

        df = df.sort_values(by=["end_time", "stored_at"], ascending=[False, False]).head(limit)
        snapshots: List[GraphSnapshot] = []
        for row in df.to_dict(orient="records"):
            snapshots.append(
                GraphSnapshot.from_record(
                    {
                        "start_time": row["start_time"],
                        "end_time": row["end_time"],
                        "weight_type": _none_if_nan(row.get("weight_type")),
                        "gap_time": _none_if_nan(row.get("gap_time")),
                        "data": {
                            "nodes": json.loads(row["nodes_json"]),
                            "edges": json.loads(row["edges_json"]),
                        },
                    }
                )
            )
        return snapshots

    def close(self) -> None:
        pass


def _none_if_nan(value: Any) -> Any:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    return value


def build_store(settings: Settings) -> GraphStore:
    """Create the configured backend; Mongo is pinged so startup fails fast."""
    if settings.store_backend == "parquet":
        return ParquetGraphStore(settings.snapshots_path, settings.watermarks_path)

    store = MongoGraphStore(
        settings.mongo_uri,
        settings.mongo_db,
        settings.metrics_collection,
        settings.update_log_collection,
        timeout_ms=settings.store_timeout_ms,
    )
    store.ping()
    return store
