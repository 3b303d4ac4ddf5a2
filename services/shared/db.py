from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from services.shared.config import RuntimeConfig
from services.shared.contracts import ImageRecord
from services.shared.errors import StoreWriteFailure


@contextmanager
def get_connection(database_url: str):
    conn = psycopg.connect(database_url, row_factory=dict_row)
    try:
        yield conn
    finally:
        conn.close()


class ImageStore(Protocol):
    def put_image(self, record: ImageRecord) -> None: ...

    def get_image(self, file_name: str) -> ImageRecord | None: ...

    def ping(self) -> None: ...


class InMemoryImageStore:
    def __init__(self) -> None:
        self._items: dict[str, ImageRecord] = {}
        self._lock = threading.Lock()

    def put_image(self, record: ImageRecord) -> None:
        with self._lock:
            self._items[record.FileName] = record

    def get_image(self, file_name: str) -> ImageRecord | None:
        with self._lock:
            return self._items.get(file_name)

    def list_file_names(self) -> list[str]:
        with self._lock:
            return sorted(self._items)

    def ping(self) -> None:
        return None


class PostgresImageStore:
    """Images table keyed by file name; writes are unconditional upserts."""

    def __init__(self, database_url: str, table: str = "images"):
        self.database_url = database_url
        self.table = table

    def ensure_schema(self) -> None:
        statement = sql.SQL(
            "CREATE TABLE IF NOT EXISTS {table} (file_name TEXT PRIMARY KEY, updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
        ).format(table=sql.Identifier(self.table))
        with get_connection(self.database_url) as conn:
            with conn.cursor() as cur:
                cur.execute(statement)
                conn.commit()

    def put_image(self, record: ImageRecord) -> None:
        statement = sql.SQL(
            """
            INSERT INTO {table} (file_name, updated_at)
            VALUES (%s, NOW())
            ON CONFLICT (file_name)
            DO UPDATE SET updated_at = NOW()
            """
        ).format(table=sql.Identifier(self.table))
        try:
            with get_connection(self.database_url) as conn:
                with conn.cursor() as cur:
                    cur.execute(statement, (record.FileName,))
                    conn.commit()
        except psycopg.Error as exc:
            raise StoreWriteFailure(f"Failed to upsert image {record.FileName!r}: {exc}") from exc

    def get_image(self, file_name: str) -> ImageRecord | None:
        statement = sql.SQL("SELECT file_name FROM {table} WHERE file_name = %s").format(
            table=sql.Identifier(self.table)
        )
        with get_connection(self.database_url) as conn:
            with conn.cursor() as cur:
                cur.execute(statement, (file_name,))
                row = cur.fetchone()
        if row is None:
            return None
        return ImageRecord(FileName=row["file_name"])

    def ping(self) -> None:
        with get_connection(self.database_url) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()


def build_image_store(config: RuntimeConfig) -> ImageStore:
    if config.store_backend == "postgres":
        store = PostgresImageStore(config.database_url, table=config.image_table)
        store.ensure_schema()
        return store
    return InMemoryImageStore()
