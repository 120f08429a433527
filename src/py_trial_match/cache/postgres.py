# Copyright 2025 Gowtham Rao <rao@ohdsi.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""PostgreSQL implementation of the cache store."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from py_trial_match.cache.base import BaseCacheStore

logger = logging.getLogger(__name__)


class PostgresCacheStore(BaseCacheStore):
    """Stores cache entries in one JSONB table keyed by (namespace, key).

    Writes are UPSERTs, so the last writer wins and repeated writes of the
    same entry are idempotent.
    """

    def __init__(
        self,
        dsn: str,
        schema: str = "trialmatch",
        table: str = "cache_entries",
        connect_timeout: int = 5,
    ):
        """Initializes the store with connection details.

        Args:
            dsn: The connection string for the PostgreSQL database.
            schema: Schema holding the cache table.
            table: Name of the cache table.
            connect_timeout: Seconds to wait for a connection before the
                operation is treated as a miss.
        """
        self.dsn = dsn
        self.schema = schema
        self.table = table
        self.connect_timeout = connect_timeout

    @property
    def _qualified_table(self) -> sql.Composed:
        return sql.SQL("{}.{}").format(
            sql.Identifier(self.schema), sql.Identifier(self.table)
        )

    @contextmanager
    def get_conn(self) -> Iterator[psycopg.Connection]:
        """Yields a connection inside a transaction, committed on success."""
        with psycopg.connect(
            self.dsn,
            connect_timeout=self.connect_timeout,
            row_factory=dict_row,
        ) as conn, conn.transaction():
            yield conn

    def prepare_schema(self) -> None:
        """Creates the schema and cache table if they do not exist."""
        with self.get_conn() as conn, conn.cursor() as cur:
            cur.execute(
                sql.SQL("CREATE SCHEMA IF NOT EXISTS {schema}").format(
                    schema=sql.Identifier(self.schema),
                )
            )
            cur.execute(
                sql.SQL(
                    "CREATE TABLE IF NOT EXISTS {table} ("
                    "namespace TEXT NOT NULL, "
                    "key TEXT NOT NULL, "
                    "value JSONB NOT NULL, "
                    "updated_at TIMESTAMPTZ NOT NULL DEFAULT now(), "
                    "PRIMARY KEY (namespace, key))"
                ).format(table=self._qualified_table)
            )

    def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        query = sql.SQL(
            "SELECT value FROM {table} WHERE namespace = %s AND key = %s"
        ).format(table=self._qualified_table)
        try:
            with self.get_conn() as conn, conn.cursor() as cur:
                cur.execute(query, (namespace, key))
                row = cur.fetchone()
        except psycopg.Error as e:
            logger.warning("Cache read %s/%s failed: %s", namespace, key, e)
            return None
        if not row:
            return None
        value = row["value"]
        return value if isinstance(value, dict) else None

    def set(self, namespace: str, key: str, value: dict[str, Any]) -> None:
        query = sql.SQL(
            "INSERT INTO {table} (namespace, key, value) VALUES (%s, %s, %s) "
            "ON CONFLICT (namespace, key) "
            "DO UPDATE SET value = EXCLUDED.value, updated_at = now()"
        ).format(table=self._qualified_table)
        try:
            with self.get_conn() as conn, conn.cursor() as cur:
                cur.execute(query, (namespace, key, Jsonb(value)))
        except psycopg.Error as e:
            logger.warning("Cache write %s/%s failed: %s", namespace, key, e)

    def delete(self, namespace: str, key: str) -> None:
        query = sql.SQL(
            "DELETE FROM {table} WHERE namespace = %s AND key = %s"
        ).format(table=self._qualified_table)
        try:
            with self.get_conn() as conn, conn.cursor() as cur:
                cur.execute(query, (namespace, key))
        except psycopg.Error as e:
            logger.warning("Cache delete %s/%s failed: %s", namespace, key, e)
