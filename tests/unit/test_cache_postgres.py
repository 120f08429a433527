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
from unittest.mock import MagicMock, patch

import psycopg
import pytest

from py_trial_match.cache.postgres import PostgresCacheStore

pytestmark = pytest.mark.unit

DSN = "host='localhost' dbname='trialmatch'"


@pytest.fixture
def cursor():
    with patch("py_trial_match.cache.postgres.psycopg.connect") as mock_connect:
        conn = MagicMock()
        cur = MagicMock()
        mock_connect.return_value.__enter__.return_value = conn
        conn.cursor.return_value.__enter__.return_value = cur
        yield cur


def test_get_returns_stored_value(cursor):
    cursor.fetchone.return_value = {"value": {"score": 72, "timestamp": 1.0}}
    store = PostgresCacheStore(DSN)
    assert store.get("ai_scores", "fp|NCT1") == {"score": 72, "timestamp": 1.0}
    _, params = cursor.execute.call_args.args
    assert params == ("ai_scores", "fp|NCT1")


def test_get_missing_row(cursor):
    cursor.fetchone.return_value = None
    assert PostgresCacheStore(DSN).get("geocode", "nowhere") is None


def test_set_upserts_jsonb(cursor):
    PostgresCacheStore(DSN).set("geocode", "14301", {"latitude": 43.1})
    query, params = cursor.execute.call_args.args
    assert params[:2] == ("geocode", "14301")
    assert params[2].obj == {"latitude": 43.1}
    assert "ON CONFLICT" in repr(query)


def test_prepare_schema_creates_table(cursor):
    PostgresCacheStore(DSN, schema="tm", table="entries").prepare_schema()
    statements = [repr(c.args[0]) for c in cursor.execute.call_args_list]
    assert "CREATE SCHEMA IF NOT EXISTS" in statements[0]
    assert "Identifier('tm')" in statements[0]
    assert "CREATE TABLE IF NOT EXISTS" in statements[1]
    assert "Identifier('entries')" in statements[1]


@patch("py_trial_match.cache.postgres.psycopg.connect")
def test_database_errors_degrade_to_miss(mock_connect, caplog):
    mock_connect.side_effect = psycopg.OperationalError("connection refused")
    store = PostgresCacheStore(DSN)
    assert store.get("geocode", "14301") is None
    store.set("geocode", "14301", {"latitude": 43.1})
    store.delete("geocode", "14301")
    assert "Cache read geocode/14301 failed" in caplog.text
    assert "Cache write geocode/14301 failed" in caplog.text
    assert "Cache delete geocode/14301 failed" in caplog.text


@patch("py_trial_match.cache.postgres.psycopg.connect")
def test_connect_passes_timeout(mock_connect):
    mock_connect.side_effect = psycopg.OperationalError("timeout expired")
    assert PostgresCacheStore(DSN, connect_timeout=3).get("geocode", "14301") is None
    assert mock_connect.call_args.args == (DSN,)
    assert mock_connect.call_args.kwargs["connect_timeout"] == 3


@pytest.mark.asyncio
async def test_async_get_runs_blocking_query(cursor):
    cursor.fetchone.return_value = {"value": {"latitude": 43.1}}
    assert await PostgresCacheStore(DSN).aget("geocode", "14301") == {"latitude": 43.1}
