import json
import logging

import pytest

from hesco.core.config import _parse_ids, make_async_db_url
from hesco.core.logging import JsonFormatter


class TestDatabaseUrl:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("postgres://u:p@h:5432/db", "postgresql+asyncpg://u:p@h:5432/db"),
            ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
            ("sqlite:///hesco.db", "sqlite+aiosqlite:///hesco.db"),
        ],
    )
    def test_normalised_to_async_driver(self, raw, expected):
        assert make_async_db_url(raw) == expected

    def test_unsupported_scheme(self):
        with pytest.raises(RuntimeError):
            make_async_db_url("mysql://u:p@h/db")


def test_admin_ids_skip_garbage():
    assert _parse_ids("10, 20,abc,,30") == (10, 20, 30)


def test_json_log_carries_context():
    record = logging.LogRecord("hesco.ledger", logging.INFO, __file__, 1, "ledger_applied", None, None)
    record.user_id = 42
    record.reference_key = "task:42:video:2026-10-17"
    payload = json.loads(JsonFormatter().format(record))

    assert payload["msg"] == "ledger_applied"
    assert payload["user_id"] == 42
    assert payload["reference_key"] == "task:42:video:2026-10-17"
    assert "corr_id" not in payload
