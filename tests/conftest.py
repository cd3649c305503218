from __future__ import annotations

import pytest

from filing_tracker import db
from filing_tracker.config import Settings


@pytest.fixture
def engine(tmp_path):
    engine = db.create_db_engine(f"sqlite:///{tmp_path / 'filings.db'}")
    db.ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def settings(tmp_path):
    return Settings.load(
        {
            "FILING_TRACKER_DATABASE_URL": f"sqlite:///{tmp_path / 'filings.db'}",
            "FILING_TRACKER_ENV_FILE": str(tmp_path / "missing.env"),
            "FILING_TRACKER_PRICE_BACKOFF": "0",
        }
    )
