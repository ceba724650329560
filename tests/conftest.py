from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Iterator

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture
def store(tmp_path: Path) -> Iterator[Any]:
    from school_fee_ledger.store import SqliteFeeStore

    s = SqliteFeeStore(str(tmp_path / "ledger.db"))
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep a developer's shell/.env from leaking into config tests.
    for var in (
        "SCHOOL_NAME",
        "ACADEMIC_YEAR",
        "CURRENCY_SYMBOL",
        "OVERPAYMENT_POLICY",
        "CLASS_FEES",
        "STATE_DB_PATH",
        "LOG_LEVEL",
        "LOG_FILE",
    ):
        monkeypatch.delenv(var, raising=False)
