"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from pathlib import Path

import pytest

from chain_ledger_tracker.config import clear_settings_cache
from chain_ledger_tracker.ledger.models import LEDGER_COLUMNS, NormalizedTransaction, TxStatus

TRACKED = "0x" + "a" * 40
AGENT = "0x" + "9" * 40
PLAYER = "0x" + "b" * 40


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def tracked_address() -> str:
    """Address whose ledger is under test."""
    return TRACKED


@pytest.fixture
def agent_address() -> str:
    return AGENT


@pytest.fixture
def player_address() -> str:
    return PLAYER


@pytest.fixture
def ledger_path(tmp_path: Path, tracked_address: str) -> Path:
    return tmp_path / f"{tracked_address}.csv"


@pytest.fixture
def make_tx() -> Callable[..., NormalizedTransaction]:
    """Factory for ledger records with sensible defaults."""

    def _make(
        block_number: int = 100,
        tx_hash: str | None = None,
        from_address: str = PLAYER,
        to_address: str = TRACKED,
        value: str = "0.00000001",
        timestamp: int = 1_700_000_000,
        status: TxStatus = TxStatus.SUCCESS,
    ) -> NormalizedTransaction:
        return NormalizedTransaction(
            block_number=block_number,
            transaction_hash=tx_hash or f"0x{block_number:064x}",
            from_address=from_address,
            to_address=to_address,
            value=Decimal(value),
            gas_used=21000,
            gas_price=1_000_000_000,
            timestamp=timestamp,
            status=status,
        )

    return _make


@pytest.fixture
def write_ledger() -> Callable[[Path, list[list[str]]], Path]:
    """Write a ledger file with the standard header and the given rows."""

    def _write(path: Path, rows: list[list[str]]) -> Path:
        lines = [",".join(LEDGER_COLUMNS)]
        lines.extend(",".join(str(c) for c in row) for row in rows)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
