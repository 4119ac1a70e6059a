"""JSON snapshot of the lending store, so the CLI can work on a state file."""
from __future__ import annotations

import json
import logging
import types
import typing
from dataclasses import asdict, fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from .models import (
    CollateralLock,
    CreditCategory,
    HealthSample,
    LiquidationRecord,
    Loan,
    LpPosition,
    Pool,
    RepaymentEvent,
)
from .store import LendingStore, _Tables

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def _row(obj: Any) -> dict[str, Any]:
    return asdict(obj)


def dump_store(store: LendingStore) -> dict[str, Any]:
    """Plain-dict view of every table in *store*."""
    tables = store._tables
    return {
        "version": SNAPSHOT_VERSION,
        "pools": [_row(p) for p in tables.pools.values()],
        "lp_positions": [_row(p) for p in tables.lp_positions.values()],
        "loans": [_row(l) for l in tables.loans.values()],
        "collateral_locks": [_row(c) for c in tables.collateral_locks.values()],
        "liquidations": [_row(r) for r in tables.liquidations.values()],
        "repayments": [_row(e) for events in tables.repayments.values() for e in events],
        "health_history": [
            _row(s) for samples in tables.health_history.values() for s in samples
        ],
        "credit_history": {
            borrower: [_row(c) for c in history]
            for borrower, history in tables.credit_history.items()
        },
    }


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _decode_value(tp: Any, value: Any) -> Any:
    if value is None:
        return None
    origin = typing.get_origin(tp)
    if origin is typing.Union or origin is types.UnionType:
        inner = [a for a in typing.get_args(tp) if a is not type(None)]
        return _decode_value(inner[0], value)
    if tp is Decimal:
        return Decimal(value)
    if tp is datetime:
        return datetime.fromisoformat(value)
    if tp is float:
        return float(value)
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(value)
    return value


def _decode(cls: type, data: dict[str, Any]) -> Any:
    hints = typing.get_type_hints(cls)
    kwargs = {
        f.name: _decode_value(hints[f.name], data[f.name])
        for f in fields(cls)
        if f.name in data
    }
    return cls(**kwargs)


def load_store(data: dict[str, Any]) -> LendingStore:
    """Rebuild a store from :func:`dump_store` output."""
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version}")

    tables = _Tables()
    for raw in data.get("pools", []):
        pool = _decode(Pool, raw)
        tables.pools[pool.asset] = pool
    for raw in data.get("lp_positions", []):
        position = _decode(LpPosition, raw)
        tables.lp_positions[(position.asset, position.provider)] = position
    for raw in data.get("loans", []):
        loan = _decode(Loan, raw)
        tables.loans[loan.loan_id] = loan
    for raw in data.get("collateral_locks", []):
        lock = _decode(CollateralLock, raw)
        tables.collateral_locks[lock.loan_id] = lock
    for raw in data.get("liquidations", []):
        record = _decode(LiquidationRecord, raw)
        tables.liquidations[record.loan_id] = record
    for raw in data.get("repayments", []):
        event = _decode(RepaymentEvent, raw)
        tables.repayments[event.loan_id].append(event)
    for raw in data.get("health_history", []):
        sample = _decode(HealthSample, raw)
        tables.health_history[sample.loan_id].append(sample)
    for borrower, history in data.get("credit_history", {}).items():
        tables.credit_history[borrower].extend(_decode(CreditCategory, c) for c in history)
    return LendingStore(tables)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def save_snapshot(store: LendingStore, path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w") as f:
        json.dump(dump_store(store), f, indent=2, default=_encode)
    tmp.replace(path)
    logger.info("State saved to %s", path)


def load_snapshot(path: str | Path) -> LendingStore:
    """Load a store from *path*; a missing file yields an empty store."""
    path = Path(path)
    if not path.exists():
        logger.info("No state file at %s, starting empty", path)
        return LendingStore()
    with open(path) as f:
        store = load_store(json.load(f))
    logger.info(
        "State loaded from %s: %d pools, %d loans", path, len(store.pools()), len(store.loans())
    )
    return store
