"""
SQLite order ledger. WAL mode for concurrent readers.

Synchronous core of the ledger store: every method runs inside one short
transaction on a single serialized connection. `LedgerStore` (ledger_store.py)
wraps it for the event loop.

Concurrency safety nets live in the schema, not in callers:
- UNIQUE(venue_order_id) rejects double submission (-> DuplicateOrder)
- partial UNIQUE(parent_order_id, order_type) allows one canonical counter per parent
- claim_grid_slot() runs read-verify-increment under BEGIN IMMEDIATE (write lock)
- apply_transition() only touches active rows whose progress does not regress
"""

from __future__ import annotations

import sqlite3
import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from gridfleet.core.errors import (
    CounterAlreadyExists,
    CounterMismatch,
    DuplicateOrder,
    LedgerBusy,
    LedgerError,
)
from gridfleet.core.json_utils import dumps, loads
from gridfleet.core.units import fmt_amount
from gridfleet.state.models import (
    ACTIVE_STATUSES,
    ActivityRecord,
    ActivityType,
    BalanceSyncEntry,
    Order,
    OrderStatus,
    OrderType,
    SyncStatus,
    WalletRecord,
)


def _dict_factory(cursor: sqlite3.Cursor, row: tuple) -> Dict[str, Any]:
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


def _utc_day(ts: Optional[float] = None) -> str:
    moment = datetime.fromtimestamp(ts if ts is not None else time.time(), tz=timezone.utc)
    return moment.strftime("%Y-%m-%d")


def _dec(value: Optional[str]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(value)


def _busy(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


class SqliteLedger:
    """Thread-safe SQLite ledger for wallets, orders and audit tables."""

    def __init__(self, db_path: str | Path = ":memory:", busy_timeout_ms: int = 5000) -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._mutex = threading.RLock()
        # Autocommit mode: transactions are opened explicitly
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = _dict_factory
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        if self._db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    @property
    def path(self) -> str:
        return self._db_path

    def close(self) -> None:
        with self._mutex:
            self._conn.close()

    def _init_schema(self) -> None:
        with self._mutex:
            self._conn.executescript(_SCHEMA)

    # ── Transaction helpers ──

    def _write(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self._mutex:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    cur = self._conn.execute(sql, tuple(params))
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
                return cur
            except sqlite3.OperationalError as exc:
                if _busy(exc):
                    raise LedgerBusy(str(exc)) from exc
                raise LedgerError(str(exc)) from exc

    def _read(self, sql: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        with self._mutex:
            try:
                return self._conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.OperationalError as exc:
                if _busy(exc):
                    raise LedgerBusy(str(exc)) from exc
                raise LedgerError(str(exc)) from exc

    # ── Wallets ──

    def upsert_wallet(self, address: str, index: int, trading_pool: str) -> WalletRecord:
        """Register a fleet wallet; the grid counter survives restarts."""
        now = time.time()
        self._write(
            """INSERT INTO wallets (address, wallet_index, trading_pool, placed_initial_orders, created_at, updated_at)
               VALUES (?, ?, ?, 0, ?, ?)
               ON CONFLICT(address) DO UPDATE SET
                   wallet_index = excluded.wallet_index,
                   trading_pool = excluded.trading_pool,
                   updated_at = excluded.updated_at""",
            (address.lower(), index, trading_pool, now, now),
        )
        wallet = self.get_wallet(address)
        if wallet is None:
            raise LedgerError(f"Wallet {address} missing after upsert")
        return wallet

    def get_wallet(self, address: str) -> Optional[WalletRecord]:
        rows = self._read("SELECT * FROM wallets WHERE address = ?", (address.lower(),))
        return _row_to_wallet(rows[0]) if rows else None

    def list_wallets(self, index: Optional[int] = None) -> List[WalletRecord]:
        if index is not None:
            rows = self._read("SELECT * FROM wallets WHERE wallet_index = ?", (index,))
        else:
            rows = self._read("SELECT * FROM wallets ORDER BY wallet_index ASC")
        return [_row_to_wallet(r) for r in rows]

    def claim_grid_slot(self, address: str, expected: int) -> bool:
        """
        Compare-and-increment `placed_initial_orders` under the write lock.

        Returns True when the counter moved expected -> expected + 1, False when
        another process already advanced it past `expected`. Raises
        CounterMismatch when the counter is behind `expected`.
        """
        addr = address.lower()
        with self._mutex:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                if _busy(exc):
                    raise LedgerBusy(str(exc)) from exc
                raise
            try:
                rows = self._conn.execute(
                    "SELECT placed_initial_orders FROM wallets WHERE address = ?", (addr,)
                ).fetchall()
                if not rows:
                    raise LedgerError(f"Wallet {address} not found in ledger")
                current = int(rows[0]["placed_initial_orders"])
                if current > expected:
                    self._conn.execute("ROLLBACK")
                    return False
                if current != expected:
                    raise CounterMismatch(address, expected, current)
                self._conn.execute(
                    "UPDATE wallets SET placed_initial_orders = ?, updated_at = ? WHERE address = ?",
                    (expected + 1, time.time(), addr),
                )
                self._conn.execute("COMMIT")
                return True
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise

    def reset_grid_counter(self, address: str) -> None:
        self._write(
            "UPDATE wallets SET placed_initial_orders = 0, updated_at = ? WHERE address = ?",
            (time.time(), address.lower()),
        )

    # ── Orders ──

    def insert_order(self, order: Order) -> Order:
        """Insert exactly once; never updates an existing row."""
        if order.order_type.value.startswith("grid") and order.parent_order_id is not None:
            raise LedgerError("Grid orders cannot have a parent order")
        if order.order_type.value.startswith("counter") and order.parent_order_id is None:
            raise LedgerError("Counter orders require a parent order")
        placed_at = order.placed_at or time.time()
        try:
            cur = self._write(
                """INSERT INTO orders
                   (venue_order_id, tx_hash, wallet_address, order_type, parent_order_id,
                    from_token, to_token, from_amount, to_amount_min, status, progress,
                    limit_price, grid_offset, usd_value, placed_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    order.venue_order_id, order.tx_hash, order.wallet_address.lower(),
                    order.order_type.value, order.parent_order_id,
                    order.from_token, order.to_token,
                    fmt_amount(order.from_amount), fmt_amount(order.to_amount_min),
                    order.status.value, float(order.progress),
                    order.limit_price, order.grid_offset, round(float(order.usd_value), 2), placed_at,
                ),
            )
        except sqlite3.IntegrityError as exc:
            msg = str(exc)
            if "venue_order_id" in msg:
                raise DuplicateOrder(order.venue_order_id, wallet=order.wallet_address) from exc
            if "parent_order_id" in msg:
                existing = self.find_counter(order.parent_order_id or 0, order.order_type)
                raise CounterAlreadyExists(
                    order.parent_order_id or 0, existing.id if existing else None
                ) from exc
            raise LedgerError(msg) from exc
        stored = self.get_order(int(cur.lastrowid))
        if stored is None:
            raise LedgerError(f"Order row {cur.lastrowid} missing after insert")
        return stored

    def get_order(self, order_id: int) -> Optional[Order]:
        rows = self._read("SELECT * FROM orders WHERE id = ?", (order_id,))
        return _row_to_order(rows[0]) if rows else None

    def get_order_by_venue_id(self, venue_order_id: str) -> Optional[Order]:
        rows = self._read("SELECT * FROM orders WHERE venue_order_id = ?", (str(venue_order_id),))
        return _row_to_order(rows[0]) if rows else None

    def list_orders(
        self,
        wallet: Optional[str] = None,
        statuses: Optional[Iterable[OrderStatus]] = None,
        order_type: Optional[OrderType] = None,
        parent_id: Optional[int] = None,
        since: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[Order]:
        clauses: List[str] = []
        params: List[Any] = []
        if wallet is not None:
            clauses.append("wallet_address = ?")
            params.append(wallet.lower())
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return []
            clauses.append(f"status IN ({','.join('?' * len(values))})")
            params.extend(values)
        if order_type is not None:
            clauses.append("order_type = ?")
            params.append(order_type.value)
        if parent_id is not None:
            clauses.append("parent_order_id = ?")
            params.append(parent_id)
        if since is not None:
            clauses.append("placed_at >= ?")
            params.append(since)
        sql = "SELECT * FROM orders"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY placed_at ASC, id ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [_row_to_order(r) for r in self._read(sql, params)]

    def find_counter(self, parent_id: int, counter_type: OrderType) -> Optional[Order]:
        rows = self._read(
            "SELECT * FROM orders WHERE parent_order_id = ? AND order_type = ?",
            (parent_id, counter_type.value),
        )
        return _row_to_order(rows[0]) if rows else None

    def filled_without_counter(self, wallet: str) -> List[Order]:
        """Filled orders lacking their canonical counter (and not marked skipped)."""
        rows = self._read(
            """SELECT p.* FROM orders p
               WHERE p.wallet_address = ? AND p.status = 'filled' AND p.skip_reason IS NULL
                 AND NOT EXISTS (
                   SELECT 1 FROM orders c
                   WHERE c.parent_order_id = p.id
                     AND c.order_type = CASE WHEN p.order_type LIKE '%buy' THEN 'counter_sell' ELSE 'counter_buy' END
                 )
               ORDER BY p.placed_at ASC, p.id ASC""",
            (wallet.lower(),),
        )
        return [_row_to_order(r) for r in rows]

    def apply_transition(
        self,
        order_id: int,
        status: OrderStatus,
        progress: float,
        checked_at: Optional[float] = None,
        filled_at: Optional[float] = None,
        filled_from_amount: Optional[Decimal] = None,
        filled_to_amount: Optional[Decimal] = None,
    ) -> bool:
        """
        Persist a status/progress change. Only active rows are touched and
        progress may not decrease, so terminal rows are written exactly once.
        """
        cur = self._write(
            """UPDATE orders SET
                   status = ?, progress = ?, last_checked_at = ?,
                   filled_at = COALESCE(?, filled_at),
                   filled_from_amount = COALESCE(?, filled_from_amount),
                   filled_to_amount = COALESCE(?, filled_to_amount)
               WHERE id = ? AND status IN ('pending', 'partial') AND progress <= ?""",
            (
                status.value, float(progress), checked_at or time.time(),
                filled_at,
                None if filled_from_amount is None else fmt_amount(filled_from_amount),
                None if filled_to_amount is None else fmt_amount(filled_to_amount),
                order_id, float(progress),
            ),
        )
        return cur.rowcount == 1

    def mark_skip(self, order_id: int, reason: str) -> None:
        self._write("UPDATE orders SET skip_reason = ? WHERE id = ?", (reason, order_id))

    def cancel_active_orders(self, wallet: str) -> int:
        """Ledger-level cancellation used by the daily/startup reset."""
        cur = self._write(
            f"""UPDATE orders SET status = 'canceled', last_checked_at = ?
                WHERE wallet_address = ? AND status IN ({','.join('?' * len(ACTIVE_STATUSES))})""",
            (time.time(), wallet.lower(), *sorted(s.value for s in ACTIVE_STATUSES)),
        )
        return cur.rowcount

    def count_by_status(self, wallet: str) -> Dict[str, int]:
        rows = self._read(
            "SELECT status, COUNT(*) AS n FROM orders WHERE wallet_address = ? GROUP BY status",
            (wallet.lower(),),
        )
        return {r["status"]: int(r["n"]) for r in rows}

    def open_usd_value(self, wallet: str) -> float:
        rows = self._read(
            "SELECT COALESCE(SUM(usd_value), 0) AS v FROM orders WHERE wallet_address = ? AND status IN ('pending', 'partial')",
            (wallet.lower(),),
        )
        return float(rows[0]["v"]) if rows else 0.0

    # ── Activity ──

    def record_activity(self, record: ActivityRecord) -> bool:
        """Append an activity row. Returns False on duplicate tx_hash / order_ref."""
        try:
            self._write(
                """INSERT INTO activity
                   (wallet_address, activity_type, tx_hash, order_ref, token_from, token_to,
                    amount_from, amount_to, usd_volume, execution_price, metadata, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.wallet_address.lower(), record.activity_type.value, record.tx_hash,
                    record.order_ref, record.token_from, record.token_to,
                    fmt_amount(record.amount_from), fmt_amount(record.amount_to),
                    float(record.usd_volume), record.execution_price,
                    dumps(record.metadata or {}), record.created_at or time.time(),
                ),
            )
        except sqlite3.IntegrityError:
            return False
        return True

    def has_activity_for_order(self, order_ref: str) -> bool:
        rows = self._read("SELECT 1 AS x FROM activity WHERE order_ref = ?", (order_ref,))
        return bool(rows)

    def list_activity(self, wallet: Optional[str] = None, limit: int = 100) -> List[ActivityRecord]:
        if wallet is not None:
            rows = self._read(
                "SELECT * FROM activity WHERE wallet_address = ? ORDER BY id DESC LIMIT ?",
                (wallet.lower(), limit),
            )
        else:
            rows = self._read("SELECT * FROM activity ORDER BY id DESC LIMIT ?", (limit,))
        return [_row_to_activity(r) for r in rows]

    # ── Ops journal ──

    def log_error(
        self,
        wallet_index: Optional[int],
        wallet_address: Optional[str],
        error_type: str,
        message: str,
        context: Optional[str] = None,
    ) -> None:
        self._write(
            """INSERT INTO error_log (wallet_index, wallet_address, error_type, message, context, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (wallet_index, (wallet_address or "").lower() or None, error_type, message[:2000], context, time.time()),
        )

    def recent_errors(self, limit: int = 50, wallet: Optional[str] = None) -> List[Dict[str, Any]]:
        if wallet is not None:
            return self._read(
                "SELECT * FROM error_log WHERE wallet_address = ? ORDER BY id DESC LIMIT ?",
                (wallet.lower(), limit),
            )
        return self._read("SELECT * FROM error_log ORDER BY id DESC LIMIT ?", (limit,))

    def record_metric(
        self,
        wallet_index: Optional[int],
        wallet_address: str,
        metric: str,
        value: float,
        ts: Optional[float] = None,
    ) -> None:
        """Upsert the daily per-wallet aggregate (count + total)."""
        self._write(
            """INSERT INTO daily_metrics (day, wallet_address, wallet_index, metric, count, total, updated_at)
               VALUES (?, ?, ?, ?, 1, ?, ?)
               ON CONFLICT(day, wallet_address, metric) DO UPDATE SET
                   count = count + 1,
                   total = total + excluded.total,
                   wallet_index = excluded.wallet_index,
                   updated_at = excluded.updated_at""",
            (_utc_day(ts), wallet_address.lower(), wallet_index, metric, float(value), time.time()),
        )

    def daily_metrics(self, day: Optional[str] = None, wallet: Optional[str] = None) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM daily_metrics WHERE day = ?"
        params: List[Any] = [day or _utc_day()]
        if wallet is not None:
            sql += " AND wallet_address = ?"
            params.append(wallet.lower())
        sql += " ORDER BY wallet_address, metric"
        return self._read(sql, params)

    # ── Balance sync queue ──

    def enqueue_balance_sync(
        self, wallet_address: str, wallet_index: int, error: str, max_retries: int = 3,
    ) -> int:
        addr = wallet_address.lower()
        now = time.time()
        existing = self._read(
            "SELECT id FROM balance_sync_queue WHERE wallet_address = ? AND status IN ('pending', 'retrying')",
            (addr,),
        )
        if existing:
            entry_id = int(existing[0]["id"])
            self._write(
                "UPDATE balance_sync_queue SET last_error = ?, updated_at = ? WHERE id = ?",
                (error[:1000], now, entry_id),
            )
            return entry_id
        cur = self._write(
            """INSERT INTO balance_sync_queue
               (wallet_address, wallet_index, status, retry_count, max_retries, last_error, created_at, updated_at)
               VALUES (?, ?, 'pending', 0, ?, ?, ?, ?)""",
            (addr, wallet_index, max_retries, error[:1000], now, now),
        )
        return int(cur.lastrowid)

    def due_balance_syncs(self, limit: int = 50) -> List[BalanceSyncEntry]:
        rows = self._read(
            """SELECT * FROM balance_sync_queue WHERE status IN ('pending', 'retrying')
               ORDER BY updated_at ASC LIMIT ?""",
            (limit,),
        )
        return [_row_to_sync_entry(r) for r in rows]

    def update_balance_sync(
        self, entry_id: int, status: SyncStatus, retry_count: int, last_error: Optional[str] = None,
    ) -> None:
        self._write(
            """UPDATE balance_sync_queue SET status = ?, retry_count = ?,
                   last_error = COALESCE(?, last_error), updated_at = ? WHERE id = ?""",
            (status.value, retry_count, last_error, time.time(), entry_id),
        )

    # ── Balance snapshot ──

    def save_balances(self, wallet_address: str, balances: Dict[str, Decimal]) -> None:
        addr = wallet_address.lower()
        now = time.time()
        with self._mutex:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                self._conn.executemany(
                    """INSERT INTO balances (wallet_address, token, amount, updated_at) VALUES (?, ?, ?, ?)
                       ON CONFLICT(wallet_address, token) DO UPDATE SET
                           amount = excluded.amount, updated_at = excluded.updated_at""",
                    [(addr, symbol, fmt_amount(amount), now) for symbol, amount in balances.items()],
                )
                self._conn.execute("COMMIT")
            except sqlite3.OperationalError as exc:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                if _busy(exc):
                    raise LedgerBusy(str(exc)) from exc
                raise LedgerError(str(exc)) from exc

    def get_balances(self, wallet_address: str) -> Dict[str, Decimal]:
        rows = self._read(
            "SELECT token, amount FROM balances WHERE wallet_address = ?", (wallet_address.lower(),)
        )
        return {r["token"]: Decimal(r["amount"]) for r in rows}


def _row_to_wallet(row: Dict[str, Any]) -> WalletRecord:
    return WalletRecord(
        address=row["address"],
        index=int(row["wallet_index"]),
        trading_pool=row["trading_pool"],
        placed_initial_orders=int(row["placed_initial_orders"]),
        created_at=float(row["created_at"]),
        updated_at=float(row["updated_at"]),
    )


def _row_to_order(row: Dict[str, Any]) -> Order:
    return Order(
        id=int(row["id"]),
        venue_order_id=row["venue_order_id"],
        tx_hash=row["tx_hash"],
        wallet_address=row["wallet_address"],
        order_type=OrderType(row["order_type"]),
        parent_order_id=row["parent_order_id"],
        from_token=row["from_token"],
        to_token=row["to_token"],
        from_amount=Decimal(row["from_amount"]),
        to_amount_min=Decimal(row["to_amount_min"]),
        status=OrderStatus(row["status"]),
        progress=float(row["progress"]),
        limit_price=row["limit_price"],
        grid_offset=row["grid_offset"],
        usd_value=float(row["usd_value"] or 0.0),
        placed_at=float(row["placed_at"]),
        filled_at=row["filled_at"],
        last_checked_at=row["last_checked_at"],
        filled_from_amount=_dec(row["filled_from_amount"]),
        filled_to_amount=_dec(row["filled_to_amount"]),
        skip_reason=row["skip_reason"],
    )


def _row_to_activity(row: Dict[str, Any]) -> ActivityRecord:
    return ActivityRecord(
        id=int(row["id"]),
        wallet_address=row["wallet_address"],
        activity_type=ActivityType(row["activity_type"]),
        tx_hash=row["tx_hash"],
        order_ref=row["order_ref"],
        token_from=row["token_from"],
        token_to=row["token_to"],
        amount_from=Decimal(row["amount_from"]),
        amount_to=Decimal(row["amount_to"]),
        usd_volume=float(row["usd_volume"]),
        execution_price=row["execution_price"],
        metadata=loads(row["metadata"]) if row["metadata"] else {},
        created_at=float(row["created_at"]),
    )


def _row_to_sync_entry(row: Dict[str, Any]) -> BalanceSyncEntry:
    return BalanceSyncEntry(
        id=int(row["id"]),
        wallet_address=row["wallet_address"],
        wallet_index=int(row["wallet_index"]),
        status=SyncStatus(row["status"]),
        retry_count=int(row["retry_count"]),
        max_retries=int(row["max_retries"]),
        last_error=row["last_error"],
        created_at=float(row["created_at"]),
        updated_at=float(row["updated_at"]),
    )


_SCHEMA = """
CREATE TABLE IF NOT EXISTS wallets (
    address TEXT PRIMARY KEY,
    wallet_index INTEGER NOT NULL UNIQUE,
    trading_pool TEXT NOT NULL,
    placed_initial_orders INTEGER NOT NULL DEFAULT 0 CHECK (placed_initial_orders >= 0),
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS orders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    venue_order_id TEXT NOT NULL UNIQUE,
    tx_hash TEXT,
    wallet_address TEXT NOT NULL,
    order_type TEXT NOT NULL CHECK (order_type IN ('grid_buy', 'grid_sell', 'counter_buy', 'counter_sell')),
    parent_order_id INTEGER REFERENCES orders(id),
    from_token TEXT NOT NULL,
    to_token TEXT NOT NULL,
    from_amount TEXT NOT NULL,
    to_amount_min TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'partial', 'filled', 'canceled', 'expired')),
    progress REAL NOT NULL DEFAULT 0 CHECK (progress >= 0 AND progress <= 100),
    limit_price REAL,
    grid_offset REAL,
    usd_value REAL NOT NULL DEFAULT 0,
    placed_at REAL NOT NULL,
    filled_at REAL,
    last_checked_at REAL,
    filled_from_amount TEXT,
    filled_to_amount TEXT,
    skip_reason TEXT,
    CHECK (parent_order_id IS NULL OR parent_order_id <> id),
    CHECK (
        (order_type LIKE 'grid_%' AND parent_order_id IS NULL)
        OR (order_type LIKE 'counter_%' AND parent_order_id IS NOT NULL)
    )
);
CREATE INDEX IF NOT EXISTS idx_orders_wallet_status ON orders(wallet_address, status);
CREATE INDEX IF NOT EXISTS idx_orders_tx_hash ON orders(tx_hash);
CREATE UNIQUE INDEX IF NOT EXISTS uq_orders_counter
    ON orders(parent_order_id, order_type) WHERE parent_order_id IS NOT NULL;

CREATE TABLE IF NOT EXISTS activity (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address TEXT NOT NULL,
    activity_type TEXT NOT NULL CHECK (activity_type IN ('LIMIT_ORDER', 'CLASSIC')),
    tx_hash TEXT NOT NULL UNIQUE,
    order_ref TEXT UNIQUE,
    token_from TEXT NOT NULL,
    token_to TEXT NOT NULL,
    amount_from TEXT NOT NULL,
    amount_to TEXT NOT NULL,
    usd_volume REAL NOT NULL,
    execution_price REAL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS error_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_index INTEGER,
    wallet_address TEXT,
    error_type TEXT NOT NULL,
    message TEXT NOT NULL,
    context TEXT,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_metrics (
    day TEXT NOT NULL,
    wallet_address TEXT NOT NULL,
    wallet_index INTEGER,
    metric TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    total REAL NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL,
    PRIMARY KEY (day, wallet_address, metric)
);

CREATE TABLE IF NOT EXISTS balance_sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address TEXT NOT NULL,
    wallet_index INTEGER NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('pending', 'retrying', 'success', 'abandoned')),
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    last_error TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS balances (
    wallet_address TEXT NOT NULL,
    token TEXT NOT NULL,
    amount TEXT NOT NULL,
    updated_at REAL NOT NULL,
    PRIMARY KEY (wallet_address, token)
);
"""
