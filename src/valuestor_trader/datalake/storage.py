"""Persistence layer for holder profiles, positions, decisions and executions."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, List, Optional, Protocol

from ..errors import StorageError
from ..monitoring.logger import get_logger
from ..utils.constants import utc_now
from .schemas import (
    DecisionKind,
    ExecutionStatus,
    HolderProfile,
    HolderValues,
    Position,
    TokenAnalysis,
    TradeDecision,
    TradeExecution,
    TradeType,
    parse_decimal,
)

logger = get_logger(__name__)

_DECODE_ERRORS = (ValueError, KeyError, TypeError, ArithmeticError)

DECISION_RECORDED = "recorded"
DECISION_AWAITING_APPROVAL = "awaiting_approval"


class StateStore(Protocol):
    """Interface the orchestrator relies on (SQLite, Postgres, ...)."""

    def list_active_profiles(self) -> List[HolderProfile]:
        ...

    def get_position(self, holder: str, token: str) -> Optional[Position]:
        ...

    def upsert_position(self, position: Position) -> None:
        ...

    def delete_position(self, holder: str, token: str) -> None:
        ...

    def save_execution(self, execution: TradeExecution) -> None:
        ...

    def record_decision(self, decision: TradeDecision, *, status: str = DECISION_RECORDED) -> None:
        ...

    def record_analysis(self, analysis: TokenAnalysis) -> None:
        ...


CREATE_PROFILE_TABLE = """
CREATE TABLE IF NOT EXISTS holder_profiles (
    id TEXT PRIMARY KEY,
    address TEXT NOT NULL UNIQUE,
    profile_values TEXT NOT NULL,
    is_active INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

CREATE_PROFILE_ACTIVE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_holder_profiles_active ON holder_profiles (is_active);
"""

CREATE_POSITION_TABLE = """
CREATE TABLE IF NOT EXISTS positions (
    holder TEXT NOT NULL,
    token TEXT NOT NULL,
    amount TEXT NOT NULL,
    average_buy_price TEXT NOT NULL,
    total_invested TEXT NOT NULL,
    current_value TEXT,
    unrealized_pnl TEXT,
    first_buy_at TEXT NOT NULL,
    last_update_at TEXT NOT NULL,
    PRIMARY KEY (holder, token)
);
"""

CREATE_EXECUTION_TABLE = """
CREATE TABLE IF NOT EXISTS trade_executions (
    id TEXT PRIMARY KEY,
    holder TEXT NOT NULL,
    token TEXT NOT NULL,
    type TEXT NOT NULL,
    amount TEXT NOT NULL,
    price TEXT NOT NULL,
    status TEXT NOT NULL,
    tx_hash TEXT,
    created_at TEXT NOT NULL,
    confirmed_at TEXT,
    error TEXT,
    max_price TEXT,
    min_proceeds TEXT,
    decision TEXT NOT NULL,
    expires_at TEXT NOT NULL
);
"""

CREATE_EXECUTION_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_trade_executions_expires ON trade_executions (expires_at);",
    "CREATE INDEX IF NOT EXISTS idx_trade_executions_holder ON trade_executions (holder, created_at);",
)

CREATE_DECISION_TABLE = """
CREATE TABLE IF NOT EXISTS trade_decisions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    holder TEXT NOT NULL,
    token TEXT NOT NULL,
    decision TEXT NOT NULL,
    confidence REAL NOT NULL,
    status TEXT NOT NULL,
    analyzed_at TEXT NOT NULL,
    payload TEXT NOT NULL
);
"""

CREATE_ANALYSIS_TABLE = """
CREATE TABLE IF NOT EXISTS token_analyses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token TEXT NOT NULL,
    risk_score INTEGER NOT NULL,
    analyzed_at TEXT NOT NULL,
    payload TEXT NOT NULL
);
"""

CREATE_SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER NOT NULL
);
"""

SCHEMA_VERSION = 2

_EXECUTION_COLUMNS = (
    "id, holder, token, type, amount, price, status, tx_hash, created_at, "
    "confirmed_at, error, max_price, min_proceeds, decision"
)


def _compact(payload: object) -> str:
    return json.dumps(payload, separators=(",", ":"))


class SQLiteStateStore:
    """SQLite-backed state store. Each operation opens its own connection."""

    def __init__(self, database_path: Path, *, execution_retention_days: int = 30) -> None:
        database_path = Path(database_path).resolve()
        if database_path.parent.exists() and not database_path.parent.is_dir():
            raise ValueError(f"Database path is not a directory: {database_path.parent}")
        self._database_path = database_path
        self._retention = timedelta(days=execution_retention_days)
        self._closed = False
        self._initialize()

    @property
    def database_path(self) -> Path:
        return self._database_path

    def _initialize(self) -> None:
        self._database_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as con:
            con.execute(CREATE_PROFILE_TABLE)
            con.execute(CREATE_PROFILE_ACTIVE_INDEX)
            con.execute(CREATE_POSITION_TABLE)
            con.execute(CREATE_EXECUTION_TABLE)
            con.execute(CREATE_SCHEMA_VERSION_TABLE)
            self._apply_migrations(con)
            con.commit()

    def _apply_migrations(self, con: sqlite3.Connection) -> None:
        current = self._get_schema_version(con)
        if current == 0:
            self._set_schema_version(con, 1)
            current = 1
        if current < 2:
            self._migrate_to_v2(con)
            current = 2
        if current != SCHEMA_VERSION:
            self._set_schema_version(con, SCHEMA_VERSION)

    def _get_schema_version(self, con: sqlite3.Connection) -> int:
        row = con.execute("SELECT version FROM schema_migrations ORDER BY ROWID DESC LIMIT 1").fetchone()
        if row is None:
            return 0
        return int(row[0])

    def _set_schema_version(self, con: sqlite3.Connection, version: int) -> None:
        con.execute("DELETE FROM schema_migrations")
        con.execute("INSERT INTO schema_migrations (version) VALUES (?)", (version,))

    def _migrate_to_v2(self, con: sqlite3.Connection) -> None:
        con.execute(CREATE_DECISION_TABLE)
        con.execute(CREATE_ANALYSIS_TABLE)
        for statement in CREATE_EXECUTION_INDEXES:
            con.execute(statement)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise StorageError(f"State store {self._database_path} is closed")
        try:
            con = sqlite3.connect(self._database_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open {self._database_path}: {exc}") from exc
        try:
            yield con
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            con.close()

    def ping(self) -> None:
        """Raise ``StorageError`` when the database cannot be queried."""

        with self._connect() as con:
            con.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self._closed = True

    # ------------------------------------------------------------------
    # Holder profiles
    # ------------------------------------------------------------------
    def upsert_profile(self, profile: HolderProfile) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO holder_profiles (id, address, profile_values, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                    profile_values = excluded.profile_values,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
                """,
                (
                    profile.id,
                    profile.address,
                    _compact(profile.values.to_dict()),
                    int(profile.is_active),
                    profile.created_at.isoformat(),
                    profile.updated_at.isoformat(),
                ),
            )
            con.commit()

    def get_profile(self, address: str) -> Optional[HolderProfile]:
        with self._connect() as con:
            row = con.execute(
                "SELECT id, address, profile_values, is_active, created_at, updated_at "
                "FROM holder_profiles WHERE address = ?",
                (address,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_profile(row)

    def list_active_profiles(self) -> List[HolderProfile]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT id, address, profile_values, is_active, created_at, updated_at "
                "FROM holder_profiles WHERE is_active = 1 ORDER BY created_at"
            ).fetchall()
        profiles: List[HolderProfile] = []
        for row in rows:
            try:
                profiles.append(self._row_to_profile(row))
            except _DECODE_ERRORS as exc:
                logger.warning(
                    "Skipping undecodable holder profile",
                    extra={"holder": row[1], "error": str(exc)},
                )
        return profiles

    def _row_to_profile(self, row: tuple) -> HolderProfile:
        return HolderProfile(
            id=row[0],
            address=row[1],
            values=HolderValues.from_dict(json.loads(row[2])),
            is_active=bool(row[3]),
            created_at=datetime.fromisoformat(row[4]),
            updated_at=datetime.fromisoformat(row[5]),
        )

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------
    def get_position(self, holder: str, token: str) -> Optional[Position]:
        with self._connect() as con:
            row = con.execute(
                "SELECT holder, token, amount, average_buy_price, total_invested, current_value, "
                "unrealized_pnl, first_buy_at, last_update_at FROM positions WHERE holder = ? AND token = ?",
                (holder, token),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_position(row)

    def upsert_position(self, position: Position) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO positions (
                    holder,
                    token,
                    amount,
                    average_buy_price,
                    total_invested,
                    current_value,
                    unrealized_pnl,
                    first_buy_at,
                    last_update_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(holder, token) DO UPDATE SET
                    amount = excluded.amount,
                    average_buy_price = excluded.average_buy_price,
                    total_invested = excluded.total_invested,
                    current_value = excluded.current_value,
                    unrealized_pnl = excluded.unrealized_pnl,
                    last_update_at = excluded.last_update_at
                """,
                (
                    position.holder,
                    position.token,
                    str(position.amount),
                    str(position.average_buy_price),
                    str(position.total_invested),
                    str(position.current_value) if position.current_value is not None else None,
                    str(position.unrealized_pnl) if position.unrealized_pnl is not None else None,
                    position.first_buy_at.isoformat(),
                    position.last_update_at.isoformat(),
                ),
            )
            con.commit()

    def delete_position(self, holder: str, token: str) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM positions WHERE holder = ? AND token = ?", (holder, token))
            con.commit()

    def list_positions(self, holder: str) -> List[Position]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT holder, token, amount, average_buy_price, total_invested, current_value, "
                "unrealized_pnl, first_buy_at, last_update_at FROM positions WHERE holder = ? "
                "ORDER BY first_buy_at",
                (holder,),
            ).fetchall()
        return [self._row_to_position(row) for row in rows]

    def _row_to_position(self, row: tuple) -> Position:
        return Position(
            holder=row[0],
            token=row[1],
            amount=parse_decimal(row[2]),
            average_buy_price=parse_decimal(row[3]),
            total_invested=parse_decimal(row[4]),
            current_value=parse_decimal(row[5]) if row[5] is not None else None,
            unrealized_pnl=parse_decimal(row[6]) if row[6] is not None else None,
            first_buy_at=datetime.fromisoformat(row[7]),
            last_update_at=datetime.fromisoformat(row[8]),
        )

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------
    def save_execution(self, execution: TradeExecution) -> None:
        """Insert or update an execution and purge anything past retention."""

        expires_at = execution.created_at + self._retention
        with self._connect() as con:
            con.execute(
                f"""
                INSERT INTO trade_executions ({_EXECUTION_COLUMNS}, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    price = excluded.price,
                    status = excluded.status,
                    tx_hash = excluded.tx_hash,
                    confirmed_at = excluded.confirmed_at,
                    error = excluded.error
                """,
                (
                    execution.id,
                    execution.holder,
                    execution.token,
                    execution.type.value,
                    execution.amount,
                    execution.price,
                    execution.status.value,
                    execution.tx_hash,
                    execution.created_at.isoformat(),
                    execution.confirmed_at.isoformat() if execution.confirmed_at else None,
                    execution.error,
                    execution.max_price,
                    execution.min_proceeds,
                    _compact(execution.decision.to_dict()),
                    expires_at.isoformat(),
                ),
            )
            self._purge(con, utc_now())
            con.commit()

    def get_execution(self, execution_id: str, *, now: Optional[datetime] = None) -> Optional[TradeExecution]:
        now = now or utc_now()
        with self._connect() as con:
            row = con.execute(
                f"SELECT {_EXECUTION_COLUMNS} FROM trade_executions WHERE id = ? AND expires_at > ?",
                (execution_id, now.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_execution(row)

    def list_executions(
        self,
        holder: Optional[str] = None,
        *,
        limit: int = 200,
        now: Optional[datetime] = None,
    ) -> List[TradeExecution]:
        now = now or utc_now()
        query = f"SELECT {_EXECUTION_COLUMNS} FROM trade_executions WHERE expires_at > ?"
        params: List[object] = [now.isoformat()]
        if holder:
            query += " AND holder = ?"
            params.append(holder)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._connect() as con:
            rows = con.execute(query, params).fetchall()
        return [self._row_to_execution(row) for row in rows]

    def purge_expired_executions(self, now: Optional[datetime] = None) -> int:
        with self._connect() as con:
            removed = self._purge(con, now or utc_now())
            con.commit()
        return removed

    def _purge(self, con: sqlite3.Connection, now: datetime) -> int:
        cur = con.execute("DELETE FROM trade_executions WHERE expires_at <= ?", (now.isoformat(),))
        return cur.rowcount

    def _row_to_execution(self, row: tuple) -> TradeExecution:
        return TradeExecution(
            id=row[0],
            holder=row[1],
            token=row[2],
            type=TradeType(row[3]),
            amount=row[4],
            price=row[5],
            status=ExecutionStatus(row[6]),
            tx_hash=row[7],
            created_at=datetime.fromisoformat(row[8]),
            confirmed_at=datetime.fromisoformat(row[9]) if row[9] else None,
            error=row[10],
            max_price=row[11],
            min_proceeds=row[12],
            decision=TradeDecision.from_dict(json.loads(row[13])),
        )

    # ------------------------------------------------------------------
    # Decisions and analyses
    # ------------------------------------------------------------------
    def record_decision(self, decision: TradeDecision, *, status: str = DECISION_RECORDED) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO trade_decisions (holder, token, decision, confidence, status, analyzed_at, payload)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    decision.holder,
                    decision.token,
                    decision.decision.value,
                    decision.confidence,
                    status,
                    decision.analyzed_at.isoformat(),
                    _compact(decision.to_dict()),
                ),
            )
            con.commit()

    def list_decisions(
        self,
        holder: Optional[str] = None,
        *,
        status: Optional[str] = None,
        decision: Optional[DecisionKind] = None,
        limit: int = 200,
    ) -> List[TradeDecision]:
        query = "SELECT payload FROM trade_decisions"
        clauses: List[str] = []
        params: List[object] = []
        if holder:
            clauses.append("holder = ?")
            params.append(holder)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if decision is not None:
            clauses.append("decision = ?")
            params.append(DecisionKind(decision).value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        with self._connect() as con:
            rows = con.execute(query, params).fetchall()
        return [TradeDecision.from_dict(json.loads(row[0])) for row in rows]

    def record_analysis(self, analysis: TokenAnalysis) -> None:
        with self._connect() as con:
            con.execute(
                "INSERT INTO token_analyses (token, risk_score, analyzed_at, payload) VALUES (?, ?, ?, ?)",
                (
                    analysis.token,
                    analysis.risk_score,
                    analysis.analyzed_at.isoformat(),
                    _compact(analysis.to_dict()),
                ),
            )
            con.commit()

    def get_latest_analysis(self, token: str) -> Optional[TokenAnalysis]:
        with self._connect() as con:
            row = con.execute(
                "SELECT payload FROM token_analyses WHERE token = ? ORDER BY analyzed_at DESC, id DESC LIMIT 1",
                (token,),
            ).fetchone()
        if row is None:
            return None
        return TokenAnalysis.from_dict(json.loads(row[0]))


__all__ = [
    "DECISION_AWAITING_APPROVAL",
    "DECISION_RECORDED",
    "SQLiteStateStore",
    "StateStore",
]
