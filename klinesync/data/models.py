"""SQLAlchemy 2.x ORM models.

Tables
──────
Kline       persisted candle series (WITHOUT ROWID, clustered B-tree)
SyncRunLog  audit trail for every ingest / report-gaps / fill-gaps run
"""
from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from klinesync.data.database import Base


# ─────────────────────────────────────────────────────────────────────────────
# Kline series table
# ─────────────────────────────────────────────────────────────────────────────

class Kline(Base):
    """Persisted kline.

    WITHOUT ROWID clusters the B-tree on (symbol, interval, open_time) so a
    range scan is a sequential leaf walk.  open_time / close_time are Unix
    epoch seconds UTC.  The store checks existence before every insert; the
    composite PK is the backstop that keeps a race from duplicating a row.
    """

    __tablename__ = "kline"
    __table_args__ = (
        {"sqlite_with_rowid": False},
    )

    symbol:    Mapped[str] = mapped_column(String(32), primary_key=True, nullable=False)
    interval:  Mapped[str] = mapped_column(String(8),  primary_key=True, nullable=False)
    open_time: Mapped[int] = mapped_column(BigInteger, primary_key=True, nullable=False)

    close_time: Mapped[int] = mapped_column(BigInteger, nullable=False)

    open:   Mapped[float] = mapped_column(Float, nullable=False)
    high:   Mapped[float] = mapped_column(Float, nullable=False)
    low:    Mapped[float] = mapped_column(Float, nullable=False)
    close:  Mapped[float] = mapped_column(Float, nullable=False)
    volume: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    quote_asset_volume:     Mapped[float] = mapped_column(Float,      nullable=False, default=0.0)
    number_of_trades:       Mapped[int]   = mapped_column(BigInteger, nullable=False, default=0)
    taker_buy_base_volume:  Mapped[float] = mapped_column(Float,      nullable=False, default=0.0)
    taker_buy_quote_volume: Mapped[float] = mapped_column(Float,      nullable=False, default=0.0)

    # Provenance only; nothing downstream branches on it.
    synthetic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Kline {self.symbol}/{self.interval} @ {self.open_time} C={self.close}>"


# ─────────────────────────────────────────────────────────────────────────────
# Run audit log
# ─────────────────────────────────────────────────────────────────────────────

class SyncRunLog(Base):
    """Audit record for every pipeline operation.

    One row per invocation of ingest / report_gaps / fill_gaps, written on
    success and on failure.

    status  "complete" | "partial" | "error"
    """

    __tablename__ = "sync_run_log"
    __table_args__ = (
        Index("idx_sync_run_sym_int_run", "symbol", "interval", "run_at"),
    )

    id:        Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol:    Mapped[str] = mapped_column(String(32), nullable=False)
    interval:  Mapped[str] = mapped_column(String(8),  nullable=False)
    operation: Mapped[str] = mapped_column(String(16), nullable=False)
    run_at:    Mapped[int] = mapped_column(BigInteger, nullable=False)
    status:    Mapped[str] = mapped_column(String(16), nullable=False)

    windows_total:       Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    windows_failed:      Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_inserted:    Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_failed:      Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_synthesized: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gaps_found:          Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unresolved:          Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms:         Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<SyncRunLog {self.symbol}/{self.interval} {self.operation} "
            f"@ {self.run_at} status={self.status}>"
        )
