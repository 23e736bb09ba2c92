"""Trading models: account settings, demo positions, demo orders."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from cryptex.database import Base


class AccountSettings(Base):
    """
    Per-user demo account state.

    ``demo_balance`` is the single source of truth for the user's cash. It is
    reduced by the notional of every buy fill and increased by the notional
    of every sell fill.
    """
    __tablename__ = "account_settings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    demo_balance = Column(Float, default=10000.0, nullable=False)
    last_reset_at = Column(DateTime, nullable=True)

    # UI preferences
    first_run_complete = Column(Boolean, default=False)
    dark_mode = Column(Boolean, default=False)
    email_alerts = Column(Boolean, default=True)
    in_app_alerts = Column(Boolean, default=True)

    # Admin kill switch
    trading_disabled = Column(Boolean, default=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="account_settings")


class DemoPosition(Base):
    """
    One simulated position. Every filled order opens its own row.

    quantity is signed: > 0 long, < 0 short, 0 closed.
    """
    __tablename__ = "demo_positions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    symbol = Column(String, nullable=False, index=True)  # e.g. "BTCUSDT"
    quantity = Column(Float, default=0.0, nullable=False)
    avg_price = Column(Float, default=0.0, nullable=False)
    sl = Column(Float, nullable=True)  # Stop loss trigger price
    tp = Column(Float, nullable=True)  # Take profit trigger price
    unrealized_pnl = Column(Float, default=0.0)  # Snapshot only; recomputed on read

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="positions")


class DemoOrder(Base):
    """Append-only fill record. Closing fills carry the realized P&L."""
    __tablename__ = "demo_orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    symbol = Column(String, nullable=False, index=True)
    side = Column(String, nullable=False)  # "buy" or "sell"
    order_type = Column(String, default="market", nullable=False)  # "market" or "limit"
    quantity = Column(Float, nullable=False)  # Always positive
    price = Column(Float, nullable=False)  # Fill price
    status = Column(String, default="filled", nullable=False)
    realized_pnl = Column(Float, default=0.0)
    sl = Column(Float, nullable=True)
    tp = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User", back_populates="orders")
