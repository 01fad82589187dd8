from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric
from sqlalchemy.orm import relationship

from app.db.base import Base, MYSQL_ARGS


class Drug(Base):
    """
    Catalog row. Maintained by the catalog service; stock and transfers
    only reference it.
    """
    __tablename__ = "drugs"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    hospital_drug_code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    generic_name = Column(String(255), default="")
    dosage_form = Column(String(20), default="")
    strength = Column(String(100), default="")
    unit = Column(String(50), default="unit")
    price_per_box = Column(Numeric(14, 2), default=Decimal("0"))
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    stocks = relationship("Stock", back_populates="drug")
