from sqlalchemy import Column, String, DateTime, BigInteger, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class Property(Base):
    __tablename__ = "properties"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, index=True)

    name = Column(String, nullable=True)
    address = Column(String, nullable=False)

    city = Column(String, nullable=True)
    state = Column(String, nullable=True)
    zip = Column(String, nullable=True)

    # Reverse relationships - ONE property has MANY tickets, leases, cash flows
    tickets = relationship("Ticket", back_populates="property", cascade="all, delete-orphan")
    leases = relationship("Lease", back_populates="property", cascade="all, delete-orphan")
    cash_flows = relationship("CashFlow", back_populates="property", cascade="all, delete-orphan")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
