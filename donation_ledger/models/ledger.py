from sqlalchemy import Column, String, Text, DateTime, Boolean, Integer, Numeric, ForeignKey, func
from sqlalchemy.orm import declarative_base
import uuid

Base = declarative_base()


def generate_id() -> str:
    return str(uuid.uuid4())


class Category(Base):
    """Fundraising bucket with a running total and an optional target"""
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_amount = Column(Numeric(12, 2), nullable=False, default=0)  # 0 means uncapped
    current_amount = Column(Numeric(12, 2), nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)
    has_progress_bar = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}', current_amount={self.current_amount})>"


class Donation(Base):
    """Confirmed donation, written once by reconciliation and never updated"""
    __tablename__ = "donations"

    id = Column(String(36), primary_key=True, default=generate_id)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=False, index=True)
    donor_name = Column(String(255), nullable=False)  # anonymized label when is_anonymous
    amount = Column(Numeric(12, 2), nullable=False)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    support_message = Column(String(150), nullable=True)
    email = Column(String(255), nullable=True)
    provider = Column(String(32), nullable=False)
    order_ref = Column(String(64), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<Donation(id={self.id}, category_id={self.category_id}, amount={self.amount}, provider='{self.provider}')>"


class PendingDonation(Base):
    """Donation intent waiting for provider confirmation"""
    __tablename__ = "pending_donations"

    order_ref = Column(String(64), primary_key=True)
    provider = Column(String(32), nullable=False, index=True)
    provider_order_id = Column(String(255), nullable=True, unique=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=False)
    donor_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    support_message = Column(String(150), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<PendingDonation(order_ref={self.order_ref}, provider='{self.provider}', amount={self.amount})>"
