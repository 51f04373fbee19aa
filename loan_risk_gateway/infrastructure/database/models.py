"""SQLAlchemy ORM models for funded loans, collateral and payments"""

from decimal import Decimal
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, TypeDecorator
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class ExactDecimal(TypeDecorator):
    """Decimal stored as text so 18-decimal token amounts survive every backend"""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else Decimal(value)


class LoanRow(Base):
    """Funded loan with its repayment account"""

    __tablename__ = "loan"

    loan_id = Column(String(128), primary_key=True)
    borrower_id = Column(Text, nullable=False, index=True)
    loan_asset_id = Column(Text, nullable=False)

    # Accepted terms
    credit_score = Column(Integer, nullable=False)
    loan_amount = Column(ExactDecimal, nullable=False)
    term_months = Column(Integer, nullable=False)
    collateral_ratio = Column(ExactDecimal, nullable=False)
    asset_class = Column(Text, nullable=False)
    rate_bps = Column(Integer, nullable=False)

    # Repayment account
    principal_remaining = Column(ExactDecimal, nullable=False)
    interest_accrued = Column(ExactDecimal, nullable=False)
    funded_at = Column(DateTime(timezone=True), nullable=False)
    maturity_date = Column(DateTime(timezone=True), nullable=False)
    last_payment_date = Column(DateTime(timezone=True), nullable=False)
    next_due_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(Text, nullable=False, default="active")

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    deposits = relationship(
        "CollateralDepositRow",
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="CollateralDepositRow.position",
    )
    payments = relationship(
        "LoanPaymentRow",
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="LoanPaymentRow.sequence",
    )


class CollateralDepositRow(Base):
    """One deposit backing a loan"""

    __tablename__ = "collateral_deposit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(String(128), ForeignKey("loan.loan_id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    asset_id = Column(Text, nullable=False)
    asset_class = Column(Text, nullable=False)
    amount = Column(ExactDecimal, nullable=False)

    loan = relationship("LoanRow", back_populates="deposits")


class LoanPaymentRow(Base):
    """Applied payment, kept for history"""

    __tablename__ = "loan_payment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(String(128), ForeignKey("loan.loan_id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    amount = Column(ExactDecimal, nullable=False)
    interest_portion = Column(ExactDecimal, nullable=False)
    principal_portion = Column(ExactDecimal, nullable=False)
    discount = Column(ExactDecimal, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=False)

    loan = relationship("LoanRow", back_populates="payments")
