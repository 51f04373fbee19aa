"""Data access layer for loan state"""

import copy
from typing import Dict, Optional
from sqlalchemy.orm import Session
from loan_risk_gateway.infrastructure.database.models import LoanRow, CollateralDepositRow, LoanPaymentRow
from loan_risk_gateway.domain.exceptions import LoanNotFoundError
from loan_risk_gateway.domain.models import (
    CollateralDeposit,
    CollateralPosition,
    LoanRecord,
    LoanState,
    LoanTerms,
    PaymentRecord,
    RepaymentAccount,
    RepaymentStatus,
)
from loan_risk_gateway.utils.date_utils import ensure_utc


class SqlLoanRepository:
    """Repository for funded loans backed by SQLAlchemy"""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, loan_id: str) -> bool:
        return self.db.get(LoanRow, loan_id) is not None

    def get(self, loan_id: str) -> LoanState:
        """Fetch loan state without taking a row lock"""
        row = self._get_row(loan_id)
        if row is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return _to_state(row)

    def load(self, loan_id: str) -> LoanState:
        """Fetch loan state, locking the row for the rest of the transaction"""
        row = self._get_row(loan_id, for_update=True)
        if row is None:
            raise LoanNotFoundError(f"Loan {loan_id} not found")
        return _to_state(row)

    def save(self, state: LoanState) -> None:
        """Insert or update loan state; flushed, committed by the caller"""
        record, account = state.record, state.account
        row = self._get_row(record.loan_id)
        if row is None:
            row = LoanRow(loan_id=record.loan_id)
            self.db.add(row)

        row.borrower_id = record.borrower_id
        row.loan_asset_id = record.loan_asset_id
        row.credit_score = record.terms.credit_score
        row.loan_amount = record.terms.loan_amount
        row.term_months = record.terms.term_months
        row.collateral_ratio = record.terms.collateral_ratio
        row.asset_class = record.terms.asset_class
        row.rate_bps = record.rate_bps

        row.principal_remaining = account.principal_remaining
        row.interest_accrued = account.interest_accrued
        row.funded_at = account.funded_at
        row.maturity_date = account.maturity_date
        row.last_payment_date = account.last_payment_date
        row.next_due_date = account.next_due_date
        row.status = account.status.value

        row.deposits = [
            CollateralDepositRow(
                position=i,
                asset_id=d.asset_id,
                asset_class=d.asset_class,
                amount=d.amount,
            )
            for i, d in enumerate(state.position.deposits)
        ]

        # Payments are append-only
        for sequence in range(len(row.payments), len(account.payments)):
            payment = account.payments[sequence]
            row.payments.append(
                LoanPaymentRow(
                    sequence=sequence,
                    amount=payment.amount,
                    interest_portion=payment.interest_portion,
                    principal_portion=payment.principal_portion,
                    discount=payment.discount,
                    paid_at=payment.paid_at,
                )
            )

        self.db.flush()

    def _get_row(self, loan_id: str, for_update: bool = False) -> Optional[LoanRow]:
        query = self.db.query(LoanRow).filter(LoanRow.loan_id == loan_id)
        if for_update:
            query = query.with_for_update()
        return query.first()


def _to_state(row: LoanRow) -> LoanState:
    terms = LoanTerms(
        credit_score=row.credit_score,
        loan_amount=row.loan_amount,
        term_months=row.term_months,
        collateral_ratio=row.collateral_ratio,
        asset_class=row.asset_class,
    )
    funded_at = ensure_utc(row.funded_at)
    return LoanState(
        record=LoanRecord(
            loan_id=row.loan_id,
            borrower_id=row.borrower_id,
            loan_asset_id=row.loan_asset_id,
            terms=terms,
            rate_bps=row.rate_bps,
            funded_at=funded_at,
        ),
        account=RepaymentAccount(
            loan_id=row.loan_id,
            principal_remaining=row.principal_remaining,
            interest_accrued=row.interest_accrued,
            rate_bps=row.rate_bps,
            funded_at=funded_at,
            maturity_date=ensure_utc(row.maturity_date),
            last_payment_date=ensure_utc(row.last_payment_date),
            next_due_date=ensure_utc(row.next_due_date),
            status=RepaymentStatus(row.status),
            payments=tuple(
                PaymentRecord(
                    amount=p.amount,
                    interest_portion=p.interest_portion,
                    principal_portion=p.principal_portion,
                    paid_at=ensure_utc(p.paid_at),
                    discount=p.discount,
                )
                for p in row.payments
            ),
        ),
        position=CollateralPosition(
            loan_id=row.loan_id,
            deposits=tuple(
                CollateralDeposit(asset_id=d.asset_id, asset_class=d.asset_class, amount=d.amount)
                for d in row.deposits
            ),
        ),
    )


class InMemoryLoanRepository:
    """Dict-backed repository for tests and embedded use"""

    def __init__(self):
        self._states: Dict[str, LoanState] = {}

    def exists(self, loan_id: str) -> bool:
        return loan_id in self._states

    def get(self, loan_id: str) -> LoanState:
        return self.load(loan_id)

    def load(self, loan_id: str) -> LoanState:
        try:
            return copy.deepcopy(self._states[loan_id])
        except KeyError:
            raise LoanNotFoundError(f"Loan {loan_id} not found") from None

    def save(self, state: LoanState) -> None:
        self._states[state.record.loan_id] = copy.deepcopy(state)
