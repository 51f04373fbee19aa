"""Loan lifecycle orchestration - wires quoting, collateral and repayment to loan events"""

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Dict, Iterable, Iterator, Optional, Tuple

from loan_risk_gateway.config import EngineConfig
from loan_risk_gateway.domain import collateral, rates, repayment
from loan_risk_gateway.domain.exceptions import (
    CollateralWithdrawalError,
    LoanAlreadyExistsError,
    PriceUnavailableError,
    TerminalAccountError,
    ValidationError,
)
from loan_risk_gateway.domain.interfaces import Clock, LoanRepository, PerturbationSource, PriceLookup
from loan_risk_gateway.domain.models import (
    CollateralDeposit,
    CollateralPosition,
    HealthReport,
    LoanRecord,
    LoanState,
    LoanTerms,
    MarketState,
    PositionView,
    RateQuote,
    RepaymentStatus,
)
from loan_risk_gateway.domain.numeric import FINANCIAL_CONTEXT, Number, percent_to_bps


class KeyedLocks:
    """One re-entrant lock per loan identifier"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        # threads holding or waiting on each lock; entries go away at zero
        self._holders: Dict[str, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            self._holders[key] = self._holders.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[key] -= 1
                if not self._holders[key]:
                    del self._holders[key]
                    del self._locks[key]


# Shared by every LoanBook in the process
default_locks = KeyedLocks()


class LoanBook:
    """
    Entry point for loan lifecycle events.

    Engines stay pure; this class loads state from the repository, applies an
    engine operation and stores the result. Mutations are serialized per loan
    identifier; different loans proceed independently.
    """

    def __init__(
        self,
        repository: LoanRepository,
        clock: Clock,
        config: EngineConfig,
        locks: Optional[KeyedLocks] = None,
    ):
        self.repository = repository
        self.clock = clock
        self.config = config
        self.locks = locks or default_locks

    def quote(
        self,
        terms: LoanTerms,
        market: MarketState,
        perturbation: Optional[PerturbationSource] = None,
    ) -> RateQuote:
        draw = perturbation() if perturbation is not None else 0
        return rates.quote(terms, market, self.config, perturbation=draw)

    def fund(
        self,
        loan_id: str,
        borrower_id: str,
        terms: LoanTerms,
        rate_bps: int,
        loan_asset_id: str,
        deposits: Iterable[CollateralDeposit],
    ) -> LoanState:
        """
        Record a funded loan from accepted terms and rate.

        Creates the repayment account (principal = loan amount) and the
        collateral position, which must not be empty.
        """
        rates.validate_terms(terms, self.config)
        rate_config = self.config.rates
        if isinstance(rate_bps, bool) or not isinstance(rate_bps, int):
            raise ValidationError(f"rate_bps must be an integer, got {rate_bps!r}")
        lower, upper = percent_to_bps(rate_config.min_rate), percent_to_bps(rate_config.max_rate)
        if not lower <= rate_bps <= upper:
            raise ValidationError(f"rate_bps {rate_bps} is outside quoted bounds [{lower}, {upper}]")
        if not loan_id:
            raise ValidationError("loan_id must not be empty")

        deposits = tuple(deposits)
        if not deposits:
            raise ValidationError(f"Loan {loan_id} must be funded with collateral")

        with self.locks.hold(loan_id):
            if self.repository.exists(loan_id):
                raise LoanAlreadyExistsError(f"Loan {loan_id} is already funded")

            now = self.clock.now()
            account = repayment.open_account(
                loan_id, terms.loan_amount, rate_bps, now, terms.term_months, self.config
            )
            position = collateral.add_deposits(CollateralPosition(loan_id=loan_id), deposits, self.config)
            state = LoanState(
                record=LoanRecord(
                    loan_id=loan_id,
                    borrower_id=borrower_id,
                    loan_asset_id=loan_asset_id,
                    terms=terms,
                    rate_bps=rate_bps,
                    funded_at=account.funded_at,
                ),
                account=account,
                position=position,
            )
            self.repository.save(state)
            return state

    def top_up(self, loan_id: str, deposits: Iterable[CollateralDeposit]) -> LoanState:
        with self.locks.hold(loan_id):
            state = self.repository.load(loan_id)
            self._require_active(state)
            state = replace(state, position=collateral.add_deposits(state.position, deposits, self.config))
            self.repository.save(state)
            return state

    def withdraw(self, loan_id: str, asset_id: str, amount: Number, prices: PriceLookup) -> LoanState:
        """
        Withdraw collateral while keeping the minimum collateral ratio.

        Every remaining asset needs a fresh price; a partial valuation cannot
        prove the position stays covered.
        """
        with self.locks.hold(loan_id):
            state = self.repository.load(loan_id)
            self._require_active(state)
            position = collateral.remove_collateral(state.position, asset_id, amount)
            if not position.deposits:
                raise CollateralWithdrawalError(f"Loan {loan_id} cannot be left without collateral")

            now = self.clock.now()
            report = collateral.evaluate(position, self._loan_value(state, prices, now), prices, self.config, now)
            if report.partial:
                raise CollateralWithdrawalError(
                    f"Cannot verify coverage after withdrawal: no usable price for {', '.join(report.missing_assets)}"
                )
            minimum = self.config.rates.min_collateral_ratio
            if report.ratio < minimum:
                raise CollateralWithdrawalError(
                    f"Withdrawal would leave collateral ratio {report.ratio} below minimum {minimum}"
                )

            state = replace(state, position=position)
            self.repository.save(state)
            return state

    def pay(self, loan_id: str, amount: Number) -> LoanState:
        with self.locks.hold(loan_id):
            state = self.repository.load(loan_id)
            account = repayment.apply_payment(state.account, amount, self.clock.now(), self.config)
            return self._store(state, account)

    def settle(self, loan_id: str) -> LoanState:
        with self.locks.hold(loan_id):
            state = self.repository.load(loan_id)
            account = repayment.settle_in_full(state.account, self.clock.now(), self.config)
            return self._store(state, account)

    def check_default(self, loan_id: str, liquidation_eligible: bool) -> LoanState:
        with self.locks.hold(loan_id):
            state = self.repository.load(loan_id)
            account = repayment.evaluate_default(state.account, self.clock.now(), liquidation_eligible, self.config)
            if account is state.account:
                return state
            return self._store(state, account)

    def priced_assets(self, loan_id: str) -> Tuple[str, ...]:
        """Assets whose prices a valuation of this loan needs"""
        state = self.repository.get(loan_id)
        return tuple(sorted(set(state.position.asset_ids()) | {state.record.loan_asset_id}))

    def position(self, loan_id: str, prices: PriceLookup) -> PositionView:
        """Current repayment and collateral health for one loan"""
        state = self.repository.get(loan_id)
        now = self.clock.now()
        info = repayment.repayment_info(state.account, now, self.config)

        health: Optional[HealthReport] = None
        if state.position.deposits and info.owed.total_owed > 0:
            health = collateral.evaluate(state.position, self._loan_value(state, prices, now), prices, self.config, now)
        return PositionView(loan=state.record, repayment=info, health=health)

    def _store(self, state: LoanState, account) -> LoanState:
        position = state.position
        if account.status is RepaymentStatus.PAID_OFF:
            # collateral goes back to the borrower
            position = CollateralPosition(loan_id=position.loan_id)
        state = replace(state, account=account, position=position)
        self.repository.save(state)
        return state

    def _require_active(self, state: LoanState) -> None:
        if state.account.is_terminal:
            raise TerminalAccountError(
                f"Loan {state.record.loan_id} is {state.account.status.value}; collateral is locked"
            )

    def _loan_value(self, state: LoanState, prices: PriceLookup, now: datetime) -> Decimal:
        """USD value of everything owed, priced in the loan token"""
        owed = repayment.project_owed(state.account, now, self.config)
        asset_id = state.record.loan_asset_id
        price, reason = collateral.resolve_price(asset_id, prices, now, self.config.health.max_price_age_seconds)
        if reason is not None:
            raise PriceUnavailableError(asset_id, reason)
        with localcontext(FINANCIAL_CONTEXT):
            return owed.total_owed * price
