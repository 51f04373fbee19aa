"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input is malformed: out-of-range score, non-positive amount, unknown asset class"""

    pass


class DataQualityError(DomainException):
    """External data (prices) is missing or stale"""

    pass


class PriceUnavailableError(DataQualityError):
    """No usable price for an asset"""

    def __init__(self, asset_id: str, reason: str = "missing"):
        super().__init__(f"Price for {asset_id} is {reason}")
        self.asset_id = asset_id
        self.reason = reason


class StateError(DomainException):
    """Stored state disagrees with the requested operation"""

    pass


class OverpaymentError(StateError):
    """Payment exceeds the total currently owed"""

    pass


class TerminalAccountError(StateError):
    """Account is PaidOff or Defaulted and accepts no further changes"""

    pass


class ZeroLoanValueError(StateError):
    """Collateral ratio requested against a loan with no value"""

    pass


class CollateralWithdrawalError(StateError):
    """Withdrawal would exceed the deposit or break the minimum collateral ratio"""

    pass


class LoanAlreadyExistsError(StateError):
    """A loan with this identifier has already been funded"""

    pass


class LoanNotFoundError(DomainException):
    """No stored loan for the given identifier"""

    pass


class PriceServiceError(DataQualityError):
    """Price service returned an error or is unavailable"""

    pass
