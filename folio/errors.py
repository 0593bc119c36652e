class LedgerError(Exception):
    """Base class for domain errors raised by the engine."""


class InvalidQuantity(LedgerError, ValueError):
    """Non-positive or non-finite shares, prices, amounts or percentages."""


class ComputationError(LedgerError, ArithmeticError):
    """A derived figure came out non-finite and was not stored."""


class HoldingNotFound(LedgerError, LookupError):
    pass


class DuplicateHolding(LedgerError):
    pass


class CertificateNotFound(LedgerError, LookupError):
    pass
