class TeamBotError(Exception):
    """Base class for all errors raised by the bot."""


class FetchError(TeamBotError):
    """The bank feed could not be read, not even from the staged snapshot."""


class LedgerError(TeamBotError):
    pass


class PaymentNotFound(LedgerError):
    pass


class DuplicatePayment(LedgerError):
    def __init__(self, order: int):
        super().__init__(f"Payment with order {order} already stored")
        self.order = order


class AccountNotFound(LedgerError):
    def __init__(self, account: str):
        super().__init__(f"No name found for account {account}")
        self.account = account


class SheetError(TeamBotError):
    pass


class RosterError(TeamBotError):
    """The sheet roster is unusable, e.g. the names row is empty."""


class PaymentProcessingError(TeamBotError):
    """A single payment failed; carries enough to report and retry it."""

    def __init__(self, order: int, step: str, reason: str):
        super().__init__(f"Payment {order} failed at {step}: {reason}")
        self.order = order
        self.step = step
        self.reason = reason
