"""
Error taxonomy for checkout and payment reconciliation.

Only the link builder errors stop a checkout. Everything raised while
reconciling a return callback is caught by the engine and turned into a
logged outcome plus the usual buyer redirect.
"""


class PaylinkError(Exception):
    """Base class for all paylink failures."""


class InvalidOrderError(PaylinkError):
    """The order cannot be turned into a checkout link (e.g. no line items)."""


class InvalidHandleError(PaylinkError):
    """The merchant checkout handle is missing or blank."""


class UnknownOrderError(PaylinkError):
    """The order reference from a callback does not resolve to an order."""


class StatusCheckError(PaylinkError):
    """
    The provider could not be asked, or answered with something unusable.

    Callers must read this as "status unknown", never as "unpaid".
    """


class PersistenceError(PaylinkError):
    """An order store or audit log write/read failed."""
