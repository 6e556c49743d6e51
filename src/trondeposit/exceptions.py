"""Exception types raised by the deposit service."""


class DepositError(Exception):
    """Base class for all service errors."""

    pass


class MasterSecretError(DepositError):
    """The derivation mnemonic is missing or fails validation.

    Raised at startup; the service refuses to hand out addresses without it.
    """

    pass


class AddressAssignmentError(DepositError):
    """A derivation index could not be assigned; the caller should try again."""

    pass


class ChainClientError(DepositError):
    """A query against the chain data source failed."""

    pass


class CheckpointError(DepositError):
    """Invalid scan checkpoint update (e.g. moving the height backwards)."""

    pass


class DepositNotFoundError(DepositError):
    """Requested deposit record does not exist."""

    pass


class DuplicateTransactionError(DepositError):
    """A deposit with this transaction hash is already recorded."""

    pass


class InvalidDepositError(DepositError):
    """A deposit request failed validation."""

    pass


class DepositStateError(DepositError):
    """The deposit is not in a state that allows the requested transition."""

    pass


class UserNotFoundError(DepositError):
    """Requested user does not exist."""

    pass
