"""Deposit services: address registry, reconciliation and user/admin flows."""

from trondeposit.services.address_registry import AddressRegistry, UserAddressInfo
from trondeposit.services.deposits import DepositService, StartDepositResult
from trondeposit.services.reconciler import DepositReconciler, ReconcileOutcome

__all__ = [
    "AddressRegistry",
    "UserAddressInfo",
    "DepositReconciler",
    "ReconcileOutcome",
    "DepositService",
    "StartDepositResult",
]
