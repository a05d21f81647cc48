"""Pure storage account transitions.

Each transition takes the current counters and returns new counters, or
raises InsufficientCapacityError when the result would break an account
invariant. Nothing here touches the database: the repository reads the row
under lock, applies a transition and writes the result back, so a rejected
transition leaves the row untouched.

Invariants checked after every transition:
    balance >= 0
    reserved >= 0
    balance >= reserved
    total >= 0
    balance == total - spent
"""

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from storage_quota.core.errors import InsufficientCapacityError
from storage_quota.services.storage_units import FREE_PLAN_CREDITS

if TYPE_CHECKING:
    from storage_quota.models.storage import StorageAccount


@dataclass(frozen=True)
class AccountSnapshot:
    """Immutable view of one storage account's counters.

    Attributes:
        balance: Credits owned (total - spent).
        reserved: Credits held by pending uploads.
        total: Credits ever granted.
        spent: Credits charged for finalized uploads.
    """

    balance: int
    reserved: int
    total: int
    spent: int

    @classmethod
    def fresh(cls) -> "AccountSnapshot":
        """Counters of a newly opened account holding only the free grant."""
        return cls(
            balance=FREE_PLAN_CREDITS,
            reserved=0,
            total=FREE_PLAN_CREDITS,
            spent=0,
        )

    @classmethod
    def from_model(cls, account: "StorageAccount") -> "AccountSnapshot":
        return cls(
            balance=account.credits_balance,
            reserved=account.credits_reserved,
            total=account.credits_total,
            spent=account.credits_spent,
        )

    @property
    def available(self) -> int:
        """Credits a new upload may reserve."""
        return self.balance - self.reserved

    def reserve(self, units: int) -> "AccountSnapshot":
        """Hold credits for an upload that has not been transferred yet.

        Args:
            units: Credits to hold.

        Returns:
            Snapshot with reserved increased by units.

        Raises:
            InsufficientCapacityError: If available < units.
        """
        _require_non_negative(units)
        if self.available < units:
            raise InsufficientCapacityError(required=units, available=self.available)
        return self._checked(replace(self, reserved=self.reserved + units), units)

    def commit(self, units: int) -> "AccountSnapshot":
        """Turn a reservation into a permanent charge.

        Args:
            units: Credits reserved for the upload being finalized.

        Returns:
            Snapshot with the hold removed and the credits spent.

        Raises:
            InsufficientCapacityError: If the balance cannot cover the charge
                and the remaining reservations.
        """
        _require_non_negative(units)
        result = replace(
            self,
            reserved=max(self.reserved - units, 0),
            balance=self.balance - units,
            spent=self.spent + units,
        )
        return self._checked(result, units)

    def release(self, units: int) -> "AccountSnapshot":
        """Return reserved credits to availability. Balance is unchanged."""
        _require_non_negative(units)
        return self._checked(
            replace(self, reserved=max(self.reserved - units, 0)), units
        )

    def grant(self, delta: int) -> "AccountSnapshot":
        """Apply a grant, purchase, refund or admin adjustment.

        Positive deltas add to both total and balance. Negative deltas (admin
        corrections) are allowed as long as the invariants still hold.

        Args:
            delta: Signed credit amount.

        Returns:
            Snapshot with total and balance moved by delta.

        Raises:
            InsufficientCapacityError: If a negative delta would take the
                balance below zero or below the reserved amount.
        """
        result = replace(
            self,
            total=self.total + delta,
            balance=self.balance + delta,
        )
        return self._checked(result, max(-delta, 0))

    def _checked(self, result: "AccountSnapshot", units: int) -> "AccountSnapshot":
        if (
            result.balance < 0
            or result.reserved < 0
            or result.balance < result.reserved
            or result.total < 0
            or result.balance != result.total - result.spent
        ):
            raise InsufficientCapacityError(required=units, available=self.available)
        return result


def _require_non_negative(units: int) -> None:
    if units < 0:
        raise ValueError(f"units must be non-negative, got {units}")
