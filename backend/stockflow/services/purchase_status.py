# Overview: Pure derivation of a purchase order's header status from its items.

"""
Status derivation (single source of truth)

RULES is evaluated top to bottom and the first matching rule wins:

  1. every line inactive                         -> Cancelled
  2. every line accepted at zero                 -> Rejected
  3. every live line approved                    -> FullyApproved
  4. any live line approved                      -> PartiallyApproved
  5. every live line verified and fully received -> FullyFinanceProcessed
  6. any live line verified                      -> PartiallyFinanceProcessed
  7. every live line fully received              -> CompletelyRegistered
  8. any live line received                      -> PartiallyRegistered
  9. every live line accepted                    -> AcceptedByAdmin
 10. otherwise                                   -> PendingAdminAcceptance

"Live" lines are active lines not accepted at zero. A line rejected to zero
drops out of the aggregate, so it cannot hold the order back.

Approval dominates finance, finance dominates registration, registration
dominates acceptance. The function reads nothing but the items and has no
side effects.
"""

from __future__ import annotations

from typing import Callable, Iterable, Sequence

from ..models import PurchaseOrderItem, PurchaseOrderStatus as S


def _live(items: Sequence[PurchaseOrderItem]) -> list[PurchaseOrderItem]:
    return [i for i in items if i.is_active and not i.is_dropped]


def _all(items, predicate) -> bool:
    return bool(items) and all(predicate(i) for i in items)


def _any(items, predicate) -> bool:
    return any(predicate(i) for i in items)


Rule = tuple[str, Callable[[list[PurchaseOrderItem], list[PurchaseOrderItem]], bool]]

# Each predicate receives (active items, live items)
RULES: tuple[Rule, ...] = (
    (S.CANCELLED, lambda active, live: not active),
    (S.REJECTED, lambda active, live: all(i.is_dropped for i in active)),
    (S.FULLY_APPROVED, lambda active, live: _all(live, lambda i: i.is_approved)),
    (S.PARTIALLY_APPROVED, lambda active, live: _any(live, lambda i: i.is_approved)),
    (
        S.FULLY_FINANCE_PROCESSED,
        lambda active, live: _all(live, lambda i: i.is_finance_verified and i.is_fully_registered),
    ),
    (S.PARTIALLY_FINANCE_PROCESSED, lambda active, live: _any(live, lambda i: i.is_finance_verified)),
    (S.COMPLETELY_REGISTERED, lambda active, live: _all(live, lambda i: i.is_fully_registered)),
    (S.PARTIALLY_REGISTERED, lambda active, live: _any(live, lambda i: i.is_registered)),
    (S.ACCEPTED_BY_ADMIN, lambda active, live: _all(live, lambda i: i.is_accepted)),
)


def derive_status(items: Iterable[PurchaseOrderItem]) -> str:
    items = list(items)
    active = [i for i in items if i.is_active]
    live = _live(items)
    for status, predicate in RULES:
        if predicate(active, live):
            return status
    return S.PENDING_ADMIN_ACCEPTANCE
