"""
services/balance_service.py — Balance computation and debt simplification.

This file is the SINGLE SOURCE OF TRUTH for how balances are computed.
Balances are never stored; they are folded from the persisted expense list
every time they are requested, so any create/update/delete is reflected on
the next read without cache invalidation.

Layer rules:
  - compute_balances() and simplify_debts() are pure: plain Python values in,
    plain Python values out. No store, no Flask.
  - get_balance_response() is the only function here that reads the store.

Sign convention:
  positive → the member is owed money (net creditor)
  negative → the member owes money (net debtor)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal

from backend.app.models.expense import Expense
from backend.app.services import group_service
from backend.app.services.expense_repository import ExpenseRepository
from backend.app.services.split_calculator import parse_split_input
from backend.app.store.record_store import RecordStore

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

# Transfers smaller than this are residue of Decimal division, not debt.
SETTLED_EPSILON = Decimal("1e-9")


# ── Core algorithms ────────────────────────────────────────────────────────

def compute_balances(
        expenses: Iterable[Expense],
        member_ids: Iterable[str],
) -> dict[str, Decimal]:
    """
    Canonical balance computation for a group.

    Algorithm:
      1. Seed every current member with 0.
      2. Credit each payer for the full amount they fronted.
      3. Debit each split participant for their split amount.

    Ids that only appear as payer or split participant (for example a member
    who has since left) still get an entry. The engine does not filter by
    current membership.

    Legacy records:
      - empty `splits` but a `split_among` list → debited as an equal split
        across `split_among`, as older clients intended.
      - neither → the payer is credited and nobody is debited. Such entries
        are informational and are tolerated, not rejected.

    Never raises. Malformed or out-of-range amounts count as 0. Order of expenses does not
    matter.
    """
    balances: dict[str, Decimal] = {}

    for member_id in member_ids:
        balances.setdefault(member_id, _ZERO)

    for expense in expenses:
        amount = parse_split_input(expense.amount)

        # Step 2: payer credit.
        balances[expense.paid_by] = balances.get(expense.paid_by, _ZERO) + amount

        # Step 3: participant debits.
        if expense.splits:
            for split in expense.splits:
                balances[split.user_id] = (
                    balances.get(split.user_id, _ZERO) - parse_split_input(split.amount)
                )
        elif expense.split_among:
            share = amount / len(expense.split_among)
            for user_id in expense.split_among:
                balances[user_id] = balances.get(user_id, _ZERO) - share

    return balances


def simplify_debts(balances: dict[str, Decimal]) -> list[dict]:
    """
    Greedy minimum cash flow debt simplification.

    Repeatedly matches the largest debtor with the largest creditor until
    all balances reach zero. For N members, produces at most N-1 transfers.
    This is a read-only suggestion of who should pay whom; nothing is recorded.

    Args:
        balances: {user_id: net_balance} from compute_balances().

    Returns:
        List of {"from_user_id": str, "to_user_id": str, "amount": Decimal}
        An empty list means all balances are already (effectively) zero.
    """
    creditors = sorted(
        [(uid, amt) for uid, amt in balances.items() if amt > SETTLED_EPSILON],
        key=lambda x: x[1],
        reverse=True,
    )
    debtors = sorted(
        [(uid, -amt) for uid, amt in balances.items() if amt < -SETTLED_EPSILON],
        key=lambda x: x[1],
        reverse=True,
    )

    transactions: list[dict] = []
    i = j = 0

    while i < len(creditors) and j < len(debtors):
        cid, credit = creditors[i]
        did, debt = debtors[j]

        transfer = min(credit, debt)
        transactions.append({
            "from_user_id": did,
            "to_user_id": cid,
            "amount": transfer,
        })

        creditors[i] = (cid, credit - transfer)
        debtors[j] = (did, debt - transfer)

        if creditors[i][1] <= SETTLED_EPSILON:
            i += 1
        if debtors[j][1] <= SETTLED_EPSILON:
            j += 1

    return transactions


# ── Read model ─────────────────────────────────────────────────────────────

def get_balance_response(
        group_id: str,
        caller_id: str,
        store: RecordStore,
) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Re-reads the group and its expenses from the store on every call.

    Raises:
        AppError(GROUP_NOT_FOUND, 404)  -- group does not exist.
        AppError(FORBIDDEN, 403)        -- caller not a group member.
    """
    group = group_service.get_group_or_404(group_id, store)
    group_service.require_member(group, caller_id)

    expenses = ExpenseRepository(store).list_by_group(group_id)
    balances = compute_balances(expenses, group.members)
    usernames = group_service.usernames_for(balances.keys(), store)

    balance_sum = sum(balances.values(), _ZERO)
    logger.debug(
        "Computed balances for group %s over %d expenses (sum=%s)",
        group_id, len(expenses), balance_sum,
    )

    return {
        "group_id": group_id,
        "balances": [
            {
                "user_id": uid,
                "name": usernames.get(uid, uid),
                "is_member": uid in group.members,
                "balance": str(bal),
            }
            for uid, bal in balances.items()
        ],
        "simplified_debts": [
            {
                "from_user_id": t["from_user_id"],
                "from_name": usernames.get(t["from_user_id"], t["from_user_id"]),
                "to_user_id": t["to_user_id"],
                "to_name": usernames.get(t["to_user_id"], t["to_user_id"]),
                "amount": str(t["amount"]),
            }
            for t in simplify_debts(balances)
        ],
        "balance_sum": str(balance_sum),
    }
