"""
Financial recalculator.

WHAT: Derives a proposal's subtotal, credits, tax and total from its line
items and credit records.

WHY: The four pricing fields are never hand-edited. Every line-item or
credit mutation calls `recalculate` inside the same transaction, so the
stored total always equals (subtotal - credits) * (1 + taxRate / 100).

HOW: `compute_totals` is a pure function over a data snapshot (easy to
test exhaustively). `FinancialRecalculator.recalculate` reads the
snapshot through the DAOs, computes, and persists the derived fields.
Credits that exceed the subtotal are a data error and raise
ValidationError, which rolls back the mutation that caused it.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ProposalNotFoundError, ValidationError
from app.dao.proposal import ProposalDAO, ProposalServiceDAO, CreditDAO
from app.models.proposal import CreditType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    """Quantize any numeric to cents, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ProposalTotals:
    """Derived pricing of one proposal."""

    subtotal: Decimal
    credits_total: Decimal
    after_credits: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def compute_totals(services: Iterable, credits: Iterable, tax_rate) -> ProposalTotals:
    """
    Compute proposal pricing from line items and credits.

    subtotal      = sum of counted service amounts
    credits_total = sum(dollar credits) + sum(percent credits * subtotal / 100)
    after_credits = subtotal - credits_total
    tax_amount    = after_credits * tax_rate / 100
    total_amount  = after_credits + tax_amount

    Services awaiting or refused client approval are not counted.

    Args:
        services: Objects with `amount` and `counts_toward_total`
        credits: Objects with `amount` and `type`
        tax_rate: Tax percentage

    Returns:
        ProposalTotals, every field rounded to cents

    Raises:
        ValidationError: If credits exceed the subtotal

    Example:
        services 1000 + 500, one 10% credit, 8% tax
        -> subtotal 1500, credits 150, after credits 1350, tax 108, total 1458
    """
    subtotal = sum(
        (Decimal(str(s.amount)) for s in services if getattr(s, "counts_toward_total", True)),
        Decimal("0"),
    )

    credits_total = Decimal("0")
    for credit in credits:
        amount = Decimal(str(credit.amount))
        if credit.type == CreditType.PERCENT:
            credits_total += subtotal * amount / HUNDRED
        else:
            credits_total += amount

    subtotal = to_money(subtotal)
    credits_total = to_money(credits_total)
    after_credits = subtotal - credits_total

    if after_credits < 0:
        raise ValidationError(
            message="Credits exceed the proposal subtotal",
            subtotal=str(subtotal),
            credits_total=str(credits_total),
        )

    tax_amount = to_money(after_credits * Decimal(str(tax_rate or 0)) / HUNDRED)
    return ProposalTotals(
        subtotal=subtotal,
        credits_total=credits_total,
        after_credits=after_credits,
        tax_amount=tax_amount,
        total_amount=after_credits + tax_amount,
    )


class FinancialRecalculator:
    """
    Persists derived pricing for a proposal.

    Idempotent: recalculating an unchanged proposal rewrites the same
    values. Has no side effects beyond the four derived fields (plus the
    stored credits total).
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.proposal_dao = ProposalDAO(session)
        self.service_dao = ProposalServiceDAO(session)
        self.credit_dao = CreditDAO(session)

    async def recalculate(self, proposal_id: int) -> ProposalTotals:
        """
        Re-derive and store the pricing of one proposal.

        Raises:
            ProposalNotFoundError: If the proposal does not exist
            ValidationError: If credits exceed the subtotal
        """
        proposal = await self.proposal_dao.get_by_id(proposal_id)
        if not proposal:
            raise ProposalNotFoundError(resource_type="Proposal", resource_id=proposal_id)

        # WHY: pending writes must be visible to the snapshot queries
        await self.session.flush()
        services = await self.service_dao.list_for_proposal(proposal_id)
        credits = await self.credit_dao.list_for_proposal(proposal_id)

        totals = compute_totals(services, credits, proposal.tax_rate)
        await self.proposal_dao.set_totals(
            proposal_id,
            subtotal=totals.subtotal,
            credits_total=totals.credits_total,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
        )
        await self.session.refresh(proposal)

        logger.debug(
            f"Recalculated proposal {proposal_id}: subtotal={totals.subtotal} "
            f"credits={totals.credits_total} tax={totals.tax_amount} total={totals.total_amount}"
        )
        return totals
