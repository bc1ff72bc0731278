"""Loyalty points engine: discount preview before charging, ledger posting after"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pos_settlement.config import settings
from pos_settlement.domain import loyalty as loyalty_math
from pos_settlement.domain.exceptions import LoyaltyRedemptionError
from pos_settlement.domain.models import LoyaltyEntryType, LoyaltyProgram, RedemptionPlan
from pos_settlement.domain.money import ZERO, as_money
from pos_settlement.infrastructure.database.repositories import LoyaltyRepository
from pos_settlement.infrastructure.observability.metrics import loyalty_points_counter, record_partial_write

logger = logging.getLogger(__name__)


class LoyaltyEngine:
    """
    Sole writer of the loyalty ledger and of the cached customer balance.

    The ledger is authoritative. A customer with no entries yet (imported
    balance) is read from the cached field, and the first posting opens the
    ledger with that balance so the running sum explains every point.
    """

    def __init__(self, db: Session, default_points_per_dollar=None):
        self.db = db
        self.repo = LoyaltyRepository(db)
        self.default_points_per_dollar = as_money(
            default_points_per_dollar if default_points_per_dollar is not None else settings.default_points_per_dollar
        )

    def active_program(self, location_id: str | None = None) -> Optional[LoyaltyProgram]:
        return self.repo.active_program(location_id)

    def balance(self, customer_id: int) -> int:
        entries = self.repo.ledger_entries(customer_id)
        if entries:
            return loyalty_math.running_balance(entries)

        customer = self.repo.get_customer(customer_id)
        return max(customer.loyalty_points or 0, 0) if customer else 0

    def preview_discount(
        self,
        customer_id: int | None,
        use_points: bool,
        subtotal,
        program: LoyaltyProgram | None = None,
    ) -> Decimal:
        """Candidate discount from the customer's points; 0 if not requested or no program"""
        if not use_points or customer_id is None:
            return ZERO
        program = program or self.active_program()
        return loyalty_math.preview_discount(self.balance(customer_id), program, subtotal)

    def plan_redemption(self, customer_id: int, amount_to_cover, program: LoyaltyProgram) -> RedemptionPlan:
        return loyalty_math.plan_redemption(self.balance(customer_id), amount_to_cover, program)

    def redeem(
        self,
        customer_id: int,
        amount_to_cover,
        program: LoyaltyProgram,
        transaction_id: int | None = None,
        location_id: str | None = None,
    ) -> RedemptionPlan:
        """
        Post a redemption sized to cover the amount.

        Raises:
            LoyaltyRedemptionError: If the entry could not be posted; the sale
                must not complete with a discount that was never redeemed
        """
        try:
            plan = self.plan_redemption(customer_id, amount_to_cover, program)
            if plan.points_to_redeem <= 0:
                return plan

            self._open_ledger(customer_id, program, location_id)
            self.repo.add_entry(
                customer_id=customer_id,
                entry_type=LoyaltyEntryType.REDEEM,
                points_balance=plan.balance_after,
                transaction_id=transaction_id,
                points_redeemed=plan.points_to_redeem,
                loyalty_program_id=program.id,
                location_id=location_id,
                description=f"Redeemed {plan.points_to_redeem} points for ${plan.redeemed_value:.2f}",
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LoyaltyRedemptionError(
                step="loyalty_redeem",
                transaction_id=transaction_id,
                message=f"Failed to post loyalty redemption for customer {customer_id}: {e}",
            ) from e

        loyalty_points_counter.labels(type="redeem").inc(plan.points_to_redeem)
        self._refresh_cache(customer_id, plan.balance_after)
        return plan

    def earn(
        self,
        customer_id: int,
        final_total,
        program: LoyaltyProgram | None = None,
        transaction_id: int | None = None,
        location_id: str | None = None,
    ) -> int:
        """
        Post points earned on a completed sale.

        Returns the number of points earned; 0 posts nothing.
        """
        rate = program.points_per_dollar if program is not None else self.default_points_per_dollar
        points = loyalty_math.points_earned(final_total, rate)
        if points <= 0:
            return 0

        self._open_ledger(customer_id, program, location_id)
        new_balance = self.balance(customer_id) + points
        self.repo.add_entry(
            customer_id=customer_id,
            entry_type=LoyaltyEntryType.EARN,
            points_balance=new_balance,
            transaction_id=transaction_id,
            points_earned=points,
            loyalty_program_id=program.id if program else None,
            location_id=location_id,
            description=f"Earned {points} points",
        )
        self.db.commit()

        loyalty_points_counter.labels(type="earn").inc(points)
        self._refresh_cache(customer_id, new_balance)
        return points

    def reconcile(self, customer_id: int) -> int:
        """Resum the ledger and overwrite the cached balance with the result"""
        balance = self.balance(customer_id)
        self.repo.set_cached_points(customer_id, balance)
        self.db.commit()
        logger.info("Loyalty balance reconciled", extra={"customer_id": customer_id, "points_balance": balance})
        return balance

    def _open_ledger(self, customer_id: int, program: LoyaltyProgram | None, location_id: str | None) -> None:
        """Carry an imported cached balance into the ledger before the first posting"""
        if self.repo.ledger_entries(customer_id):
            return

        customer = self.repo.get_customer(customer_id)
        opening = customer.loyalty_points if customer else 0
        if not opening or opening <= 0:
            return

        self.repo.add_entry(
            customer_id=customer_id,
            entry_type=LoyaltyEntryType.EARN,
            points_balance=opening,
            points_earned=opening,
            loyalty_program_id=program.id if program else None,
            location_id=location_id,
            description="Opening balance",
        )

    def _refresh_cache(self, customer_id: int, balance: int) -> bool:
        try:
            self.repo.set_cached_points(customer_id, balance)
            self.db.commit()
            return True
        except SQLAlchemyError:
            self.db.rollback()
            record_partial_write("loyalty_cache")
            logger.error(
                "Failed to refresh cached loyalty balance",
                extra={"step": "loyalty_cache", "customer_id": customer_id, "points_balance": balance},
                exc_info=True,
            )
            return False
