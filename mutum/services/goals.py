"""
Goal Progress Tracker

Production goals hold per-variant targets for a product. Produced
quantities accumulate into current_progress; progress only ever grows.
Deadlines are informational and completion is a manual operator action,
even when every target has been met.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

import psycopg2
from psycopg2.extras import Json

from mutum.models.domain import GoalStatus, Product, ProductionGoal, TOTAL_VARIANT
from mutum.services.exceptions import BackendError, NotFoundError, ValidationError
from mutum.utils.database import db

logger = logging.getLogger(__name__)

LABEL_DONE = "Concluído"
LABEL_LATE = "Atrasado"
LABEL_ON_TIME = "No Prazo"

GOAL_COLUMNS = "id, product_id, name, deadline, targets, current_progress, status"


def variant_quantities(product: Product, quantity: int, per_variant: Optional[Dict[str, int]] = None) -> Dict[str, int]:
    """
    Split a produced quantity into goal progress keys.

    Products without sizes accumulate under the single 'Total' key.
    Sized product goals only hold size keys, so a sized log without a
    per-size breakdown yields no progress at all.
    """
    if quantity < 0:
        raise ValidationError("Quantity must be >= 0")
    if not product.sizes:
        return {TOTAL_VARIANT: quantity} if quantity else {}
    if not per_variant:
        return {}

    unknown = set(per_variant) - set(product.sizes)
    if unknown:
        raise ValidationError(f"Unknown sizes for {product.name}: {', '.join(sorted(unknown))}")
    if any(q < 0 for q in per_variant.values()):
        raise ValidationError("Variant quantities must be >= 0")
    if sum(per_variant.values()) != quantity:
        raise ValidationError("Variant quantities must add up to the produced quantity")
    return {variant: q for variant, q in per_variant.items() if q}


def record_production(goal: ProductionGoal, quantities: Dict[str, int]) -> ProductionGoal:
    """Return the goal with quantities added to its progress (completed goals are left as is)"""
    if goal.status == GoalStatus.COMPLETED:
        return goal
    progress = dict(goal.current_progress)
    for variant, quantity in quantities.items():
        if quantity < 0:
            raise ValidationError("Progress cannot be decremented")
        progress[variant] = progress.get(variant, 0) + quantity
    return goal.model_copy(update={"current_progress": progress})


def targets_met(goal: ProductionGoal) -> bool:
    if not goal.targets:
        return False
    return all(goal.current_progress.get(k, 0) >= v for k, v in goal.targets.items())


def goal_display_status(goal: ProductionGoal, today: Optional[date] = None) -> str:
    """Derived label; never stored"""
    today = today or date.today()
    if goal.status == GoalStatus.COMPLETED or targets_met(goal):
        return LABEL_DONE
    if goal.deadline is not None and goal.deadline < today:
        return LABEL_LATE
    return LABEL_ON_TIME


class GoalTracker:
    """Persists production goals and their progress"""

    def create_goal(
        self,
        product: Product,
        name: str,
        deadline: Optional[date],
        targets: Dict[str, int],
    ) -> ProductionGoal:
        if not name or not name.strip():
            raise ValidationError("Goal name is required")
        if any(q < 0 for q in targets.values()):
            raise ValidationError("Targets must be >= 0")

        if product.sizes:
            unknown = set(targets) - set(product.sizes)
            if unknown:
                raise ValidationError(f"Unknown sizes for {product.name}: {', '.join(sorted(unknown))}")
            clean = {size: q for size, q in targets.items() if q}
        else:
            clean = {TOTAL_VARIANT: sum(targets.values())} if sum(targets.values()) else {}
        if not clean:
            raise ValidationError("A goal needs at least one positive target")

        row = db.execute_query(
            f"""
            INSERT INTO production_goals (product_id, name, deadline, targets, current_progress, status)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {GOAL_COLUMNS}
            """,
            (str(product.id), name.strip(), deadline, Json(clean), Json({}), GoalStatus.PENDING.value),
            fetch_one=True,
        )
        logger.info(f"Created production goal '{name}' for {product.name}")
        return ProductionGoal(**row)

    def active_goals(self, product_id: Optional[str] = None) -> List[ProductionGoal]:
        """Goals not yet completed, earliest deadline first"""
        query = f"SELECT {GOAL_COLUMNS} FROM production_goals WHERE status <> %s"
        params: tuple = (GoalStatus.COMPLETED.value,)
        if product_id is not None:
            query += " AND product_id = %s"
            params += (str(product_id),)
        query += " ORDER BY deadline ASC NULLS LAST"
        try:
            rows = db.execute_query(query, params)
        except psycopg2.Error as e:
            logger.error(f"Error fetching goals: {e}")
            raise BackendError("Erro ao carregar metas.", e)
        return [ProductionGoal(**row) for row in rows]

    def apply_production(self, product_id: str, quantities: Dict[str, int]) -> List[ProductionGoal]:
        """
        Add produced quantities to every active goal of a product.

        Each key is incremented in place by the store so concurrent logs
        do not lose progress.
        """
        goals = self.active_goals(product_id)
        if not quantities:
            return goals

        updated = []
        for goal in goals:
            for variant, quantity in quantities.items():
                if quantity < 0:
                    raise ValidationError("Progress cannot be decremented")
                db.execute_update(
                    """
                    UPDATE production_goals
                    SET current_progress = current_progress
                        || jsonb_build_object(%s::text, COALESCE((current_progress->>%s)::int, 0) + %s)
                    WHERE id = %s AND status <> %s
                    """,
                    (variant, variant, quantity, str(goal.id), GoalStatus.COMPLETED.value),
                )
            updated.append(record_production(goal, quantities))
        if updated:
            logger.info(f"Added {quantities} to {len(updated)} goals of product {product_id}")
        return updated

    def complete_goal(self, goal_id: str) -> None:
        """Manual completion by an operator"""
        count = db.execute_update(
            "UPDATE production_goals SET status = %s WHERE id = %s",
            (GoalStatus.COMPLETED.value, goal_id),
        )
        if not count:
            raise NotFoundError(f"Goal {goal_id} not found")
        logger.info(f"Goal {goal_id} marked completed")


def summarize(goals: Iterable[ProductionGoal], today: Optional[date] = None) -> List[Dict]:
    return [
        {
            "goal": goal,
            "label": goal_display_status(goal, today),
            "remaining": {
                k: max(0, v - goal.current_progress.get(k, 0)) for k, v in goal.targets.items()
            },
        }
        for goal in goals
    ]


_goal_tracker = None

def get_goal_tracker() -> GoalTracker:
    """Get singleton instance of GoalTracker"""
    global _goal_tracker
    if _goal_tracker is None:
        _goal_tracker = GoalTracker()
    return _goal_tracker
