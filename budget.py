from typing import Optional

from errors import ValidationError


class BudgetTracker:
    """Single monthly spending ceiling; 0 means the user never set one."""

    def __init__(self, ceiling: float = 0) -> None:
        self.ceiling = float(ceiling or 0)

    @staticmethod
    def validate(amount: object) -> float:
        try:
            value = float(amount)
        except (TypeError, ValueError) as exc:
            raise ValidationError("Budget must be a number") from exc
        if value != value or value <= 0:
            raise ValidationError("Budget must be greater than zero")
        return value

    def set_budget(self, amount: object) -> float:
        self.ceiling = self.validate(amount)
        return self.ceiling

    @staticmethod
    def utilization(total_spent: float, budget: Optional[float]) -> float:
        if not budget or budget <= 0:
            return 0.0
        return min(100.0, total_spent / budget * 100)

    @staticmethod
    def remaining(total_spent: float, budget: Optional[float]) -> float:
        return (budget or 0) - total_spent
