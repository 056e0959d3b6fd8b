"""Point accrual and boosts."""
