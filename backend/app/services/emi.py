"""
EMI calculation.

Reducing-balance installment formula:
    EMI = [P * r * (1 + r)^n] / [(1 + r)^n - 1]
Where:
    P = principal (outstanding amount)
    r = monthly interest rate (annual_rate / 12 / 100)
    n = tenure (months)
"""

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_emi(principal: Decimal, annual_rate: Decimal, tenure_months: int) -> Decimal:
    """Monthly installment for ``principal`` over ``tenure_months``, rounded to cents."""
    if tenure_months <= 0:
        raise ValueError("tenure_months must be positive")

    principal = Decimal(principal)
    r = Decimal(annual_rate) / Decimal(1200)
    if r == 0:
        return quantize_money(principal / tenure_months)

    growth = (1 + r) ** tenure_months
    emi = principal * r * growth / (growth - 1)
    return quantize_money(emi)
