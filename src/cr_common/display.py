"""Integer formatting helpers for credits and BDT prices.

Credits and prices are plain ints everywhere. No float, no Decimal.
"""


def credits_to_display(credits: int) -> str:
    """150 -> '150 credits', -5 -> '-5 credits', 1 -> '1 credit'."""
    unit = "credit" if abs(credits) == 1 else "credits"
    return f"{credits:,} {unit}"


def taka_to_display(amount: int) -> str:
    """Format a whole-taka price: 2000 -> '৳2,000'."""
    if amount < 0:
        return f"-৳{-amount:,}"
    return f"৳{amount:,}"
