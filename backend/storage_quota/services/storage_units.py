"""Storage unit conversion.

Internal accounting uses integer credits; users only ever see GB.

    1 MB  = 100 credits
    1 GB  = 102,400 credits
    3 GB  = 307,200 credits (free plan)

All balance arithmetic stays in integers. GB values are for display and are
never fed back into balance arithmetic.
"""

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

CREDITS_PER_MB = 100
BYTES_PER_MB = 1_048_576
MB_PER_GB = 1024
CREDITS_PER_GB = CREDITS_PER_MB * MB_PER_GB

FREE_PLAN_GB = 3
FREE_PLAN_CREDITS = FREE_PLAN_GB * CREDITS_PER_GB

_TWO_PLACES = Decimal("0.01")


def required_units(byte_size: int) -> int:
    """Credits needed to store a file of the given size.

    Rounds up so a partial unit is always charged in full and any non-empty
    file costs at least one credit.

    Args:
        byte_size: File size in bytes.

    Returns:
        Whole credits, ceil(byte_size * 100 / 1,048,576).

    Raises:
        ValueError: If byte_size is negative.
    """
    if byte_size < 0:
        raise ValueError(f"byte_size must be non-negative, got {byte_size}")
    return -(-byte_size * CREDITS_PER_MB // BYTES_PER_MB)


def units_to_gb(units: int) -> Decimal:
    """Convert credits to GB for display, rounded half-up to two decimals.

    Args:
        units: Credit amount (may be negative for ledger charges).

    Returns:
        GB as a Decimal with two decimal places.
    """
    return (Decimal(units) / CREDITS_PER_GB).quantize(
        _TWO_PLACES, rounding=ROUND_HALF_UP
    )


def gb_to_units(gb: Decimal | int) -> int:
    """Convert GB to credits, rounding up to the next whole credit.

    Used when storage is bought or granted in GB.

    Args:
        gb: Amount of storage in GB.

    Returns:
        Whole credits.

    Raises:
        ValueError: If gb is negative.
    """
    amount = Decimal(gb)
    if amount < 0:
        raise ValueError(f"gb must be non-negative, got {gb}")
    return int((amount * CREDITS_PER_GB).to_integral_value(rounding=ROUND_CEILING))


def percentage_used(spent: int, total: int) -> int:
    """Share of lifetime credits already spent, as a whole percentage.

    Args:
        spent: Credits charged so far.
        total: Credits ever granted.

    Returns:
        Rounded half-up percentage, 0 when nothing was ever granted.
    """
    if total <= 0:
        return 0
    return int(
        (Decimal(spent) * 100 / Decimal(total)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )
