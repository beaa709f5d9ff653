"""
numeric.py - Checked Integer Arithmetic and Fixed-Point Logarithms

Every amount in the market is a bounded integer. The functions here perform
arithmetic under those bounds and raise NumericError with a specific
ErrorCode instead of silently wrapping or clamping.

Width families:
    - uint128: pool totals and balances
    - uint256: intermediate products
    - int256: signed cash balances and log terms

Fixed-point transcendental functions:
    - ln_fixed(x): natural log of x / DECIMALS, scaled by DECIMALS
    - exp_fixed(x): e ** (x / DECIMALS), scaled by DECIMALS

Both are evaluated in a private Decimal context with 50 significant digits
and truncated toward zero, so results are exact to within one base unit
(1e-18) and identical across platforms.
"""

from decimal import Decimal, Context, ROUND_HALF_EVEN, ROUND_DOWN, localcontext

from .core import (
    DECIMALS, ErrorCode, NumericError,
    UINT128_MAX, UINT256_MAX, INT256_MAX, INT256_MIN,
)


# ============================================================================
# DECIMAL CONTEXT
# ============================================================================
#
# ln/exp need more digits than a 256-bit integer carries. A private context
# keeps the result independent of whatever the caller did to the global one.
#
_FIXED_POINT_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)

_DECIMALS_D = Decimal(DECIMALS)

# e ** 135 * DECIMALS is the largest power that fits in a uint256.
EXP_MAX_INPUT = 135 * DECIMALS

# e ** -42 is below one base unit.
EXP_MIN_INPUT = -42 * DECIMALS


# ============================================================================
# UINT128
# ============================================================================

def add128(a: int, b: int) -> int:
    c = a + b
    if c > UINT128_MAX:
        raise NumericError(f"{a} + {b} overflows uint128", ErrorCode.UINT128_ADDITION_OVERFLOW)
    return c


def sub128(a: int, b: int) -> int:
    if b > a:
        raise NumericError(f"{a} - {b} underflows uint128", ErrorCode.UINT128_SUBTRACTION_UNDERFLOW)
    return a - b


# ============================================================================
# UINT256
# ============================================================================

def mul256(a: int, b: int) -> int:
    c = a * b
    if c > UINT256_MAX:
        raise NumericError(f"{a} * {b} overflows uint256", ErrorCode.UINT256_MULTIPLICATION_OVERFLOW)
    return c


def div256(a: int, b: int) -> int:
    if b == 0:
        raise NumericError("uint256 division by zero", ErrorCode.UINT256_DIVIDE_BY_ZERO)
    return a // b


def ceil_div(a: int, b: int) -> int:
    """Unsigned division rounded up."""
    if b == 0:
        raise NumericError("uint256 division by zero", ErrorCode.UINT256_DIVIDE_BY_ZERO)
    return -(-a // b)


def mul_div(a: int, b: int, c: int) -> int:
    """
    a * b / c, floored, with the product checked against uint256.

    Raises:
        NumericError(UINT256_MULTIPLICATION_OVERFLOW): If a * b overflows
        NumericError(UINT256_DIVIDE_BY_ZERO): If c is zero
    """
    return div256(mul256(a, b), c)


def mul_div_up(a: int, b: int, c: int) -> int:
    """a * b / c rounded up, with the same checks as mul_div."""
    return ceil_div(mul256(a, b), c)


# ============================================================================
# INT256
# ============================================================================

def add_int256(a: int, b: int) -> int:
    c = a + b
    if c > INT256_MAX or c < INT256_MIN:
        raise NumericError(f"{a} + {b} overflows int256", ErrorCode.INT256_ADDITION_OVERFLOW)
    return c


def sub_int256(a: int, b: int) -> int:
    return add_int256(a, neg_int256(b))


def mul_int256(a: int, b: int) -> int:
    c = a * b
    if c > INT256_MAX or c < INT256_MIN:
        raise NumericError(f"{a} * {b} overflows int256", ErrorCode.INT256_MULTIPLICATION_OVERFLOW)
    return c


def div_int256(a: int, b: int) -> int:
    """Signed division truncated toward zero."""
    if b == 0:
        raise NumericError("int256 division by zero", ErrorCode.INT256_DIVIDE_BY_ZERO)
    if a == INT256_MIN and b == -1:
        raise NumericError("int256 division overflow", ErrorCode.INT256_NEGATE_MIN_INT)
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def neg_int256(a: int) -> int:
    if a == INT256_MIN:
        raise NumericError("cannot negate int256 minimum", ErrorCode.INT256_NEGATE_MIN_INT)
    return -a


# ============================================================================
# FIXED-POINT LOG / EXP
# ============================================================================

def ln_fixed(x: int) -> int:
    """
    Natural logarithm in DECIMALS fixed point.

    Args:
        x: Positive value scaled by DECIMALS (1.0 == DECIMALS)

    Returns:
        ln(x / DECIMALS) * DECIMALS, truncated toward zero

    Raises:
        NumericError(NEGATIVE_LOG): If x <= 0
        NumericError(FIXED_POINT_UINT_OVERFLOW): If x exceeds uint256
    """
    if x <= 0:
        raise NumericError(f"ln of non-positive value {x}", ErrorCode.NEGATIVE_LOG)
    if x > UINT256_MAX:
        raise NumericError(f"ln input {x} overflows uint256", ErrorCode.FIXED_POINT_UINT_OVERFLOW)
    with localcontext(_FIXED_POINT_CONTEXT):
        result = (Decimal(x) / _DECIMALS_D).ln() * _DECIMALS_D
        return int(result.to_integral_value(rounding=ROUND_DOWN))


def exp_fixed(x: int) -> int:
    """
    Exponential in DECIMALS fixed point.

    Args:
        x: Signed exponent scaled by DECIMALS

    Returns:
        e ** (x / DECIMALS) * DECIMALS, truncated toward zero. Inputs below
        EXP_MIN_INPUT return 0.

    Raises:
        NumericError(FIXED_POINT_UINT_OVERFLOW): If the result would not fit in a uint256
    """
    if x > EXP_MAX_INPUT:
        raise NumericError(f"exp input {x} overflows uint256", ErrorCode.FIXED_POINT_UINT_OVERFLOW)
    if x < EXP_MIN_INPUT:
        return 0
    with localcontext(_FIXED_POINT_CONTEXT):
        result = (Decimal(x) / _DECIMALS_D).exp() * _DECIMALS_D
        return int(result.to_integral_value(rounding=ROUND_DOWN))


def mul_fixed(a: int, b: int, precision: int = DECIMALS) -> int:
    """Multiply two unsigned fixed-point values, flooring the result."""
    return div256(mul256(a, b), precision)


def to_fixed(value, precision: int = DECIMALS) -> int:
    """
    Convert a human-unit value to fixed point.

    Ints are taken to be in fixed point already and returned unchanged.
    Decimal and str values are scaled by `precision` and truncated.

    Example:
        to_fixed(Decimal("0.8")) == 800_000_000_000_000_000
        to_fixed("1.05", RATE_PRECISION) == 1_050_000_000
    """
    if isinstance(value, bool):
        raise ValueError("Boolean is not a numeric amount")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        value = str(value)
    with localcontext(_FIXED_POINT_CONTEXT):
        scaled = Decimal(value) * Decimal(precision)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))
