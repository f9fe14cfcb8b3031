"""
Quadratic-funding math on plain integers.

No floating point is used so that every node computing a distribution for the
same tallies gets exactly the same allocations.
"""


def integer_sqrt(n: int) -> int:
    """Return ``floor(sqrt(n))`` using Newton's iteration."""
    if n < 0:
        raise ValueError("integer_sqrt is undefined for negative numbers")
    if n < 2:
        return n

    x = n
    y = (x + 1) // 2
    while y < x:
        x = y
        y = (x + n // x) // 2
    return x


def compute_allocations(total_funds: int, donation_sums: list[int]) -> tuple[list[int], int]:
    """
    Split ``total_funds`` across projects proportionally to the integer square
    root of each project's eligible donation sum.

    Returns ``(allocations, remainder)`` where ``allocations[i]`` is
    ``floor(total_funds * sqrt_i / total_sqrt)`` and ``remainder`` is the
    rounding loss left undistributed. When no project has eligible donations
    every allocation is 0 and the whole pool is the remainder.
    """
    if total_funds < 0:
        raise ValueError("total_funds must not be negative")

    roots = [integer_sqrt(s) for s in donation_sums]
    total_sqrt = sum(roots)
    if total_sqrt == 0:
        return [0] * len(roots), total_funds

    allocations = [total_funds * root // total_sqrt for root in roots]
    return allocations, total_funds - sum(allocations)
