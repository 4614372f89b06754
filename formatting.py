"""Display helpers for counts."""

from __future__ import annotations


def format_count(n: int) -> str:
    """Group digits the Indian way: 1,00,000 (lakh) and 1,00,00,000 (crore)."""
    sign = "-" if n < 0 else ""
    digits = str(abs(int(n)))
    if len(digits) <= 3:
        return sign + digits
    head, groups = digits[:-3], [digits[-3:]]
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return sign + ",".join(groups)


def progress_percent(count: int, goal: int) -> int:
    if goal <= 0:
        return 100
    return max(0, min(100, count * 100 // goal))
