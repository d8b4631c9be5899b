"""
Feasibility of ordered selections with a fixed sum.

Consider a sequence b[0..n) such that:
- b[i] is one of candidates(i), each a (value, payload) pair;
- b is sorted (non-decreasing, ties allowed) with respect to `key`,
  descending instead when `reverse` is set;
- the values of b sum to `target_sum`.

possibilities_from_sum_and_ordering answers, for every slot i and every
candidate j, whether candidates(i)[j] can be b[i].

Complexity: O(n^2 m^2 D) in the worst case, where m is the largest
candidate count and D the largest value spread of a slot (the rebased sum
is O(n D)). Brute force over all selections would be O(m^n).
"""

from typing import Any, Callable, Iterable, TypeVar

import numpy as np


T = TypeVar("T")
Pair = tuple  # (value: int, payload)


def _in_order(previous, current, reverse: bool) -> bool:
    return previous >= current if reverse else previous <= current


def _solve_partial(
    slots: list[list[Pair]],
    key: Callable[[Pair], Any],
    reverse: bool,
    total: int,
) -> list[np.ndarray]:
    """
    Prefix feasibility tables.

    Returns:
        tables[i][s, j]: can slot i take its j-th candidate when the prefix
        0..=i is ordered and its rebased values sum to s?
    """
    # Per reachable prefix sum, keep only the most permissive last key:
    # the smallest one for ascending order, the largest for descending.
    # None stands for "no previous slot".
    frontier: list = [None] + [_UNREACHABLE] * total
    tables = []
    for items in slots:
        base = items[0][0]
        keys = [key(item) for item in items]
        table = np.zeros((total + 1, len(items)), dtype=bool)
        for prev_sum, previous in enumerate(frontier):
            if previous is _UNREACHABLE:
                continue
            for j, (value, _) in enumerate(items):
                new_sum = prev_sum + value - base
                if new_sum > total:
                    continue
                if previous is None or _in_order(previous, keys[j], reverse):
                    table[new_sum, j] = True
        frontier = [_UNREACHABLE] * (total + 1)
        for s, j in zip(*np.nonzero(table)):
            best = frontier[s]
            if best is _UNREACHABLE or _in_order(keys[j], best, reverse):
                frontier[s] = keys[j]
        tables.append(table)
    return tables


class _Unreachable:
    def __repr__(self) -> str:
        return "<unreachable>"


_UNREACHABLE = _Unreachable()


def possibilities_from_sum_and_ordering(
    n: int,
    candidates: Callable[[int], Iterable[Pair]],
    key: Callable[[Pair], Any],
    target_sum: int,
    reverse: bool = False,
) -> list[list[Pair]]:
    """
    Per-slot subsets of candidates that appear in some valid selection.

    Args:
        n: Number of slots.
        candidates: Slot index -> (value, payload) pairs, ascending by value.
            Must return the same pairs on every call.
        key: Sort key defining the required order of the chosen pairs.
        target_sum: Required sum of the chosen values.
        reverse: Require non-increasing instead of non-decreasing keys.

    Returns:
        A list of n lists; list i holds the feasible pairs of slot i in
        their original order. All lists are empty when nothing is feasible.
    """
    if n == 0:
        return []
    slots = [list(candidates(i)) for i in range(n)]
    if any(not items for items in slots):
        return [[] for _ in range(n)]

    min_sum = sum(items[0][0] for items in slots)
    max_sum = sum(items[-1][0] for items in slots)
    if not min_sum <= target_sum <= max_sum:
        return [[] for _ in range(n)]
    total = target_sum - min_sum

    ascending = _solve_partial(slots, key, reverse, total)
    descending = _solve_partial(slots[::-1], key, not reverse, total)

    result = []
    for i, items in enumerate(slots):
        base = items[0][0]
        forward = ascending[i]
        backward = descending[n - 1 - i]
        feasible = []
        for j, item in enumerate(items):
            score = item[0] - base
            remain = total - score
            if remain < 0:
                continue
            # Prefix sum s + score together with suffix sum (remain - s) + score
            # counts this slot's value twice, giving total + score overall.
            prefix = forward[score:score + remain + 1, j]
            suffix = backward[score:score + remain + 1, j][::-1]
            if np.any(prefix & suffix):
                feasible.append(item)
        result.append(feasible)
    return result
