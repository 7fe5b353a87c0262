"""
FILE: rebalancer/core/common/minimums.py
"""

from decimal import Decimal
from typing import Dict, Hashable, Mapping, Optional, Set, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
ZERO = Decimal("0")


def lift_or_drop_below_minimum(
    values: Dict[K, Decimal],
    *,
    minimum: Decimal,
    priority: Optional[Mapping[K, Decimal]] = None,
) -> Tuple[Set[K], Dict[K, K]]:
    """
    Remove every amount strictly between zero and ``minimum``, in place.

    Entries are visited smallest first. An entry is lifted to ``minimum`` by
    taking from the entries with the most excess above it; when the excess is
    not enough the entry is zeroed and its amount moves to the largest other
    entry (highest ``priority`` first when given). The total never changes.
    Returns the lifted keys and a map of dropped key to receiving key.
    """
    lifted: Set[K] = set()
    dropped: Dict[K, K] = {}
    for key in sorted(values, key=lambda k: (values[k], k)):
        value = values[key]
        if not ZERO < value < minimum:
            continue
        need = minimum - value
        donors = sorted(
            (k for k in values if k != key and values[k] > minimum),
            key=lambda k: (-(values[k] - minimum), k),
        )
        capacity = sum((values[k] - minimum for k in donors), ZERO)
        if capacity >= need:
            for donor in donors:
                take = min(need, values[donor] - minimum)
                values[donor] -= take
                need -= take
                if need == ZERO:
                    break
            values[key] = minimum
            lifted.add(key)
            continue
        receivers = [k for k in values if k != key and values[k] > ZERO]
        if not receivers:
            continue
        if priority is not None:
            receiver = min(receivers, key=lambda k: (-priority.get(k, ZERO), -values[k], k))
        else:
            receiver = min(receivers, key=lambda k: (-values[k], k))
        values[receiver] += value
        values[key] = ZERO
        dropped[key] = receiver
    return lifted, dropped
