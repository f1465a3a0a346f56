# listing_aggregator/dedup.py
from typing import Iterable, List, Set


def dedupe(candidates: Iterable, known: Set[str]) -> List:
    """Drop candidates whose external id is already known.

    Keeps the original order and the first occurrence of an id repeated
    within the batch. `known` is only read.
    """
    seen = set()
    fresh = []
    for candidate in candidates:
        external_id = candidate.external_id
        if external_id in known or external_id in seen:
            continue
        seen.add(external_id)
        fresh.append(candidate)
    return fresh
