"""Pheromone weight rules and bounded usage telemetry.

All functions are pure: they take payload pieces and return new values,
leaving the store writes to the engines.
"""

from datetime import datetime
from statistics import fmean

from .constants import (
    ACCESS_LOG_CAPACITY,
    CO_RETRIEVAL_CAPACITY,
    INHERITANCE_FACTOR,
    PHEROMONE_DECAY_FACTOR,
    PHEROMONE_INITIAL,
    PHEROMONE_MIN,
    PHEROMONE_REINFORCEMENT,
)
from .models import clamp_weight


def reinforce(weight: float, amount: float = PHEROMONE_REINFORCEMENT) -> float:
    """Add ``amount`` to a weight, capped at the maximum.

    Examples:
        >>> reinforce(1.0)
        1.05
        >>> reinforce(9.99)
        10.0
    """
    return round(clamp_weight(weight + amount), 10)


def decay_weight(weight: float, factor: float = PHEROMONE_DECAY_FACTOR) -> float:
    """One decay step, floored at the minimum."""
    return max(PHEROMONE_MIN, weight * factor)


def inherit_weight(thought_type: str, source_weights: list[float]) -> float:
    """Starting weight for a new thought.

    Originals start at 1.0. A refinement inherits half its first source's
    weight, a consolidation half the mean of all sources; both are floored
    at 1.0 so derivations never start weaker than an original.
    """
    if thought_type == "original" or not source_weights:
        return PHEROMONE_INITIAL
    if thought_type == "refinement":
        base = source_weights[0]
    else:
        base = fmean(source_weights)
    return clamp_weight(max(PHEROMONE_INITIAL, base * INHERITANCE_FACTOR))


def append_access_log(
    log: list[dict],
    agent_id: str,
    session_id: str,
    timestamp: datetime,
    capacity: int = ACCESS_LOG_CAPACITY,
) -> list[dict]:
    """Append an access entry, evicting the oldest beyond capacity."""
    entry = {
        "agent_id": agent_id,
        "timestamp": timestamp.isoformat(),
        "session_id": session_id,
    }
    updated = list(log) + [entry]
    if len(updated) > capacity:
        updated = updated[-capacity:]
    return updated


def update_co_retrieval(
    entries: list[dict],
    other_ids: list[str],
    capacity: int = CO_RETRIEVAL_CAPACITY,
) -> list[dict]:
    """Count co-occurrence with every other thought in a result set.

    Known partners get their count bumped. New partners are appended; when
    the list is full, the first entry with the lowest count is evicted to
    make room.
    """
    updated = [dict(e) for e in entries]
    index = {e["thought_id"]: i for i, e in enumerate(updated)}
    for other_id in other_ids:
        if other_id in index:
            updated[index[other_id]]["count"] += 1
            continue
        if len(updated) >= capacity:
            lowest = min(range(len(updated)), key=lambda i: updated[i]["count"])
            updated.pop(lowest)
        updated.append({"thought_id": other_id, "count": 1})
        index = {e["thought_id"]: i for i, e in enumerate(updated)}
    return updated


def record_access(
    payload: dict,
    agent_id: str,
    session_id: str,
    co_retrieved_ids: list[str],
    now: datetime,
) -> dict:
    """Compute the telemetry fields to patch after one retrieval event.

    Args:
        payload: Snapshot of the thought's payload from the search
        agent_id: Retrieving agent
        session_id: Session of the retrieval
        co_retrieved_ids: Other thought ids in the same result set
        now: Retrieval time

    Returns:
        Dict of changed payload fields (a patch, not the whole payload)
    """
    accessed_by = list(payload.get("accessed_by") or [])
    if agent_id not in accessed_by:
        accessed_by.append(agent_id)
    weight = payload.get("pheromone_weight")
    if weight is None:
        weight = PHEROMONE_INITIAL
    return {
        "access_count": int(payload.get("access_count") or 0) + 1,
        "accessed_by": accessed_by,
        "access_log": append_access_log(payload.get("access_log") or [], agent_id, session_id, now),
        "pheromone_weight": reinforce(float(weight)),
        "co_retrieved_with": update_co_retrieval(
            payload.get("co_retrieved_with") or [], co_retrieved_ids
        ),
        "last_accessed": now.isoformat(),
    }
