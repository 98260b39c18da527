"""Implicit session feedback.

When an agent contributes after retrieving, the thoughts it saw earlier in
the session probably helped. They get a small pheromone boost.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .constants import PHEROMONE_FEEDBACK_BOOST
from .errors import ThoughtSpaceError
from .pheromone import reinforce
from .querylog import QueryLog
from .store import ThoughtStore

logger = logging.getLogger(__name__)


class SessionFeedbackTracker:
    def __init__(self, store: ThoughtStore, query_log: QueryLog):
        self.store = store
        self.query_log = query_log

    def ids_for_session(self, session_id: str) -> list[str]:
        """Thought ids returned so far in a session, first-seen order."""
        if not session_id:
            return []
        return self.query_log.returned_ids_by_session(session_id)

    def apply_implicit_feedback(
        self,
        thought_ids: Iterable[str],
        amount: float = PHEROMONE_FEEDBACK_BOOST,
    ) -> int:
        """Boost each known thought's weight by ``amount`` (capped).

        Missing ids and failed writes are logged and skipped.

        Returns:
            Number of thoughts reinforced
        """
        ids = list(dict.fromkeys(thought_ids))
        if not ids:
            return 0
        try:
            points = {p.id: p for p in self.store.get_by_ids(ids)}
        except ThoughtSpaceError as e:
            logger.warning(f"Implicit feedback skipped, lookup failed: {e}")
            return 0

        reinforced = 0
        for thought_id in ids:
            point = points.get(thought_id)
            if point is None:
                logger.debug(f"Implicit feedback: {thought_id} no longer exists")
                continue
            current = point.payload.get("pheromone_weight")
            new_weight = reinforce(float(current if current is not None else 1.0), amount)
            try:
                self.store.patch_payload(thought_id, {"pheromone_weight": new_weight})
                reinforced += 1
            except ThoughtSpaceError as e:
                logger.warning(f"Implicit feedback write failed for {thought_id}: {e}")
        if reinforced:
            logger.debug(f"Implicit feedback reinforced {reinforced} thoughts")
        return reinforced
