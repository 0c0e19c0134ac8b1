"""
Waterfall retrieval: channel-scoped memories first, global backfill second.

When a caller references channels, up to `channel_budget_ratio` of the
result budget is spent on memories from those channels; whatever the
channel query leaves unused is backfilled by a global query that excludes
the ids already returned.
"""

import logging
import math
import re
from typing import TYPE_CHECKING, List, Optional, Sequence

from recall_engine.models.memory import SimilarityResult

if TYPE_CHECKING:
    from recall_engine.services.vector_memory import VectorMemoryStore, QueryOptions

logger = logging.getLogger(__name__)


def clamp_ratio(ratio: float) -> float:
    """Clamp a budget ratio to [0, 1]."""
    return max(0.0, min(1.0, ratio))


def channel_budget(limit: int, ratio: float) -> int:
    """Channel share of the budget; at least one slot whenever channels are given."""
    return max(1, math.floor(limit * clamp_ratio(ratio)))


class WaterfallRetriever:
    """Fills a fixed result budget preferring channel-local memories."""

    def __init__(
        self,
        store: "VectorMemoryStore",
        default_ratio: float = 0.5,
        channel_id_pattern: str = r"^\d{17,19}$"
    ):
        self.store = store
        self.default_ratio = default_ratio
        self._channel_id_re = re.compile(channel_id_pattern)

    def filter_valid_channel_ids(self, channel_ids: Optional[Sequence[str]]) -> List[str]:
        """Keep only identifiers matching the channel id pattern (order preserved)."""
        if not channel_ids:
            return []
        return [cid for cid in channel_ids if isinstance(cid, str) and self._channel_id_re.fullmatch(cid)]

    def query(self, query_text: str, options: "QueryOptions") -> List[SimilarityResult]:
        """
        Run the waterfall for one request.

        Raises:
            MemoryValidationError: If options are malformed
            TransportError: If the channel-scoped query fails (no fallback)
        """
        query = self.store.build_query(options, query_text=query_text or "")
        total_limit = query.limit
        ratio = clamp_ratio(
            query.channel_budget_ratio if query.channel_budget_ratio is not None else self.default_ratio
        )

        if not query.channel_ids:
            return self.store.query_memories(query_text, query)

        valid_ids = self.filter_valid_channel_ids(query.channel_ids)
        if not valid_ids:
            logger.warning(
                f"[WATERFALL] No valid channel ids in {query.channel_ids}, falling back to global query"
            )
            return self.store.query_memories(query_text, query.with_overrides(channel_ids=None))

        if len(valid_ids) < len(query.channel_ids):
            dropped = [cid for cid in query.channel_ids if cid not in valid_ids]
            logger.warning(f"[WATERFALL] Filtered out invalid channel ids: {dropped}")

        budget = channel_budget(total_limit, ratio)
        logger.debug(
            f"[WATERFALL] Starting channel-scoped query "
            f"(channels={valid_ids}, limit={total_limit}, budget={budget}, ratio={ratio})"
        )

        channel_results = self.store.query_memories(
            query_text,
            query.with_overrides(channel_ids=valid_ids, limit=budget),
        )

        remaining = total_limit - len(channel_results)
        global_results: List[SimilarityResult] = []
        if remaining > 0:
            exclude_ids = list(query.exclude_ids or []) + [r.id for r in channel_results]
            try:
                global_results = self.store.query_memories(
                    query_text,
                    query.with_overrides(
                        channel_ids=None,
                        limit=remaining,
                        exclude_ids=exclude_ids or None,
                    ),
                )
            except Exception as e:
                logger.error(f"[WATERFALL] Global backfill query failed, returning channel results only: {e}")

            # Sibling expansion on the global side can reach back into channel groups
            seen = {r.id for r in channel_results}
            global_results = [r for r in global_results if r.id not in seen]

        logger.info(
            f"[WATERFALL] Query complete: {len(channel_results) + len(global_results)} results "
            f"({len(channel_results)} channel-scoped, {len(global_results)} global backfill)"
        )
        return channel_results + global_results
