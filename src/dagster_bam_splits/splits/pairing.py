"""
Keeps mates of a read pair inside the same split.

Split boundaries are moved forward past the mates of first-of-pair records
that sit at the end of the previous split. Mates are expected to be grouped
by read name (queryname sorted or aligner output order).
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence, Set

from .errors import PairLookaheadExceededError
from .virtual_offset import VirtualOffset

logger = logging.getLogger(__name__)


@dataclass
class PendingPairState:
    """First-of-pair reads seen before a boundary whose mate is still missing."""

    waiting: Set[str] = field(default_factory=set)
    group: Optional[str] = None

    def observe(self, record) -> None:
        name = record.query_name
        if name != self.group:
            # a new read name closes the previous group for good
            self.waiting.clear()
            self.group = name
        if not record.is_paired or record.is_secondary or record.is_supplementary:
            return
        if record.is_read1:
            self.waiting.add(name)
        else:
            self.waiting.discard(name)

    def absorbs(self, record) -> bool:
        return record.query_name in self.waiting

    @property
    def resolved(self) -> bool:
        return not self.waiting


class PairBoundaryResolver:
    """Moves whole-file split boundaries so no read pair straddles one."""

    def __init__(
        self,
        source,
        anchor_before: Callable[[VirtualOffset], VirtualOffset],
        lookahead_limit: int,
        path: str = "",
    ):
        self.source = source
        self.anchor_before = anchor_before
        self.lookahead_limit = lookahead_limit
        self.path = path

    def resolve(self, splits: Sequence) -> List:
        if not splits:
            return []
        resolved = [splits[0]]
        for split in splits[1:]:
            previous = resolved[-1]
            boundary = self.resolve_boundary(previous.start, split.start, split.end)
            if boundary != split.start:
                logger.debug(f"Moved boundary {split.start} -> {boundary} to keep mates together")
            resolved[-1] = replace(previous, end=boundary)
            if boundary < split.end:
                resolved.append(replace(split, start=boundary))
            else:
                logger.info(f"Split {split.start}-{split.end} absorbed by its predecessor")
        return resolved

    def resolve_boundary(
        self, floor: VirtualOffset, boundary: VirtualOffset, ceiling: VirtualOffset
    ) -> VirtualOffset:
        """
        New position of boundary, somewhere in [boundary, ceiling].

        Decodes the tail of the previous split from the nearest record anchor
        to learn which pairs are open, then absorbs following records while
        they complete one of those pairs.
        """
        anchor = max(self.anchor_before(boundary), floor)
        state = PendingPairState()
        absorbed = 0
        for offset, record in self.source.records_from(anchor):
            if offset < boundary:
                state.observe(record)
                continue
            if offset >= ceiling:
                return ceiling
            if not state.absorbs(record):
                return offset
            absorbed += 1
            if absorbed > self.lookahead_limit:
                raise PairLookaheadExceededError(self.path, boundary, self.lookahead_limit)
            state.observe(record)
        return ceiling
