# compmem/engine/aggregator.py

import enum
from typing import Iterable


class GroupLatch(enum.Enum):
    OFF = "off"
    ON = "on"

    def __bool__(self) -> bool:
        return self is GroupLatch.ON


def count_true(votes: Iterable[object]) -> int:
    return sum(1 for vote in votes if vote)


def aggregate(true_count: int, required_votes: int, voting_hysteresis: int, previous: GroupLatch) -> GroupLatch:
    """
    N-out-of-M voting with vote-count hysteresis.

    An OFF group turns ON at `required_votes + voting_hysteresis` true votes;
    an ON group turns OFF below `required_votes`. In between, the latch holds.
    """
    if previous is GroupLatch.OFF:
        if true_count >= required_votes + voting_hysteresis:
            return GroupLatch.ON
        return GroupLatch.OFF
    if true_count < required_votes:
        return GroupLatch.OFF
    return GroupLatch.ON
