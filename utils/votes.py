"""Vote ledger shared by questions and answers.

A votable item is any document with ``upvotes`` and ``downvotes`` lists of
user ids. Those two lists are the only record of who voted which way: the
state of a (item, user) pair is derived from membership every time.

Casting the same direction twice clears the vote, casting the opposite
direction switches it.
"""
import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple


logger = logging.getLogger(__name__)


class Direction(str, enum.Enum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"

    @property
    def field(self) -> str:
        return "upvotes" if self is Direction.UPVOTE else "downvotes"

    @property
    def opposite(self) -> "Direction":
        return Direction.DOWNVOTE if self is Direction.UPVOTE else Direction.UPVOTE


class VoteState(str, enum.Enum):
    NONE = "none"
    UPVOTED = "upvoted"
    DOWNVOTED = "downvoted"

    @property
    def direction(self) -> Optional[Direction]:
        if self is VoteState.UPVOTED:
            return Direction.UPVOTE
        if self is VoteState.DOWNVOTED:
            return Direction.DOWNVOTE
        return None


TRANSITIONS = {
    (VoteState.NONE, Direction.UPVOTE): VoteState.UPVOTED,
    (VoteState.NONE, Direction.DOWNVOTE): VoteState.DOWNVOTED,
    (VoteState.UPVOTED, Direction.UPVOTE): VoteState.NONE,
    (VoteState.UPVOTED, Direction.DOWNVOTE): VoteState.DOWNVOTED,
    (VoteState.DOWNVOTED, Direction.DOWNVOTE): VoteState.NONE,
    (VoteState.DOWNVOTED, Direction.UPVOTE): VoteState.UPVOTED,
}


def current_state(item: dict, user_id: str) -> VoteState:
    """Derive a user's vote on an item; scans both lists, O(n) per call"""
    if user_id in item.get("upvotes", []):
        return VoteState.UPVOTED
    if user_id in item.get("downvotes", []):
        return VoteState.DOWNVOTED
    return VoteState.NONE


def apply_vote(item: dict, user_id: str, direction: Direction) -> VoteState:
    """Apply a vote to an in-memory item and return the resulting state"""
    direction = Direction(direction)
    before = current_state(item, user_id)
    after = TRANSITIONS[(before, direction)]

    upvotes = [uid for uid in item.get("upvotes", []) if uid != user_id]
    downvotes = [uid for uid in item.get("downvotes", []) if uid != user_id]
    if after is VoteState.UPVOTED:
        upvotes.append(user_id)
    elif after is VoteState.DOWNVOTED:
        downvotes.append(user_id)

    item["upvotes"] = upvotes
    item["downvotes"] = downvotes
    logger.debug("Vote %s by %s: %s -> %s", direction.value, user_id, before.value, after.value)
    return after


def atomic_vote_plan(user_id: str, direction: Direction) -> List[Tuple[dict, dict]]:
    """
    Conditional updates that perform a vote without reading the item first.

    Each entry is ``(extra_filter, update)``. They are tried in order against
    the item's own filter and the first that matches a document wins:
    toggle off an existing vote in the same direction, otherwise add the vote
    and drop any opposite one.
    """
    direction = Direction(direction)
    field, other = direction.field, direction.opposite.field
    return [
        ({field: user_id}, {"$pull": {field: user_id}}),
        ({}, {"$addToSet": {field: user_id}, "$pull": {other: user_id}}),
    ]


def normalize_vote_sets(upvotes, downvotes) -> Tuple[List[str], List[str]]:
    """De-duplicate both lists; a user present in both keeps only the upvote"""
    ups = list(dict.fromkeys(upvotes))
    seen = set(ups)
    downs = [uid for uid in dict.fromkeys(downvotes) if uid not in seen]
    return ups, downs


def popularity_score(item: dict) -> int:
    return len(item.get("upvotes", [])) - len(item.get("downvotes", []))


@dataclass
class VoteTally:
    upvotes: int
    downvotes: int
    user_vote: Optional[Direction] = None

    @property
    def score(self) -> int:
        return self.upvotes - self.downvotes

    @classmethod
    def from_item(cls, item: dict, user_id: Optional[str] = None) -> "VoteTally":
        user_vote = current_state(item, user_id).direction if user_id else None
        return cls(
            upvotes=len(item.get("upvotes", [])),
            downvotes=len(item.get("downvotes", [])),
            user_vote=user_vote,
        )

    def to_dict(self) -> dict:
        return {
            "upvotes": self.upvotes,
            "downvotes": self.downvotes,
            "score": self.score,
            "userVote": self.user_vote.value if self.user_vote else None,
        }
