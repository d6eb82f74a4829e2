"""Comment weights derived from community reactions and edit history."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from threadsense.connectors.base import CommentSource, FetchError
from threadsense.models import Comment, CommentEdit, Reaction, ReactionKind, WeightedComment

logger = logging.getLogger(__name__)

REACTION_WEIGHTS: dict[ReactionKind, float] = {
    ReactionKind.THUMBS_UP: 1.0,
    ReactionKind.HEART: 1.0,
    ReactionKind.HOORAY: 1.0,
    ReactionKind.ROCKET: 1.0,
    ReactionKind.THUMBS_DOWN: -1.0,
    ReactionKind.CONFUSED: -0.5,
    ReactionKind.EYES: 0.5,
    ReactionKind.LAUGH: 0.25,
}
EDIT_WEIGHT_FACTOR = 0.5


def reaction_weight(reactions: Iterable[Reaction]) -> float:
    return sum(REACTION_WEIGHTS.get(reaction.content, 0.0) for reaction in reactions)


def edit_weight(edits: list[CommentEdit]) -> float:
    return math.log2(len(edits) + 1)


def comment_weight(reactions: list[Reaction], edits: list[CommentEdit]) -> float:
    return reaction_weight(reactions) + EDIT_WEIGHT_FACTOR * edit_weight(edits)


def weigh_comment(source: CommentSource, comment: Comment) -> WeightedComment:
    try:
        reactions = source.fetch_reactions(comment)
    except FetchError as exc:
        logger.warning("Reactions unavailable for comment %s in %s: %s", comment.id, comment.owner_repo, exc)
        reactions = []
    try:
        edits = source.fetch_edit_history(comment)
    except FetchError as exc:
        logger.warning("Edit history unavailable for comment %s in %s: %s", comment.id, comment.owner_repo, exc)
        edits = []

    return WeightedComment(
        **comment.model_dump(),
        weight=comment_weight(reactions, edits),
        reactions=reactions,
        edits=edits,
    )


def weigh_comments(source: CommentSource, comments: list[Comment]) -> list[WeightedComment]:
    """Weigh every comment, heaviest first. Ties keep their fetch order."""
    weighted = [weigh_comment(source, comment) for comment in comments]
    return sorted(weighted, key=lambda item: -item.weight)
