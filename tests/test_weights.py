import math

import pytest

from conftest import FakeCommentSource, make_comment, thumbs_up
from threadsense.connectors.base import TransientFetchError
from threadsense.models import CommentEdit, Reaction, ReactionKind
from threadsense.weights import comment_weight, edit_weight, reaction_weight, weigh_comment, weigh_comments


def test_two_thumbs_up_and_one_edit() -> None:
    assert comment_weight(thumbs_up(2), []) == pytest.approx(2.0)
    assert comment_weight(thumbs_up(2), [CommentEdit(body="v1")]) == pytest.approx(2.5)


def test_reaction_table() -> None:
    reactions = [
        Reaction(content=ReactionKind.HEART),
        Reaction(content=ReactionKind.THUMBS_DOWN),
        Reaction(content=ReactionKind.CONFUSED),
        Reaction(content=ReactionKind.EYES),
        Reaction(content=ReactionKind.LAUGH),
    ]
    assert reaction_weight(reactions) == pytest.approx(1.0 - 1.0 - 0.5 + 0.5 + 0.25)


def test_edit_weight_is_log_damped() -> None:
    assert edit_weight([]) == 0.0
    assert edit_weight([CommentEdit()] * 3) == pytest.approx(math.log2(4))


def test_weigh_comment_degrades_failed_signals_to_empty(caplog) -> None:
    comment = make_comment("1", "hello there")
    source = FakeCommentSource(
        reactions={"1": thumbs_up(1)},
        edits={"1": TransientFetchError("graphql timed out")},
    )

    weighted = weigh_comment(source, comment)

    assert weighted.weight == pytest.approx(1.0)
    assert weighted.edits == []
    assert weighted.body == "hello there"
    assert "Edit history unavailable" in caplog.text


def test_weigh_comments_sorts_heaviest_first_and_keeps_ties_stable() -> None:
    comments = [make_comment("a", "first"), make_comment("b", "second"), make_comment("c", "third")]
    source = FakeCommentSource(reactions={"b": thumbs_up(3)})

    ordered = weigh_comments(source, comments)

    assert [comment.id for comment in ordered] == ["b", "a", "c"]
