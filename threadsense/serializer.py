"""Linearizes a crawled issue graph into token-counted context blocks."""

from __future__ import annotations

import logging

from threadsense.models import BlockKind, ContextBlock, CrawlResult, IssueNode, SerializedContext, WeightedComment
from threadsense.tokenizer import ApproxTokenizer, Tokenizer

logger = logging.getLogger(__name__)

EMPTY_BODY_PLACEHOLDER = "No specification or body available"
DIFF_TITLE = "Pull Request Diff"


def block_title(node: IssueNode, *, is_root: bool, conversation: bool) -> str:
    status = "Current" if is_root else "Linked"
    item = "Pull Request" if node.is_pull_request else "Task"
    section = "Conversation" if conversation else "Specification"
    return f"{status} {item} {section}"


def header(title: str, key: str) -> str:
    return f"=== {title} === {key} ===\n\n"


def footer(title: str, key: str) -> str:
    return f"=== End {title} === {key} ===\n\n"


def dedupe_comments(comments: list[WeightedComment], body: str) -> list[WeightedComment]:
    """Drop repeated comment ids, empty comments and comments that merely restate the node body."""
    seen: set[str] = set()
    kept: list[WeightedComment] = []
    for comment in comments:
        if comment.id in seen or not comment.body.strip() or comment.body == body:
            continue
        seen.add(comment.id)
        kept.append(comment)
    return kept


class ContextSerializer:
    def __init__(self, tokenizer: Tokenizer | None = None) -> None:
        self.tokenizer = tokenizer or ApproxTokenizer()

    def serialize(self, crawl: CrawlResult) -> SerializedContext:
        keys = [crawl.root, *(key for key in crawl.order if key != crawl.root)]
        blocks: list[ContextBlock] = []
        total = 0
        rendered: set[str] = set()
        for key in keys:
            if key in rendered or key not in crawl.nodes:
                continue
            rendered.add(key)
            for block in self._node_blocks(crawl.nodes[key], is_root=key == crawl.root):
                total += block.token_count
                blocks.append(block)
        logger.info("Serialized %s nodes into %s blocks (%s tokens)", len(rendered), len(blocks), total)
        return SerializedContext(blocks=blocks, token_count=total)

    def _block(self, key: str, kind: BlockKind, title: str, content: str) -> ContextBlock:
        text = f"{header(title, key)}{content}{footer(title, key)}"
        return ContextBlock(key=key, kind=kind, title=title, text=text, token_count=self.tokenizer.count_tokens(text))

    def _node_blocks(self, node: IssueNode, *, is_root: bool) -> list[ContextBlock]:
        body = node.body or EMPTY_BODY_PLACEHOLDER
        spec_title = block_title(node, is_root=is_root, conversation=False)
        blocks = [self._block(node.key, BlockKind.SPEC, spec_title, f"{body}\n")]

        comments = dedupe_comments(node.comments, body)
        if comments:
            lines = "".join(f"{comment.id} {comment.author}: {comment.body}\n" for comment in comments)
            convo_title = block_title(node, is_root=is_root, conversation=True)
            blocks.append(self._block(node.key, BlockKind.CONVERSATION, convo_title, lines))

        if node.is_pull_request and node.diff:
            blocks.append(self._block(node.key, BlockKind.DIFF, DIFF_TITLE, f"{node.diff}\n"))
        logger.debug("Node %s rendered as %s blocks", node.key, len(blocks))
        return blocks
