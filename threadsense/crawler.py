"""Bounded, cycle-safe crawl of the issue / pull request reference graph."""

from __future__ import annotations

import heapq
import logging
import time
from concurrent.futures import ThreadPoolExecutor

from threadsense.config import CrawlConfig
from threadsense.connectors.base import CommentSource, FetchError
from threadsense.keys import InvalidReferenceError, normalize_reference, parse_key
from threadsense.models import (
    CrawlResult,
    FetchedItem,
    IssueNode,
    NodeStatus,
    QueueEntry,
    ReferenceType,
    WeightedComment,
)
from threadsense.references import REFERENCE_PRIORITY, LinkedReference, extract_references
from threadsense.weights import weigh_comments

logger = logging.getLogger(__name__)

FetchOutcome = tuple[FetchedItem, list[WeightedComment]] | FetchError


class GraphCrawler:
    """Breadth-first crawler over cross-referenced tracker items.

    Nodes are kept in a map by canonical key. Each level is fetched
    concurrently, but expansion and the visited-set bookkeeping run only in
    the calling thread, so a key is never queued twice.
    """

    def __init__(self, source: CommentSource, config: CrawlConfig | None = None) -> None:
        self.source = source
        self.config = config or CrawlConfig()

    def crawl(
        self,
        root: str,
        *,
        max_depth: int | None = None,
        visited: set[str] | None = None,
        ambient_repo: str | None = None,
        ambient_number: int | None = None,
    ) -> CrawlResult:
        depth_limit = self.config.max_depth if max_depth is None else max_depth
        root_key = parse_key(root, ambient_repo=ambient_repo, ambient_number=ambient_number).canonical
        seen = set(visited or ())
        seen.add(root_key)

        result = CrawlResult(root=root_key)
        result.nodes[root_key] = IssueNode(key=root_key, depth=0, reference_type=ReferenceType.ROOT)
        result.order.append(root_key)

        sequence = 0
        level = [QueueEntry(priority=REFERENCE_PRIORITY[ReferenceType.ROOT], sequence=sequence, key=root_key, depth=0)]
        started = time.perf_counter()
        logger.info("Starting crawl from %s (max_depth=%s max_nodes=%s)", root_key, depth_limit, self.config.max_nodes)

        while level:
            outcomes = self._fetch_level(level)
            candidates: list[tuple[int, int, LinkedReference, QueueEntry]] = []

            for entry in level:
                node = result.nodes[entry.key]
                outcome = outcomes[entry.key]
                if isinstance(outcome, FetchError):
                    node.status = NodeStatus.ERROR
                    node.error = str(outcome) or outcome.__class__.__name__
                    logger.warning("Fetch failed for %s at depth %s: %s", entry.key, entry.depth, node.error)
                    continue

                item, comments = outcome
                node.body = item.body
                node.diff = item.diff
                node.is_pull_request = item.is_pull_request
                node.comments = comments
                node.status = NodeStatus.PROCESSED
                logger.debug("Processed %s depth=%s comments=%s", entry.key, entry.depth, len(comments))

                if entry.depth >= depth_limit:
                    continue
                for ref in self._references_for(node, item.closing_keys):
                    if ref.key in seen:
                        continue
                    sequence += 1
                    candidates.append((ref.priority, sequence, ref, entry))

            level = []
            heapq.heapify(candidates)
            while candidates:
                priority, seq, ref, parent = heapq.heappop(candidates)
                if ref.key in seen:
                    continue
                if len(result.nodes) >= self.config.max_nodes:
                    logger.info("Node budget of %s reached; %s candidates left unexplored", self.config.max_nodes, len(candidates) + 1)
                    break
                seen.add(ref.key)
                result.nodes[ref.key] = IssueNode(
                    key=ref.key,
                    depth=parent.depth + 1,
                    parent=parent.key,
                    reference_type=ref.reference_type,
                )
                result.nodes[parent.key].children.append(ref.key)
                result.order.append(ref.key)
                level.append(
                    QueueEntry(
                        priority=priority,
                        sequence=seq,
                        key=ref.key,
                        depth=parent.depth + 1,
                        parent_key=parent.key,
                        reference_type=ref.reference_type,
                    )
                )

        errors = sum(1 for node in result.nodes.values() if node.status == NodeStatus.ERROR)
        logger.info(
            "Crawl complete from %s: nodes=%s errors=%s in %.2fs",
            root_key,
            len(result.nodes),
            errors,
            time.perf_counter() - started,
        )
        return result

    def _fetch_level(self, level: list[QueueEntry]) -> dict[str, FetchOutcome]:
        if len(level) == 1 or self.config.fetch_workers <= 1:
            return {entry.key: self._fetch_one(entry.key) for entry in level}
        workers = min(self.config.fetch_workers, len(level))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {entry.key: pool.submit(self._fetch_one, entry.key) for entry in level}
            return {key: future.result() for key, future in futures.items()}

    def _fetch_one(self, key: str) -> FetchOutcome:
        try:
            item = self.source.fetch_issue_or_pr(parse_key(key))
        except FetchError as exc:
            return exc
        comments = [comment for comment in item.comments if self.config.include_bots or not comment.author_is_bot]
        return item, weigh_comments(self.source, comments)

    def _references_for(self, node: IssueNode, closing_keys: list[str] | None = None) -> list[LinkedReference]:
        owner_repo = node.key.rsplit("/", 1)[0]
        texts = [(node.body, owner_repo), *((comment.body, comment.owner_repo or owner_repo) for comment in node.comments)]

        # Tracker-linked closing issues come first so they win discovery-order ties.
        refs: list[LinkedReference] = []
        for raw in closing_keys or ():
            try:
                key = normalize_reference(raw)
            except InvalidReferenceError:
                logger.debug("Ignoring malformed closing key %r on %s", raw, node.key)
                continue
            refs.append(LinkedReference(key=key, start=0, end=0, reference_type=ReferenceType.CLOSING))
        for text, ambient in texts:
            refs.extend(extract_references(text, ambient_repo=ambient, hosts=self.config.tracker_hosts))

        merged: dict[str, LinkedReference] = {}
        for ref in refs:
            if ref.key == node.key:
                continue
            existing = merged.get(ref.key)
            if existing is None:
                merged[ref.key] = ref
            elif ref.priority < existing.priority:
                merged[ref.key] = existing.model_copy(update={"reference_type": ref.reference_type})
        return list(merged.values())
