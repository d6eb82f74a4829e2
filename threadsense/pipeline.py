"""Main orchestration pipeline for threadsense."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from threadsense.config import ThreadsenseConfig, load_effective_config
from threadsense.connectors.base import CommentSource
from threadsense.crawler import GraphCrawler
from threadsense.feedback import FeedbackProcessor
from threadsense.hooks import HookManager, HookName
from threadsense.models import AssembledContext, FeedbackResult, NodeStatus, WeightedComment
from threadsense.serializer import ContextSerializer
from threadsense.storage.base import WeightStore
from threadsense.tokenizer import ApproxTokenizer, Tokenizer
from threadsense.trigrams import TrigramScorer, find_relevant_comments, format_weight_table

logger = logging.getLogger(__name__)


def _source_from_config(config: ThreadsenseConfig) -> CommentSource:
    from threadsense.connectors.github_gh import GithubGhCommentSource

    return GithubGhCommentSource(
        gh_bin=config.github.gh_bin,
        timeout_seconds=config.github.timeout_seconds,
        rate_limit_retries=config.github.rate_limit_retries,
        secondary_backoff_base_seconds=config.github.secondary_backoff_base_seconds,
        rate_limit_max_sleep_seconds=config.github.rate_limit_max_sleep_seconds,
    )


def format_comment_line(comment: WeightedComment) -> str:
    return f"{comment.id} {comment.author}: {comment.body}"


class ContextEngine:
    def __init__(
        self,
        config: ThreadsenseConfig,
        source: CommentSource | None = None,
        store: WeightStore | None = None,
        tokenizer: Tokenizer | None = None,
        hooks: HookManager | None = None,
        scorer: TrigramScorer | None = None,
    ) -> None:
        self.config = config
        self.source = source or _source_from_config(config)
        self.store = store if store is not None else self._store_from_config(config)
        self.tokenizer = tokenizer or ApproxTokenizer()
        self.hooks = hooks or HookManager()
        self.scorer = scorer or TrigramScorer(store=self.store)
        self.crawler = GraphCrawler(self.source, config.crawl)
        self.serializer = ContextSerializer(self.tokenizer)
        self._feedback: FeedbackProcessor | None = None

    @classmethod
    def from_repo(
        cls,
        repo_path: str | Path,
        org_defaults: dict | None = None,
        system_defaults: dict | None = None,
        runtime_override: dict | None = None,
        source: CommentSource | None = None,
        store: WeightStore | None = None,
        tokenizer: Tokenizer | None = None,
        hooks: HookManager | None = None,
    ) -> ContextEngine:
        config = load_effective_config(
            repo_path=repo_path,
            org_defaults=org_defaults,
            system_defaults=system_defaults,
            runtime_override=runtime_override,
        )
        return cls(config=config, source=source, store=store, tokenizer=tokenizer, hooks=hooks)

    def assemble_context(
        self,
        root: str,
        question: str = "",
        *,
        ambient_repo: str | None = None,
        ambient_number: int | None = None,
    ) -> AssembledContext:
        started = time.perf_counter()
        context = {"root": root, "question": question}
        self.hooks.emit(HookName.BEFORE_CRAWL, context, {})

        crawl = self.crawler.crawl(root, ambient_repo=ambient_repo, ambient_number=ambient_number)
        statuses = crawl.statuses()
        errored = [key for key, status in statuses.items() if status == NodeStatus.ERROR]
        self.hooks.emit(
            HookName.AFTER_CRAWL,
            {**context, "root": crawl.root},
            {"nodes": len(crawl.nodes), "errors": errored},
        )

        comments = crawl.all_comments()
        self.scorer.set_corpus(comments)
        relevant = find_relevant_comments(
            question,
            comments,
            threshold=self.config.scoring.similarity_threshold,
            max_results=self.config.scoring.max_relevant_comments,
        )
        question_score = self.scorer.score_text(question)

        self.hooks.emit(HookName.BEFORE_SERIALIZE, context, {"relevant": len(relevant)})
        serialized = self.serializer.serialize(crawl)
        trimmed = serialized.within(self.config.context.max_tokens)
        if len(trimmed.blocks) < len(serialized.blocks):
            logger.info(
                "Context trimmed to %s of %s blocks for a %s token budget",
                len(trimmed.blocks),
                len(serialized.blocks),
                self.config.context.max_tokens,
            )
        self.hooks.emit(
            HookName.AFTER_SERIALIZE,
            context,
            {"blocks": len(trimmed.blocks), "token_count": trimmed.token_count},
        )

        logger.info(
            "Context assembled for %s: nodes=%s relevant=%s tokens=%s in %.2fs",
            crawl.root,
            len(crawl.nodes),
            len(relevant),
            trimmed.token_count,
            time.perf_counter() - started,
        )
        return AssembledContext(
            root=crawl.root,
            question=question,
            blocks=trimmed.blocks,
            relevant_comments=[format_comment_line(comment) for comment in relevant],
            question_score=question_score,
            token_count=trimmed.token_count,
            node_statuses=statuses,
        )

    @property
    def feedback(self) -> FeedbackProcessor:
        if self.store is None:
            raise ValueError("a weight store is required for feedback processing")
        if self._feedback is None:
            self._feedback = FeedbackProcessor(
                self.store,
                self.scorer,
                multiplier=self.config.feedback.scoring_multiplier,
                context_words=self.config.feedback.context_words,
                short_span_chars=self.config.feedback.short_span_chars,
            )
        return self._feedback

    def handle_comment_edit(self, old_body: str, new_body: str, *, key: str, comment_id: str) -> FeedbackResult:
        result = self.feedback.process_edit(old_body, new_body, key=key, comment_id=comment_id)
        self.hooks.emit(
            HookName.AFTER_FEEDBACK,
            {"key": key, "comment_id": comment_id},
            {"spans": len(result.spans), "adjustments": len(result.adjustments)},
        )
        return result

    def weight_table_report(self) -> str:
        rows = self.store.get_all_weights() if self.store is not None else []
        return format_weight_table(rows)

    @staticmethod
    def _store_from_config(config: ThreadsenseConfig) -> WeightStore | None:
        if config.storage.backend == "sqlite":
            from threadsense.storage import SQLiteWeightStore

            return SQLiteWeightStore(config.storage.sqlite_path)
        return None
