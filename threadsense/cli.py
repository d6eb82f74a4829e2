"""CLI entrypoint for GitHub-backed threadsense runs."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import yaml

from threadsense.config import ThreadsenseConfig, load_effective_config
from threadsense.keys import InvalidReferenceError, normalize_reference
from threadsense.logging_utils import configure_logging
from threadsense.pipeline import ContextEngine
from threadsense.reporting import render_feedback_summary, write_context_bundle
from threadsense.trigrams import format_weight_table

logger = logging.getLogger(__name__)


def _load_yaml_dict(path: str | None) -> dict | None:
    if not path:
        return None
    data = yaml.safe_load(Path(path).read_text())
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"YAML at {path} must decode to a mapping")
    return data


def _cli_overrides(args: argparse.Namespace) -> dict:
    github = {
        "gh_bin": getattr(args, "gh_bin", None),
        "rate_limit_retries": getattr(args, "gh_rate_limit_retries", None),
        "secondary_backoff_base_seconds": getattr(args, "gh_secondary_backoff_seconds", None),
        "rate_limit_max_sleep_seconds": getattr(args, "gh_rate_limit_max_sleep_seconds", None),
    }
    crawl = {
        "max_depth": getattr(args, "max_depth", None),
        "max_nodes": getattr(args, "max_nodes", None),
    }
    overrides: dict = {}
    if any(value is not None for value in github.values()):
        overrides["github"] = {key: value for key, value in github.items() if value is not None}
    if any(value is not None for value in crawl.values()):
        overrides["crawl"] = {key: value for key, value in crawl.items() if value is not None}
    return overrides


def _load_config(args: argparse.Namespace) -> ThreadsenseConfig:
    runtime = _load_yaml_dict(args.runtime_override) or {}
    for section, values in _cli_overrides(args).items():
        runtime[section] = {**runtime.get(section, {}), **values}
    return load_effective_config(
        repo_path=args.repo_path,
        org_defaults=_load_yaml_dict(args.org_config),
        system_defaults=_load_yaml_dict(args.system_config),
        runtime_override=runtime or None,
    )


def _build_engine(config: ThreadsenseConfig) -> ContextEngine:
    return ContextEngine(config=config)


def _add_common_config_flags(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("--repo-path", default=".", help="Repository root path")
    cmd.add_argument("--org-config", help="Optional org defaults YAML")
    cmd.add_argument("--system-config", help="Optional system defaults YAML")
    cmd.add_argument("--runtime-override", help="Optional runtime override YAML")


def _add_github_rate_limit_flags(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument("--gh-bin", help="Path/name of gh binary")
    cmd.add_argument("--gh-rate-limit-retries", type=int, help="Retries per GitHub API call when rate-limited")
    cmd.add_argument(
        "--gh-secondary-backoff-seconds",
        type=float,
        help="Base backoff for secondary limits (exponential per retry)",
    )
    cmd.add_argument(
        "--gh-rate-limit-max-sleep-seconds",
        type=float,
        help="Maximum automatic sleep before surfacing a rate-limit failure",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="threadsense issue context engine")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--quiet-crawl", action="store_true", help="Only log crawler and GitHub client warnings")

    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Assemble linked issue/PR context for a question")
    ask.add_argument("--issue", required=True, help="Root issue or PR: URL, org/repo/N, or #N with --ambient-repo")
    ask.add_argument("--question", default="", help="Question used to rank relevant comments")
    ask.add_argument("--ambient-repo", help="owner/repo used to resolve bare #N references")
    ask.add_argument("--max-depth", type=int, help="Override crawl.max_depth")
    ask.add_argument("--max-nodes", type=int, help="Override crawl.max_nodes")
    ask.add_argument("--output-dir", help="Write context.md/context.json bundle to this directory")
    ask.add_argument("--json", action="store_true", help="Print the assembled context as JSON")
    _add_common_config_flags(ask)
    _add_github_rate_limit_flags(ask)

    feedback = sub.add_parser("feedback", help="Apply a comment edit to the phrase weight store")
    feedback.add_argument("--key", required=True, help="Issue/PR reference the comment belongs to")
    feedback.add_argument("--comment-id", required=True, help="Edited comment id")
    feedback.add_argument("--old-file", required=True, help="File holding the comment body before the edit")
    feedback.add_argument("--new-file", required=True, help="File holding the comment body after the edit")
    feedback.add_argument("--json", action="store_true", help="Print the feedback result as JSON")
    _add_common_config_flags(feedback)

    weights = sub.add_parser("weights", help="Print the persisted phrase weight table")
    weights.add_argument("--json", action="store_true", help="Print rows as JSON")
    _add_common_config_flags(weights)

    key = sub.add_parser("key", help="Normalize an issue/PR reference to org/repo/number")
    key.add_argument("reference", help="URL, org/repo/N or #N")
    key.add_argument("--ambient-repo", help="owner/repo used to resolve bare #N references")
    key.add_argument("--ambient-number", type=int, help="Issue number used for repository-level URLs")

    return parser


def _run_ask(args: argparse.Namespace) -> int:
    config = _load_config(args)
    engine = _build_engine(config)
    context = engine.assemble_context(args.issue, args.question, ambient_repo=args.ambient_repo)
    if args.output_dir:
        write_context_bundle(context, args.output_dir)
        logger.info("Context bundle written to %s", args.output_dir)
    if args.json:
        print(context.model_dump_json(indent=2))
    elif not args.output_dir:
        print("".join(block.text for block in context.blocks), end="")
    return 0


def _run_feedback(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config.storage.backend != "sqlite":
        raise ValueError("feedback currently requires storage.backend=sqlite")
    engine = _build_engine(config)
    key = normalize_reference(args.key)
    result = engine.handle_comment_edit(
        Path(args.old_file).read_text(),
        Path(args.new_file).read_text(),
        key=key,
        comment_id=args.comment_id,
    )
    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print(render_feedback_summary(result))
    return 0


def _run_weights(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config.storage.backend != "sqlite":
        raise ValueError("weights currently requires storage.backend=sqlite")
    from threadsense.storage import SQLiteWeightStore

    store = SQLiteWeightStore(config.storage.sqlite_path)
    if args.json:
        print(json.dumps([row.model_dump() for row in store.get_all_weights()], indent=2))
        return 0
    print(format_weight_table(store.get_all_weights()))
    return 0


def _run_key(args: argparse.Namespace) -> int:
    try:
        print(normalize_reference(args.reference, ambient_repo=args.ambient_repo, ambient_number=args.ambient_number))
    except InvalidReferenceError as exc:
        logger.error("%s", exc)
        return 2
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    quiet = ("threadsense.crawler", "threadsense.connectors.github_gh") if args.quiet_crawl else ()
    configure_logging(args.log_level, quiet_loggers=quiet)

    if args.command == "ask":
        return _run_ask(args)
    if args.command == "feedback":
        return _run_feedback(args)
    if args.command == "weights":
        return _run_weights(args)
    if args.command == "key":
        return _run_key(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
