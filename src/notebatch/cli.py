"""Command line interface for the notebatch queue."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

from dotenv import load_dotenv

from .config import PROVIDER_PRESETS, NotebatchConfig
from .io import load_syllabus
from .llm.cost import CostTracker
from .llm.providers import build_provider
from .pipeline import (
    BatchEngine,
    JsonQueueStore,
    LangChainContentProvider,
    MockContentProvider,
    NoteMode,
    NoteWorkflow,
    ProviderRegistry,
    QueueItem,
    RunConfig,
    SavedQueue,
    TopicExtractor,
    parse_topic_lines,
)

__all__ = ["build_parser", "main"]

logger = logging.getLogger(__name__)

MOCK_PROVIDER = "mock"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notebatch",
        description=(
            "Queue study topics and turn each one into an outline and then a full "
            "note. Outlines can be reviewed and edited before content is generated."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v for info, -vv for debug).",
    )
    parser.add_argument(
        "--state-dir",
        dest="state_dir",
        default=None,
        help="Directory holding the queue, saved queues and generated notes.",
    )
    subparsers = parser.add_subparsers(dest="command")

    queue_parser = subparsers.add_parser("queue", help="Inspect and edit the topic queue.", allow_abbrev=False)
    queue_sub = queue_parser.add_subparsers(dest="queue_command", required=True)

    add_parser = queue_sub.add_parser("add", help="Append topics to the queue.")
    add_parser.add_argument("topics", nargs="+", help="Topic titles to append.")

    import_parser = queue_sub.add_parser(
        "import",
        help="Append topics read from a syllabus file (PDF, Markdown, text or JSON).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    import_parser.add_argument("file", help="Path to the syllabus.")
    import_parser.add_argument(
        "--extract",
        action="store_true",
        help="Ask the language model to extract a learning path instead of reading one topic per line.",
    )
    _register_llm_arguments(import_parser, default_provider="openai")

    queue_sub.add_parser("show", help="Print the queue with item status.")

    move_parser = queue_sub.add_parser("move", help="Move an item to a new position.")
    move_parser.add_argument("item_id", help="Item id (a unique prefix is enough).")
    move_parser.add_argument("index", type=int, help="Zero-based target position.")

    remove_parser = queue_sub.add_parser("remove", help="Remove an item from the queue.")
    remove_parser.add_argument("item_id", help="Item id (a unique prefix is enough).")

    queue_sub.add_parser("clear", help="Empty the queue.")

    approve_parser = subparsers.add_parser(
        "approve",
        help="Approve (optionally replacing) an outline waiting for review.",
    )
    approve_parser.add_argument("item_id", help="Item id (a unique prefix is enough).")
    approve_parser.add_argument(
        "--outline-file",
        dest="outline_file",
        default=None,
        help="Markdown file whose contents replace the drafted outline.",
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Process the queue until it is drained, stopped or the breaker trips.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    _register_run_arguments(run_parser)
    run_parser.add_argument(
        "--reset-circuit",
        dest="reset_circuit",
        action="store_true",
        help="Close a previously tripped circuit breaker before starting.",
    )

    library_parser = subparsers.add_parser("library", help="Save and restore named queues.")
    library_sub = library_parser.add_subparsers(dest="library_command", required=True)
    save_parser = library_sub.add_parser("save", help="Save the current queue under a name.")
    save_parser.add_argument("name", help="Display name for the saved queue.")
    library_sub.add_parser("list", help="List saved queues, newest first.")
    load_parser = library_sub.add_parser("load", help="Replace the queue with a saved one.")
    load_parser.add_argument("queue_id", help="Saved queue id (a unique prefix is enough).")
    delete_parser = library_sub.add_parser("delete", help="Delete a saved queue.")
    delete_parser.add_argument("queue_id", help="Saved queue id (a unique prefix is enough).")

    notes_parser = subparsers.add_parser("notes", help="Browse generated notes.")
    notes_sub = notes_parser.add_subparsers(dest="notes_command", required=True)
    notes_sub.add_parser("list", help="List generated notes, oldest first.")
    show_parser = notes_sub.add_parser("show", help="Print a generated note.")
    show_parser.add_argument("note_id", help="Note id (a unique prefix is enough).")

    generate_parser = subparsers.add_parser(
        "generate",
        help="Generate a single note without touching the queue.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    generate_parser.add_argument("topic", help="Topic to write about.")
    generate_parser.add_argument(
        "--outline-file",
        dest="outline_file",
        default=None,
        help="Use this outline instead of drafting one.",
    )
    _register_run_arguments(generate_parser)

    return parser


def _register_llm_arguments(parser: argparse.ArgumentParser, *, default_provider: str) -> None:
    parser.add_argument(
        "--provider",
        default=default_provider,
        help=f"Provider to use ({MOCK_PROVIDER}, {', '.join(sorted(PROVIDER_PRESETS))}).",
    )
    parser.add_argument("--model", default=None, help="Model name or identifier to target.")
    parser.add_argument(
        "--base-url",
        dest="base_url",
        default=None,
        help="Optional base URL for API-compatible providers.",
    )
    parser.add_argument(
        "--budget-usd",
        dest="budget_usd",
        type=float,
        default=None,
        help="Optional spend budget in USD; calls are refused once it is spent.",
    )


def _register_run_arguments(parser: argparse.ArgumentParser) -> None:
    _register_llm_arguments(parser, default_provider=MOCK_PROVIDER)
    parser.add_argument(
        "--outline-provider",
        dest="outline_provider",
        default=None,
        help="Provider for outline drafting; defaults to --provider.",
    )
    parser.add_argument(
        "--outline-model",
        dest="outline_model",
        default=None,
        help="Model for outline drafting; defaults to --model.",
    )
    parser.add_argument(
        "--auto-approve",
        dest="auto_approve",
        action="store_true",
        help="Skip manual outline review and continue straight to content.",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in NoteMode],
        default=NoteMode.GENERAL.value,
        help="Style of the generated notes.",
    )
    parser.add_argument(
        "--content-instructions",
        dest="content_instructions",
        default=None,
        help="Extra request appended to the content prompt.",
    )
    parser.add_argument(
        "--outline-instructions",
        dest="outline_instructions",
        default=None,
        help="Replacement system prompt for outline drafting.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for deterministic mock outputs.",
    )


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _build_chat(config: NotebatchConfig, args: argparse.Namespace, provider: str, *, model: str | None):
    kwargs = config.as_provider_kwargs(provider=provider, model=model, base_url=args.base_url)
    return build_provider(
        model=kwargs["model"],  # type: ignore[arg-type]
        base_url=kwargs["base_url"],  # type: ignore[arg-type]
        api_key=kwargs["api_key"],  # type: ignore[arg-type]
        temperature=kwargs["temperature"],  # type: ignore[arg-type]
        max_tokens=kwargs["max_tokens"],  # type: ignore[arg-type]
        timeout=kwargs["timeout"],  # type: ignore[arg-type]
    )


def _build_registry(config: NotebatchConfig, args: argparse.Namespace) -> tuple[ProviderRegistry, CostTracker]:
    limit = args.budget_usd if args.budget_usd is not None else config.budget.limit_usd
    tracker = CostTracker(budget_limit=limit, warn_ratio=config.budget.warn_ratio)
    registry = ProviderRegistry([MockContentProvider(seed=args.seed)])

    requested = {args.provider.lower()}
    if getattr(args, "outline_provider", None):
        requested.add(args.outline_provider.lower())
    for name in sorted(requested - {MOCK_PROVIDER}):
        if name not in PROVIDER_PRESETS:
            raise ValueError(f"Unknown provider '{name}'. Choose from: {MOCK_PROVIDER}, {', '.join(sorted(PROVIDER_PRESETS))}")
        chat = _build_chat(config, args, name, model=args.model if name == args.provider.lower() else None)
        registry.register(
            LangChainContentProvider(
                chat,
                name=name,
                cost_tracker=tracker,
                outline_temperature=config.llm.outline_temperature,
            )
        )
    return registry, tracker


def _shared_model(args: argparse.Namespace) -> str | None:
    """``--model`` applies to outlines too when both phases use one provider."""

    if args.outline_provider and args.outline_provider.lower() != args.provider.lower():
        return None
    return args.model


def _run_config(args: argparse.Namespace, config: NotebatchConfig) -> RunConfig:
    return RunConfig(
        auto_approve=args.auto_approve,
        mode=NoteMode(args.mode),
        content_provider=args.provider.lower(),
        outline_provider=args.outline_provider.lower() if args.outline_provider else None,
        content_model=args.model or config.llm.model,
        outline_model=args.outline_model or _shared_model(args) or config.llm.outline_model,
        content_instructions=args.content_instructions,
        outline_instructions=args.outline_instructions,
    )


def _build_engine(store: JsonQueueStore, config: NotebatchConfig, registry: ProviderRegistry | None = None) -> BatchEngine:
    return BatchEngine(
        store,
        registry or ProviderRegistry([MockContentProvider()]),
        policy=config.engine.build_policy(),
        breaker=config.engine.build_breaker(),
        cooldown=config.engine.cooldown_seconds,
    )


def _resolve_id(candidates: Sequence[str], prefix: str, *, kind: str = "item") -> str:
    if prefix in candidates:
        return prefix
    matches = [candidate for candidate in candidates if candidate.startswith(prefix)]
    if not matches:
        raise KeyError(f"No {kind} with id '{prefix}'")
    if len(matches) > 1:
        raise ValueError(f"Ambiguous {kind} id '{prefix}' matches {len(matches)} entries")
    return matches[0]


def _format_item(index: int, item: QueueItem) -> str:
    line = f"{index:>3}. [{item.status.value:<18}] {item.id[:8]}  {item.topic}"
    if item.error_msg:
        line += f"\n       ! {item.error_msg}"
    return line


def _print_queue(items: Sequence[QueueItem]) -> None:
    if not items:
        print("Queue is empty.")
        return
    for index, item in enumerate(items):
        print(_format_item(index, item))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_queue(args: argparse.Namespace, config: NotebatchConfig, store: JsonQueueStore) -> int:
    engine = _build_engine(store, config)
    ids = [item.id for item in engine.snapshot()]
    command = args.queue_command

    if command == "add":
        added = engine.add_topics(args.topics)
        print(f"Added {len(added)} topic(s).")
    elif command == "import":
        document = load_syllabus(args.file)
        if args.extract:
            if args.provider.lower() == MOCK_PROVIDER:
                raise ValueError("--extract needs a language model provider, not the mock")
            registry_chat = _build_chat(config, args, args.provider.lower(), model=args.model)
            topics = asyncio.run(TopicExtractor(registry_chat).extract(document.content))
        else:
            topics = parse_topic_lines(document.content)
        added = engine.add_topics(topics)
        print(f"Imported {len(added)} topic(s) from {document.source}.")
    elif command == "show":
        _print_queue(engine.snapshot())
        print(f"Status: {engine.status_label}")
    elif command == "move":
        engine.move_item(_resolve_id(ids, args.item_id), args.index)
        _print_queue(engine.snapshot())
    elif command == "remove":
        removed = engine.remove_item(_resolve_id(ids, args.item_id))
        print(f"Removed '{removed.topic}'.")
    elif command == "clear":
        engine.set_queue([])
        print("Queue cleared.")
    return 0


def _cmd_approve(args: argparse.Namespace, config: NotebatchConfig, store: JsonQueueStore) -> int:
    engine = _build_engine(store, config)
    item = engine.get(_resolve_id([entry.id for entry in engine.snapshot()], args.item_id))
    if args.outline_file:
        outline = Path(args.outline_file).expanduser().read_text(encoding="utf-8")
    elif item.outline:
        outline = item.outline
    else:
        raise ValueError(f"'{item.topic}' has no outline yet; pass --outline-file to supply one")
    updated = engine.update_outline(item.id, outline)
    print(f"Approved outline for '{updated.topic}'.")
    return 0


def _cmd_run(args: argparse.Namespace, config: NotebatchConfig, store: JsonQueueStore) -> int:
    registry, tracker = _build_registry(config, args)
    engine = _build_engine(store, config, registry)
    if args.reset_circuit:
        engine.reset_circuit()
    run_config = _run_config(args, config)

    last_status: dict[str, str] = {}

    def report(items: tuple[QueueItem, ...], processing: bool, breaker_label: Optional[str]) -> None:
        for item in items:
            status = item.status.value
            if last_status.get(item.id) != status:
                last_status[item.id] = status
                suffix = f" ({item.error_msg})" if item.error_msg else ""
                print(f"[{status}] {item.topic}{suffix}", flush=True)
        if breaker_label and last_status.get("breaker") != breaker_label:
            last_status["breaker"] = breaker_label
            print(f"[{breaker_label}]", flush=True)

    subscription = engine.subscribe(report)
    try:
        started = _run_until_done(engine, run_config)
    finally:
        subscription.unsubscribe()
        engine.close()

    if not started:
        print(f"Run not started: {engine.status_label}", file=sys.stderr)
        return 1
    if tracker.total_cost:
        print(f"Estimated spend: ${tracker.total_cost:.4f}")
    if tracker.should_warn():
        logger.warning("Spend is at %.0f%% of the budget", 100 * tracker.total_cost / (tracker.budget_limit or 1))
    return 1 if engine.circuit_open else 0


def _run_until_done(engine: BatchEngine, run_config: RunConfig) -> bool:
    async def runner() -> bool:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, engine.stop)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - platform specific
            pass
        try:
            return await engine.start(run_config)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):  # pragma: no cover - platform specific
                pass

    return asyncio.run(runner())


def _cmd_library(args: argparse.Namespace, config: NotebatchConfig, store: JsonQueueStore) -> int:
    command = args.library_command
    if command == "save":
        engine = _build_engine(store, config)
        saved = store.save_named_queue(SavedQueue(name=args.name, items=list(engine.snapshot())))
        print(f"Saved {len(saved.items)} item(s) as '{saved.name}' ({saved.id[:8]}).")
    elif command == "list":
        saved_queues = store.list_saved_queues()
        if not saved_queues:
            print("No saved queues.")
        for saved in saved_queues:
            print(f"{saved.id[:8]}  {saved.saved_at:%Y-%m-%d %H:%M}  {len(saved.items):>3} item(s)  {saved.name}")
    elif command == "load":
        queue_id = _resolve_id([entry.id for entry in store.list_saved_queues()], args.queue_id, kind="saved queue")
        saved = store.load_named_queue(queue_id)
        engine = _build_engine(store, config)
        engine.set_queue(saved.items)
        print(f"Loaded '{saved.name}' ({len(saved.items)} item(s)).")
    elif command == "delete":
        queue_id = _resolve_id([entry.id for entry in store.list_saved_queues()], args.queue_id, kind="saved queue")
        store.delete_named_queue(queue_id)
        print("Deleted saved queue.")
    return 0


def _cmd_notes(args: argparse.Namespace, config: NotebatchConfig, store: JsonQueueStore) -> int:
    artifacts = store.list_artifacts()
    if args.notes_command == "list":
        if not artifacts:
            print("No notes generated yet.")
        for artifact in artifacts:
            print(f"{artifact.id[:8]}  {artifact.created_at:%Y-%m-%d %H:%M}  {artifact.mode.value:<13}  {artifact.topic}")
        return 0
    note_id = _resolve_id([artifact.id for artifact in artifacts], args.note_id, kind="note")
    print(store.read_artifact(note_id))
    return 0


def _cmd_generate(args: argparse.Namespace, config: NotebatchConfig, store: JsonQueueStore) -> int:
    registry, _ = _build_registry(config, args)
    run_config = _run_config(args, config)
    outline = None
    if args.outline_file:
        outline = Path(args.outline_file).expanduser().read_text(encoding="utf-8")
    workflow = NoteWorkflow(
        registry.get(run_config.outline_provider_name),
        registry.get(run_config.content_provider),
        config=run_config,
        store=store,
    )
    state = workflow.run(args.topic, outline=outline)
    print(state["content"])
    if state.get("artifact_path"):
        print(f"\nSaved to {state['artifact_path']}", file=sys.stderr)
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, NotebatchConfig, JsonQueueStore], int]] = {
    "queue": _cmd_queue,
    "approve": _cmd_approve,
    "run": _cmd_run,
    "library": _cmd_library,
    "notes": _cmd_notes,
    "generate": _cmd_generate,
}


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    handler = COMMANDS.get(args.command or "")
    if handler is None:
        parser.print_help()
        return 0

    config = NotebatchConfig().with_state_dir(args.state_dir)
    try:
        store = JsonQueueStore(config.state_dir)
        return handler(args, config, store)
    except KeyError as exc:
        message = exc.args[0] if exc.args else exc
        print(f"Error: {message}", file=sys.stderr)
        return 1
    except (FileNotFoundError, ValueError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
