"""
Command-line interface for the Memory Intelligence package.
"""

import argparse
import json
import sys
import logging

from .config import load_config
from .errors import MemoryIntelligenceError
from .memory.types import MemoryCategory
from .observability.logging import configure_logging
from .service import MemoryService

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, json_output: bool = False, level: str = "INFO"):
    """Configure logging."""
    configure_logging(level="DEBUG" if verbose else level, json_output=json_output, output=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Memory Intelligence - conversational memory detection and retrieval",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a chat message through detection and store what is worth remembering
  memory-intelligence remember "Remember that I prefer morning workouts"

  # Add a memory manually
  memory-intelligence add "User is vegetarian" --category preference --importance 0.8

  # Search an owner's memories
  memory-intelligence --owner alice search "what should I cook tonight"

  # Show relationships of a memory
  memory-intelligence relationships mem_1234abcd

  # Start the REST API
  memory-intelligence serve --port 8000
        """
    )

    parser.add_argument(
        "--config",
        help="Path to a YAML configuration file"
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        help="SQLite database path (overrides configuration)"
    )
    parser.add_argument(
        "--owner",
        default="default",
        help="Owner whose memories are used (default: default)"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Remember command
    remember_parser = subparsers.add_parser(
        "remember",
        help="Detect and store memories from a chat message"
    )
    remember_parser.add_argument(
        "message",
        help="Chat message to analyze"
    )
    remember_parser.add_argument(
        "--history",
        nargs="+",
        default=[],
        help="Preceding conversation turns, oldest first"
    )
    remember_parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for background processing"
    )

    # Add command
    add_parser = subparsers.add_parser(
        "add",
        help="Add a memory manually"
    )
    add_parser.add_argument(
        "content",
        help="What to remember"
    )
    add_parser.add_argument(
        "--category",
        choices=[c.value for c in MemoryCategory],
        default=MemoryCategory.CONTEXT.value,
        help="Memory category"
    )
    add_parser.add_argument(
        "--importance",
        type=float,
        default=0.5,
        help="Importance score between 0 and 1"
    )
    add_parser.add_argument(
        "--keywords",
        nargs="+",
        help="Keywords (extracted from the content when omitted)"
    )

    # Search command
    search_parser = subparsers.add_parser(
        "search",
        help="Search memories relevant to a query"
    )
    search_parser.add_argument(
        "query",
        help="Query text"
    )
    search_parser.add_argument(
        "--hints",
        nargs="+",
        default=[],
        help="Contextual hints"
    )
    search_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=5,
        help="Maximum number of results"
    )

    # Context command
    context_parser = subparsers.add_parser(
        "context",
        help="Print the prompt block of memories relevant to a query"
    )
    context_parser.add_argument(
        "query",
        help="Current turn text"
    )
    context_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=5,
        help="Maximum number of memories"
    )

    # List command
    list_parser = subparsers.add_parser(
        "list",
        help="List stored memories"
    )
    list_parser.add_argument(
        "--category",
        choices=[c.value for c in MemoryCategory],
        help="Only this category"
    )
    list_parser.add_argument(
        "-n", "--limit",
        type=int,
        help="Maximum number of memories"
    )

    # Relationships command
    relationships_parser = subparsers.add_parser(
        "relationships",
        help="Show relationships of a memory"
    )
    relationships_parser.add_argument(
        "memory_id",
        help="Memory identifier"
    )
    relationships_parser.add_argument(
        "--depth",
        type=int,
        default=1,
        help="How many hops to follow"
    )

    # Stats command
    subparsers.add_parser(
        "stats",
        help="Show monitor, processor and storage statistics"
    )

    # Serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the REST API"
    )
    serve_parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Bind address"
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Bind port"
    )

    return parser


COMMANDS = {}


def command(name):
    def decorator(func):
        COMMANDS[name] = func
        return func
    return decorator


def main(argv=None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    overrides = {"storage": {"db_path": args.db_path}} if args.db_path else {}
    config = load_config(config_path=args.config, **overrides)
    setup_logging(args.verbose, config.logging.json_output, config.logging.level)

    if args.command == "serve":
        handle_serve(args, config)
        return

    service = MemoryService(config)
    try:
        with service:
            COMMANDS[args.command](service, args)
    except MemoryIntelligenceError as e:
        print(f"Error: {e}")
        sys.exit(1)


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _print_memory(index, memory, score=None):
    header = f"{index}. [{memory.category.value}] importance {memory.importance:.2f}"
    if score is not None:
        header += f" score {score:.3f}"
    print(header)
    print(f"   ID: {memory.id}")
    print(f"   Content: {memory.content}")
    if memory.keywords:
        print(f"   Keywords: {', '.join(memory.keywords)}")
    print()


@command("remember")
def handle_remember(service, args):
    """Run a message through detection and print what the owner now remembers."""
    before = {m.id: m.updated_at for m in service.list_memories(args.owner)}
    handle = service.process_message(args.owner, args.message, args.history)
    if handle is None:
        print("Nothing to analyze.")
        return

    if not service.wait_idle(args.timeout):
        print(f"Background processing did not finish within {args.timeout}s")
        sys.exit(1)

    changed = [m for m in service.list_memories(args.owner) if before.get(m.id) != m.updated_at]
    if args.json:
        _print_json([m.to_dict() for m in changed])
        return
    if not changed:
        print("Nothing worth remembering was found.")
        return
    print(f"Stored or updated {len(changed)} memories:\n")
    for i, memory in enumerate(changed, 1):
        _print_memory(i, memory)


@command("add")
def handle_add(service, args):
    """Add a memory manually."""
    memory = service.add_memory(
        args.owner,
        args.content,
        args.category,
        args.importance,
        keywords=args.keywords,
    )
    if args.json:
        _print_json(memory.to_dict())
    else:
        print(f"Stored memory {memory.id}")


@command("search")
def handle_search(service, args):
    """Search memories."""
    results = service.search(args.owner, args.query, args.hints, args.limit)
    if args.json:
        _print_json([r.to_dict() for r in results])
        return

    if not results:
        print("No memories found matching your query.")
        return

    print(f"Found {len(results)} matching memories:\n")
    for i, result in enumerate(results, 1):
        _print_memory(i, result.memory, result.score)


@command("context")
def handle_context(service, args):
    """Print the memory context block for a query."""
    block = service.build_memory_context(args.owner, args.query, limit=args.limit)
    print(block or "No relevant memories.")


@command("list")
def handle_list(service, args):
    """List memories."""
    memories = service.list_memories(args.owner, limit=args.limit, category=args.category)
    if args.json:
        _print_json([m.to_dict() for m in memories])
        return
    if not memories:
        print("No memories stored.")
        return
    for i, memory in enumerate(memories, 1):
        _print_memory(i, memory)


@command("relationships")
def handle_relationships(service, args):
    """Show relationships of a memory."""
    relationships = service.get_relationships(args.memory_id, args.owner)
    related = service.related_memories(args.memory_id, args.owner, max_depth=args.depth)
    if args.json:
        _print_json({
            "memory_id": args.memory_id,
            "relationships": [r.to_dict() for r in relationships],
            "related": [r.to_dict() for r in related],
        })
        return

    if not relationships:
        print("No relationships found.")
        return
    print(f"{len(relationships)} relationships:")
    for relationship in relationships:
        print(
            f"  {relationship.from_memory_id} --{relationship.type.value} "
            f"({relationship.strength:.2f})--> {relationship.to_memory_id}"
        )
    if related:
        print("\nRelated memories:")
        for item in related:
            print(f"  [{item.relationship.type.value}, depth {item.depth}] {item.memory.content}")


@command("stats")
def handle_stats(service, args):
    """Show statistics."""
    stats = service.stats(args.owner)
    if args.json:
        _print_json(stats)
        return

    storage = stats["storage"]
    print(f"Memories: {storage['total_memories']}")
    print(f"Relationships: {storage['total_relationships']}")
    print(f"Circuit breaker: {stats['processor']['circuit_breaker']['state']}")
    for component, component_stats in sorted(stats["monitor"].items()):
        print(
            f"  {component}: {component_stats['count']} ops, "
            f"avg {component_stats['avg_ms']:.1f}ms, p95 {component_stats['p95_ms']:.1f}ms, "
            f"errors {component_stats['error_rate']:.0%}"
        )


def handle_serve(args, config):
    """Start the REST API with uvicorn."""
    import uvicorn

    from .api.app import create_app

    logger.info(f"Serving Memory Intelligence API on {args.host}:{args.port}")
    uvicorn.run(create_app(config=config), host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
