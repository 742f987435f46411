#!/usr/bin/env python3
"""
Catalog Inspector - Main Entry Point

Usage:
    python main.py setup                       # Validate configuration and schemas
    python main.py summary recipes --range week
    python main.py inspect recipes <id>        # Render one record with resolved links
    python main.py search "vitamin" --exclude elements
    python main.py export products --output .outputs
"""
import os
import sys
import json
import argparse
import logging
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent

logger = logging.getLogger(__name__)


def setup_environment():
    """Load environment variables from .env file if present."""
    env_file = PROJECT_ROOT / '.env'
    if env_file.exists():
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))


def setup_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def cmd_setup(args):
    """Validate configuration and the schema registry."""
    from catalog_inspector.config.settings import get_config
    from catalog_inspector.core.error_taxonomy import SchemaValidationError
    from catalog_inspector.core.schema_registry import SchemaRegistry

    print("\n" + "="*60)
    print("CONFIGURATION VALIDATION")
    print("="*60)

    config = get_config()

    print(f"\n📦 Storage Configuration:")
    storage = config.storage
    checks = [
        ("Base URL (INSPECTOR_API_BASE_URL)", storage.base_url),
        ("API Key (INSPECTOR_API_KEY)", storage.api_key),
        ("Access Token (INSPECTOR_ACCESS_TOKEN)", storage.access_token),
    ]
    for name, value in checks:
        status = "✅" if value else "❌"
        print(f"   {status} {name}: {'Set' if value else 'MISSING'}")
    print(f"   Timeout: {storage.request_timeout}s, fetch limit: {storage.fetch_limit}")

    print(f"\n🗂  Schema Registry: {config.resolved_schema_path}")
    try:
        registry = SchemaRegistry.from_yaml(config.resolved_schema_path)
    except SchemaValidationError as e:
        print(f"   ❌ {e}")
        sys.exit(1)

    for kind in registry.entity_kinds():
        schema = registry.get_schema(kind)
        linked = ", ".join(f"{s.key}→{s.linked_entity_kind}" for s in registry.get_linked_fields(kind))
        print(f"   ✅ {kind:<16} {len(schema.field_specs):>3} fields  table={schema.table}"
              + (f"  links: {linked}" if linked else ""))
    print(f"   Funnel stages: {len(registry.funnel_stages)}")

    print("\n" + "="*60)
    if not storage.is_configured:
        print("Set INSPECTOR_API_BASE_URL and a key/token to reach record storage.")
    print("="*60)


def cmd_summary(args):
    """Print summary metrics for one entity kind."""
    from catalog_inspector.core.inspector import InspectorConsole
    from catalog_inspector.data.record_aggregator import DateRange, TrendPeriod

    console = InspectorConsole()
    console.load_collection(args.kind)
    summary = console.summarize(
        args.kind,
        DateRange(args.range) if args.range else None,
        TrendPeriod(args.period) if args.period else None,
    )
    print(json.dumps(summary.to_dict(), indent=2, default=str))


def cmd_inspect(args):
    """Render one record's detail view."""
    from catalog_inspector.core.field_renderer import describe_text
    from catalog_inspector.core.inspector import InspectorConsole

    console = InspectorConsole()
    console.load_collection(args.kind)
    view = console.inspect(args.kind, args.id)
    if view is None:
        print(f"No {args.kind} record with id {args.id}")
        sys.exit(1)

    print(f"\n{view.title}" + (f"  ({view.subtitle})" if view.subtitle else ""))
    if view.badges:
        print("  " + "  ".join(f"[{label}: {value}]" for label, value in view.badges))
    if view.image_ref:
        print(f"  image: {view.image_ref}")
    for section in view.sections:
        print(f"\n── {section.name} ({section.item_count})")
        for rendered in section.fields if args.all else section.visible_fields:
            print(f"   {rendered.label}: {describe_text(rendered.description)}")
        if section.hidden_count and not args.all:
            print(f"   … {section.hidden_count} more")
    console.close_detail()


def cmd_search(args):
    """Search every collection except the excluded one."""
    from catalog_inspector.core.inspector import InspectorConsole

    console = InspectorConsole()
    loaded = console.load_all()
    logger.info(f"Loaded {sum(loaded.values())} record(s) across {len(loaded)} kind(s)")
    matches = console.search(args.query, excluding_kind=args.exclude)
    if not matches:
        print("No matches")
        return
    for match in matches:
        print(f"  [{match.entity_kind}] {match.display_name}")


def cmd_export(args):
    """Export one collection to Excel."""
    from catalog_inspector.core.inspector import InspectorConsole

    console = InspectorConsole()
    console.load_collection(args.kind)
    output = console.export(args.kind, output_dir=args.output, include_summary=not args.no_summary)
    print(f"Wrote {output.row_count} row(s) to {output.file_path}")


def main():
    setup_environment()

    from catalog_inspector.config.settings import get_config
    setup_logging(get_config().log_level)

    parser = argparse.ArgumentParser(
        description="Catalog Inspector",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py setup                         Check configuration
  python main.py summary waitlist              Signup funnel and referral metrics
  python main.py inspect recipes 42            Show one recipe

Environment Variables:
  INSPECTOR_API_BASE_URL    Record storage base URL
  INSPECTOR_API_KEY         Public API key
  INSPECTOR_ACCESS_TOKEN    Admin access token (required for writes)
  INSPECTOR_SCHEMA_PATH     Override the bundled entity_schemas.yaml
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    setup_parser = subparsers.add_parser('setup', help='Validate setup')
    setup_parser.set_defaults(func=cmd_setup)

    summary_parser = subparsers.add_parser('summary', help='Summary metrics for a kind')
    summary_parser.add_argument('kind', help='Entity kind (e.g. recipes, scans, waitlist)')
    summary_parser.add_argument('--range', choices=['day', 'week', 'month', 'year', 'all'],
                                help='Date range for summary counts')
    summary_parser.add_argument('--period', choices=['day', 'week', 'month'],
                                help='Trend bucket size')
    summary_parser.set_defaults(func=cmd_summary)

    inspect_parser = subparsers.add_parser('inspect', help='Render one record')
    inspect_parser.add_argument('kind', help='Entity kind')
    inspect_parser.add_argument('id', help='Record id (email for waitlist)')
    inspect_parser.add_argument('--all', action='store_true', help='Show every field of each section')
    inspect_parser.set_defaults(func=cmd_inspect)

    search_parser = subparsers.add_parser('search', help='Search across collections')
    search_parser.add_argument('query', help='Substring to look for')
    search_parser.add_argument('--exclude', help='Entity kind to leave out')
    search_parser.set_defaults(func=cmd_search)

    export_parser = subparsers.add_parser('export', help='Export a kind to Excel')
    export_parser.add_argument('kind', help='Entity kind')
    export_parser.add_argument('--output', default='.outputs', help='Output directory')
    export_parser.add_argument('--no-summary', action='store_true', help='Skip the Summary sheet')
    export_parser.set_defaults(func=cmd_export)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    from catalog_inspector.core.error_taxonomy import InspectorError

    try:
        args.func(args)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except InspectorError as e:
        classified = e.classify()
        logger.error(f"{classified.category.name}: {e}")
        print(f"❌ {classified.user_message}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
