"""Command line entry point for the dashboard data core"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables FIRST, config overrides and LOG_LEVEL read them
env_path = Path.cwd() / '.env'
load_dotenv(dotenv_path=env_path)

from bizflow.constants import EntityGroup, EntityKind, TransportName
from bizflow.db.schemas import render_schema_sql
from bizflow.models import Session
from bizflow.orchestrator.data_orchestrator import DataOrchestrator
from bizflow.orchestrator.local_cache import LocalCache
from bizflow.tools.remote_store_client import RemoteStoreClient
from bizflow.tools.report_tools import build_report, export_collection_csv
from bizflow.tools.sheet_sync_client import SheetSyncClient
from bizflow.utils.config_loader import DEFAULT_CONFIG_PATH, get_section, load_config
from bizflow.utils.errors import BizFlowError
from bizflow.utils.logging import get_logger

logger = get_logger(__name__)


class ConsoleNotifier:
    """Notification port printing one line per notification"""

    def success(self, message: str) -> None:
        print(f"[ok] {message}")

    def warning(self, message: str) -> None:
        print(f"[warning] {message}")

    def error(self, message: str) -> None:
        print(f"[error] {message}", file=sys.stderr)


def prompt_confirmation(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bizflow", description="Small-business dashboard data core")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="YAML settings file")
    parser.add_argument("--owner", default=os.getenv("BIZFLOW_OWNER_ID"), help="Hosted backend owner id")
    parser.add_argument("--token", default=os.getenv("BIZFLOW_ACCESS_TOKEN"), help="Hosted backend access token")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("summary", help="Print the dashboard summary")
    commands.add_parser("report", help="Print profitability, growth and category totals")
    commands.add_parser("schema", help="Print the hosted backend SQL setup script")

    transport = commands.add_parser("transport", help="Show or set the spreadsheet transport")
    transport.add_argument("name", nargs="?", choices=[t.value for t in TransportName])

    probe = commands.add_parser("probe", help="Check that a transport reaches an endpoint")
    probe.add_argument("group", choices=[g.value for g in EntityGroup])
    probe.add_argument("--transport", choices=[t.value for t in TransportName])

    for name, help_text in (
        ("export", "Overwrite the spreadsheet with local data"),
        ("import", "Add spreadsheet rows unknown locally"),
        ("sync", "Two-sided spreadsheet sync"),
    ):
        sheet = commands.add_parser(name, help=help_text)
        sheet.add_argument("group", choices=[g.value for g in EntityGroup] + ["all"])
        sheet.add_argument("--log", action="store_true", help="Print the sync log of this run")

    commands.add_parser("refresh", help="Replace local data with the hosted backend data")
    commands.add_parser("push", help="Upsert all local data to the hosted backend")

    csv_export = commands.add_parser("csv", help="Export one collection as CSV")
    csv_export.add_argument("kind", choices=[k.value for k in EntityKind])
    csv_export.add_argument("--output", help="File to write (default: stdout)")

    clear = commands.add_parser("clear", help="Delete all data")
    clear.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    return parser


def build_orchestrator(config: dict, token: Optional[str], assume_yes: bool = False) -> DataOrchestrator:
    remote_config = get_section(config, 'remote_store')

    return DataOrchestrator(
        cache=LocalCache.from_config(get_section(config, 'local_cache')),
        sheets=SheetSyncClient.from_config(get_section(config, 'sheets')),
        remote=RemoteStoreClient.from_config(remote_config, access_token=token),
        notifier=ConsoleNotifier(),
        confirm=(lambda prompt: True) if assume_yes else prompt_confirmation,
        refresh_retries=int(remote_config.get('max_retries', 3)),
        retry_base_delay=float(remote_config.get('retry_base_delay_seconds', 0.5))
    )


async def run_sheet_command(orchestrator: DataOrchestrator, command: str, group: str) -> bool:
    if command == "sync" and group == "all":
        return await orchestrator.sync_all_sheets()

    operation = {
        "export": orchestrator.export_to_sheet,
        "import": orchestrator.import_from_sheet,
        "sync": orchestrator.sync_with_sheet,
    }[command]

    groups = list(EntityGroup) if group == "all" else [EntityGroup(group)]
    for each in groups:
        if not await operation(each):
            return False
    return True


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    orchestrator = build_orchestrator(config, args.token, assume_yes=getattr(args, "yes", False))

    if args.owner:
        await orchestrator.start_session(
            Session(owner_id=args.owner, access_token=args.token),
            refresh=False
        )

    ok = True
    try:
        if args.command == "summary":
            print(orchestrator.dashboard_summary.model_dump_json(indent=2))

        elif args.command == "report":
            report = build_report(orchestrator.transactions, orchestrator.products)
            print(json.dumps(report, indent=2))

        elif args.command == "schema":
            print(render_schema_sql())

        elif args.command == "transport":
            if args.name:
                orchestrator.set_transport(args.name)
            print(orchestrator.sheets.transport.value)

        elif args.command == "probe":
            result = await orchestrator.sheets.probe_transport(args.group, args.transport)
            print(json.dumps(result))
            ok = result['success']

        elif args.command in ("export", "import", "sync"):
            ok = await run_sheet_command(orchestrator, args.command, args.group)
            if args.log:
                for entry in orchestrator.sheets.sync_log.entries():
                    print(f"{entry.timestamp.isoformat()} {entry.status:<7} {entry.action}: {entry.details or ''}")

        elif args.command == "refresh":
            ok = await orchestrator.refresh_data()

        elif args.command == "push":
            ok = await orchestrator.sync_with_database()

        elif args.command == "csv":
            csv_text = export_collection_csv(orchestrator.collection(EntityKind(args.kind)), args.output)
            if not args.output:
                print(csv_text, end="")

        elif args.command == "clear":
            ok = orchestrator.clear_data()

        await orchestrator.wait_for_pending()

    finally:
        await orchestrator.sheets.aclose()
        if orchestrator.remote is not None:
            await orchestrator.remote.aclose()

    return 0 if ok else 1


def main(argv=None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    try:
        return asyncio.run(run(args))
    except BizFlowError as e:
        logger.error(f"Command {args.command} failed: {e}")
        print(f"[error] {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
