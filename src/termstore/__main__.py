"""Command line entry point for termstore maintenance tasks."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from termstore.bridge import DataBridge
from termstore.config import Config
from termstore.db.paths import PACKAGE_SEED_DIR, StoreKind
from termstore.db.registry import DatabaseRegistry
from termstore.db.seed import build_all_seeds
from termstore.errors import TermstoreError

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="termstore",
        description="termstore: per-user database bootstrap and migration",
    )
    parser.add_argument("--app-data", help="Application data directory")
    parser.add_argument("--seed-dir", help="Directory holding the seed databases")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    seeds = sub.add_parser("build-seeds", help="Build seed databases from packaged SQL")
    seeds.add_argument(
        "--out", default=str(PACKAGE_SEED_DIR), help="Output directory (default: package seeds)"
    )

    boot = sub.add_parser("bootstrap", help="Open (and if needed create) a user's stores")
    boot.add_argument("--user-id", type=int, required=True)
    boot.add_argument(
        "--bridge-socket",
        help="Unix socket of the UI process; enables legacy store migration",
    )

    status = sub.add_parser("status", help="Show legacy store migration status")
    status.add_argument("--user-id", type=int, required=True)
    return parser


async def _bootstrap(config: Config, user_id: int, bridge_socket: str | None) -> None:
    registry = DatabaseRegistry(config)
    bridge = None
    if bridge_socket:
        reader, writer = await asyncio.open_unix_connection(bridge_socket)
        bridge = DataBridge.from_streams(reader, writer, timeout=config.bridge_timeout)
        registry.attach_bridge(bridge)
    try:
        for kind in StoreKind:
            handle = await registry.acquire(user_id, kind)
            print(f"{kind.value}: {handle.path}")
    finally:
        await registry.close_all()
        if bridge is not None:
            await bridge.channel.close()


async def _status(config: Config, user_id: int) -> None:
    registry = DatabaseRegistry(config)
    try:
        handle = await registry.acquire(user_id, StoreKind.INTERACTIVE)
        statuses = await handle.get_all_migration_statuses()
    finally:
        await registry.close_all()
    if not statuses:
        print("No legacy store migration recorded.")
        return
    for st in statuses:
        state = "migrated" if st.is_migrated else "pending"
        line = f"{st.data_source}: {state}, records={st.record_count}"
        if st.error_message:
            line += f", error={st.error_message}"
        print(line)


def main():
    """Parse arguments and run the requested command."""
    args = _build_parser().parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    config = Config.from_args(app_data=args.app_data, seed_dir=args.seed_dir)
    errors = config.validate()
    if errors:
        for err in errors:
            logger.error(err)
        sys.exit(1)

    try:
        if args.command == "build-seeds":
            for path in asyncio.run(build_all_seeds(Path(args.out))):
                print(path)
        elif args.command == "bootstrap":
            asyncio.run(_bootstrap(config, args.user_id, args.bridge_socket))
        elif args.command == "status":
            asyncio.run(_status(config, args.user_id))
    except TermstoreError as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
