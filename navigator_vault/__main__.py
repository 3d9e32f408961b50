"""Operator commands: ``python -m navigator_vault {status,init,rotate}``."""
import sys
import asyncio
import logging
import argparse
from typing import Optional

from .config import VaultConfig
from .exceptions import VaultError
from .service import VaultService

logger = logging.getLogger("navigator.vault")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="navigator-vault", description="Navigator Vault operations",
    )
    parser.add_argument("--root", help="vault directory (default: VAULT_DB_PATH)")
    parser.add_argument("--service", help="secret store service name")
    parser.add_argument(
        "--backend", choices=("keychain", "env", "memory"),
        help="secret store backend",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show vault status")
    sub.add_parser("init", help="Initialize vault (create master key and storage)")
    rotate = sub.add_parser("rotate", help="Rotate an agent key")
    rotate.add_argument("agent_id", nargs="?", help="agent to rotate (default: all due)")
    return parser


def _config(args: argparse.Namespace) -> VaultConfig:
    config = VaultConfig.from_env()
    overrides = {}
    if args.root:
        overrides["root"] = args.root
    if args.service:
        overrides["keychain_service"] = args.service
    if args.backend:
        overrides["secret_backend"] = args.backend
    if overrides:
        config = VaultConfig(**{**config.model_dump(), **overrides})
    return config


def _print_status(status: dict) -> None:
    def mark(flag: bool) -> str:
        return "yes" if flag else "no"

    print("Vault Status:")
    print(f"  Initialized: {mark(status['initialized'])}")
    print(f"  Master Key: {mark(status['masterKeyPresent'])}")
    print(f"  Agent Keys: {status['keyCount']}")
    print(f"  Active Stores: {status['activeStoreCount']}")
    if status["approxSizeBytes"]:
        print(f"  Storage Size: {status['approxSizeBytes'] / 1024:.2f} KB")


async def run(args: argparse.Namespace) -> int:
    service = VaultService(_config(args))
    if args.command == "status":
        _print_status(await service.status())
        return 0
    async with service:
        if args.command == "init":
            print("Vault initialized successfully")
        elif args.command == "rotate":
            if args.agent_id:
                results = {args.agent_id: await service.rotate_agent_key(args.agent_id)}
            else:
                results = await service.rotate_due_keys()
            if not results:
                print("No agent keys due for rotation")
            for agent_id, stats in results.items():
                print(f"{agent_id}: {stats}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except VaultError as err:
        print(f"Vault operation failed: {err}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
