"""``av`` command line: link local files to AssetVault assets and keep them in sync."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import re
import secrets
import socket
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import httpx

from cli.api_client import ApiClient, ApiError, validate_server_url
from cli.config import (
    DEFAULT_SYNC_INTERVAL,
    ConfigError,
    GlobalConfig,
    LinkStore,
    ProjectScope,
    read_config,
    write_config,
)
from cli.conflict import local_hash_changed, never_synced, server_version_changed
from cli.daemon import WatchDaemon
from cli.hashing import hash_file
from cli.sync import SyncEngine, SyncError

logger = logging.getLogger("cli")

DEFAULT_SERVER_URL = "http://localhost:8000"


def _configure_logging(verbose: bool) -> None:
    if verbose:
        fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    else:
        fmt = "%(asctime)s %(message)s"
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=fmt,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("watchdog").setLevel(logging.WARNING)


def _client_for(config: GlobalConfig) -> ApiClient:
    return ApiClient(config.server_url, config.api_key)


def generate_identifier(name: str) -> str:
    """Machine identifier: a short slug of ``name`` plus a random suffix."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:20].strip("-")
    suffix = secrets.token_hex(2)
    return f"{slug}-{suffix}" if slug else suffix


# ── Commands ─────────────────────────────────────────


async def cmd_login(args: argparse.Namespace) -> None:
    api_key = args.api_key or getpass.getpass("API Key: ").strip()
    if not api_key:
        raise ConfigError("API key is required")
    server = args.server or input(f"Server URL (press Enter for {DEFAULT_SERVER_URL}): ").strip()
    server_url = validate_server_url(server or DEFAULT_SERVER_URL, args.allow_insecure_http)

    async with ApiClient(server_url, api_key) as client:
        identity = await client.whoami()

    existing = read_config()
    machine_id = existing.machine_id if existing else None
    machine_name = existing.machine_name if existing else None
    if identity.machine is not None:
        machine_id, machine_name = identity.machine.id, identity.machine.name
    config = GlobalConfig(
        api_key=api_key,
        server_url=server_url,
        machine_id=machine_id,
        machine_name=machine_name,
        sync_interval=existing.sync_interval if existing else DEFAULT_SYNC_INTERVAL,
        user_links=existing.user_links if existing else [],
    )
    write_config(config)

    print(f"Logged in as {identity.user.username} ({identity.user.email})")
    if identity.machine:
        print(f"Bound to machine: {identity.machine.name}")
    else:
        print("Run `av init` to register this machine.")


async def cmd_init(args: argparse.Namespace) -> None:
    config = read_config()
    if config is None:
        raise ConfigError("Not logged in. Run `av login` first.")

    if config.machine_id and not args.force:
        print(f"Machine already registered: {config.machine_name} ({config.machine_id})")
        if input("Re-register? (y/N): ").strip().lower() != "y":
            return

    default_name = socket.gethostname()
    name = args.name or input(f"Machine name ({default_name}): ").strip() or default_name
    identifier = generate_identifier(name)
    print(f'Registering machine "{name}" ({identifier})...')

    async with _client_for(config) as client:
        machine = await client.register_machine(name, identifier)

    config.machine_id = machine.id
    config.machine_name = machine.name
    write_config(config)
    print(f"Machine registered: {machine.name} ({machine.machine_identifier})")
    print("Run `av link <asset-slug>` to link assets for syncing.")


async def cmd_link(args: argparse.Namespace) -> None:
    store = LinkStore.load()
    async with _client_for(store.config) as client:
        engine = SyncEngine(client, store)
        local_path = Path(args.path) if args.path else None
        tracked, asset = await engine.link_asset(args.slug, local_path)
    if isinstance(tracked.scope, ProjectScope):
        where = f"project config: {tracked.scope.directory}"
    else:
        where = "global config"
    print(f'Linked "{asset.name}" -> {tracked.entry.local_path} ({where})')
    print("Run `av sync` to download the latest version.")


async def cmd_link_all(args: argparse.Namespace) -> None:
    store = LinkStore.load()
    async with _client_for(store.config) as client:
        engine = SyncEngine(client, store)
        report = await engine.link_directory(Path(args.dir))
    print(
        f"Done! Created {report.created} asset(s), linked {len(report.linked)}, "
        f"skipped {report.skipped}."
    )
    if report.linked:
        print("Run `av sync` to push content, or `av watch` to start the daemon.")


async def cmd_unlink(args: argparse.Namespace) -> None:
    store = LinkStore.load()
    removed = store.unlink(args.slug)
    if removed is None:
        raise SyncError(f'No link found for "{args.slug}".')
    store.save()
    print(f'Unlinked "{args.slug}" (was: {removed.entry.local_path})')
    print("Local file was not deleted.")


async def cmd_status(args: argparse.Namespace) -> None:
    store = LinkStore.load()
    links = store.all_links()
    if not links:
        print("No assets linked. Run `av link <asset-slug>` to get started.")
        return

    async with _client_for(store.config) as client:
        manifest = await client.sync_manifest(store.machine_id)
    assets = {asset.id: asset for asset in manifest.assets}

    print()
    print(f"  {'Asset':<28}{'Version':<14}{'Synced':<14}Status")
    print("  " + "-" * 70)
    for tracked in links:
        entry = tracked.entry
        asset = assets.get(entry.asset_id)
        if asset is None:
            print(f"  {entry.asset_slug[:28]:<28}{'???':<14}{'':<14}Asset not found")
            continue

        path = Path(entry.local_path)
        local_changed = path.is_file() and local_hash_changed(entry.last_hash, hash_file(path))
        server_changed = server_version_changed(entry.last_synced_version, asset.current_version)

        if never_synced(entry.last_synced_version):
            status = "Not synced"
        elif local_changed and server_changed:
            status = "Conflict"
        elif local_changed:
            status = "Local changed"
        elif server_changed:
            status = "Outdated"
        else:
            status = "Up to date"

        synced = f"v{entry.last_synced_version}" if entry.last_synced_version else "-"
        print(f"  {asset.name[:28]:<28}{'v' + asset.current_version:<14}{synced:<14}{status}")
    print()


async def cmd_push(args: argparse.Namespace) -> None:
    store = LinkStore.load()
    async with _client_for(store.config) as client:
        report = await SyncEngine(client, store).push(args.slug)
    if report.failed:
        sys.exit(1)


async def cmd_pull(args: argparse.Namespace) -> None:
    store = LinkStore.load()
    async with _client_for(store.config) as client:
        report = await SyncEngine(client, store).pull(args.slug)
    if report.failed:
        sys.exit(1)


async def cmd_sync(args: argparse.Namespace) -> None:
    store = LinkStore.load()
    async with _client_for(store.config) as client:
        engine = SyncEngine(client, store)
        logger.info("-- Scan for new files --")
        await engine.scan_for_new_files()
        logger.info("-- Push local changes --")
        pushed = await engine.push()
        logger.info("-- Pull server updates --")
        pulled = await engine.pull()
    logger.info("Sync complete.")
    if pushed.failed or pulled.failed:
        sys.exit(1)


async def cmd_watch(args: argparse.Namespace) -> None:
    store = LinkStore.load()
    async with _client_for(store.config) as client:
        engine = SyncEngine(client, store)
        daemon = WatchDaemon(engine, interval=args.interval)
        await daemon.run()


COMMANDS: dict[str, Callable[[argparse.Namespace], Awaitable[None]]] = {
    "login": cmd_login,
    "init": cmd_init,
    "link": cmd_link,
    "link-all": cmd_link_all,
    "unlink": cmd_unlink,
    "status": cmd_status,
    "push": cmd_push,
    "pull": cmd_pull,
    "sync": cmd_sync,
    "watch": cmd_watch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="av",
        description="Sync local AI assistant assets with an AssetVault server",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    login = subparsers.add_parser("login", help="Store an API key and server URL")
    login.add_argument("--server", "-s", help="Server URL")
    login.add_argument("--api-key", help="API key (prompted if omitted)")
    login.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    init = subparsers.add_parser("init", help="Register this machine")
    init.add_argument("--name", help="Machine name (default: hostname)")
    init.add_argument("--force", action="store_true", help="Re-register without asking")

    link = subparsers.add_parser("link", help="Link an asset to a local file")
    link.add_argument("slug", help="Asset slug")
    link.add_argument("path", nargs="?", help="Local file path (default: platform install path)")

    link_all = subparsers.add_parser("link-all", help="Create and link assets for a directory")
    link_all.add_argument("dir", help="Directory such as .claude/skills")

    unlink = subparsers.add_parser("unlink", help="Remove a link (the file is kept)")
    unlink.add_argument("slug", help="Asset slug")

    subparsers.add_parser("status", help="Show sync status of linked assets")

    push = subparsers.add_parser("push", help="Push local changes")
    push.add_argument("slug", nargs="?", help="Push only this asset, even if unchanged")

    pull = subparsers.add_parser("pull", help="Pull server updates")
    pull.add_argument("slug", nargs="?", help="Pull only this asset, even if up to date")

    subparsers.add_parser("sync", help="Scan for new files, push, then pull")

    watch = subparsers.add_parser("watch", help="Run the sync daemon")
    watch.add_argument(
        "--interval", type=float, help="Poll interval in seconds (default: from config)"
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return

    _configure_logging(args.verbose)
    try:
        asyncio.run(COMMANDS[args.command](args))
    except KeyboardInterrupt:
        sys.exit(130)
    except (ConfigError, SyncError, ApiError, ValueError, OSError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    except httpx.HTTPError as exc:
        print(f"Error: could not reach server: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
