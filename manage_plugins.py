#!/usr/bin/env python3
"""Plugin management CLI tool."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from nexus.constants import DATABASE_URL, PLUGINS_DIR, UPLOADS_DIR
from nexus.dependencies import get_plugin_manager, get_record_store
from nexus.plugins.discovery import PluginDiscovery
from nexus.plugins.lifecycle import UploadedArtifact


def get_discovery() -> PluginDiscovery:
    """Create a PluginDiscovery instance."""
    return PluginDiscovery(PLUGINS_DIR)


def print_result(result) -> None:
    status = "OK" if result.success else f"FAILED ({result.error.value})"
    print(f"{status}: {result.message}")
    for reason in result.reasons:
        print(f"  - {reason}")
    if not result.success:
        sys.exit(1)


def cmd_list(args):
    """List all persisted plugins."""
    records = get_record_store().find_all()

    if not records:
        print("No plugins found.")
        return

    print(f"{'Name':<30} {'Version':<10} {'Route':<25} {'Category':<14} {'Active':<7} {'Featured'}")
    print("-" * 100)

    for r in records:
        print(
            f"{r['name']:<30} {r['version']:<10} {r['route']:<25} {r['category']:<14} "
            f"{'Yes' if r['active'] else 'No':<7} {'Yes' if r['featured'] else 'No'}"
        )


def cmd_info(args):
    """Show detailed plugin information."""
    record = get_record_store().find_one(args.name)
    if not record:
        print(f"Plugin '{args.name}' not found.")
        sys.exit(1)

    print(f"Plugin: {record['name']}")
    print(f"  Version:      {record['version']}")
    print(f"  Route:        {record['route']}")
    print(f"  Category:     {record['category']}")
    print(f"  Description:  {record['description']}")
    print(f"  Author:       {record['author']}")
    print(f"  Status:       {record['status']} (active={record['active']})")
    print(f"  Installed:    {record['installed_at']}")
    print(f"  Last updated: {record['last_updated']}")
    if record["dependencies"]:
        print(f"  Dependencies: {', '.join(record['dependencies'])}")
    if record["settings"]:
        print(f"  Settings:     {json.dumps(record['settings'], indent=4, ensure_ascii=False)}")


def cmd_validate(args):
    """Validate a plugin folder without installing it."""
    candidate = get_discovery().inspect(Path(args.path).resolve())
    if candidate is None:
        print(f"No plugin.json found at {args.path}")
        sys.exit(1)
    if candidate.error:
        print(f"Invalid: {candidate.error}")
        sys.exit(1)
    if not candidate.validation:
        print("Invalid plugin configuration:")
        for reason in candidate.validation.reasons:
            print(f"  - {reason}")
        sys.exit(1)
    print(f"Valid: {candidate.data['name']} v{candidate.data['version']} at {candidate.data['route']}")


def cmd_install(args):
    """Install a plugin from a local folder (plugin.json plus optional archive)."""
    source = Path(args.path).resolve()
    candidate = get_discovery().inspect(source)
    if candidate is None:
        print(f"No plugin.json found at {source}")
        sys.exit(1)
    if candidate.error:
        print(f"Invalid: {candidate.error}")
        sys.exit(1)

    upload = None
    if args.archive:
        archive = Path(args.archive)
        upload = UploadedArtifact(filename=archive.name, content=archive.read_bytes())

    manager = get_plugin_manager()
    result = asyncio.run(manager.install_plugin(candidate.data, upload, reload=False))
    print_result(result)
    print("Restart the service or POST /api/plugins/reload to activate it.")


def cmd_uninstall(args):
    """Deactivate an installed plugin."""
    manager = get_plugin_manager()

    async def run():
        await manager.load_all()
        return await manager.uninstall_plugin(args.name)

    print_result(asyncio.run(run()))


def cmd_backup(args):
    """Back up the loaded plugin set."""
    manager = get_plugin_manager()

    async def run():
        await manager.load_all()
        return await manager.backup()

    result = asyncio.run(run())
    print_result(result)
    print(f"  File: {result.data['backup_file']}")


def cmd_doctor(args):
    """Run health checks on the plugin system."""
    issues = []

    # Check directories
    if not PLUGINS_DIR.exists():
        issues.append(f"Plugins directory missing: {PLUGINS_DIR}")
    if not UPLOADS_DIR.exists():
        issues.append(f"Uploads directory missing: {UPLOADS_DIR}")

    # Check the record store
    try:
        records = get_record_store().find_all()
    except Exception as e:
        issues.append(f"Plugin database unavailable ({DATABASE_URL}): {e}")
        records = []

    # Validate plugin folders
    candidates = get_discovery().discover_all()
    for c in candidates:
        if c.error:
            issues.append(f"Folder '{c.folder}': {c.error}")
        elif not c.validation:
            issues.append(f"Folder '{c.folder}': {c.validation.summary()}")

    # Routes shared by more than one active plugin
    routes = {}
    for r in records:
        if r["active"]:
            routes.setdefault(r["route"], []).append(r["name"])
    for route, names in routes.items():
        if len(names) > 1:
            issues.append(f"Route {route} claimed by several active plugins: {', '.join(names)}")

    if issues:
        print(f"Found {len(issues)} issue(s):")
        for i, issue in enumerate(issues, 1):
            print(f"  {i}. {issue}")
        sys.exit(1)
    else:
        active = sum(1 for r in records if r["active"])
        print(f"All checks passed. {len(candidates)} plugin folder(s), {active} active record(s).")


def main():
    parser = argparse.ArgumentParser(description="NexusCore Plugin Manager")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logs")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list
    subparsers.add_parser("list", help="List all plugins")

    # info
    info_parser = subparsers.add_parser("info", help="Show plugin details")
    info_parser.add_argument("name", help="Plugin name")

    # validate
    validate_parser = subparsers.add_parser("validate", help="Validate a plugin folder")
    validate_parser.add_argument("path", help="Path to plugin directory")

    # install
    install_parser = subparsers.add_parser("install", help="Install a plugin from local path")
    install_parser.add_argument("path", help="Path to plugin directory")
    install_parser.add_argument("--archive", help="Plugin archive to keep in the uploads area")

    # uninstall
    uninstall_parser = subparsers.add_parser("uninstall", help="Uninstall a plugin")
    uninstall_parser.add_argument("name", help="Plugin name")

    # backup
    subparsers.add_parser("backup", help="Back up loaded plugins")

    # doctor
    subparsers.add_parser("doctor", help="Run health checks")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "list": cmd_list,
        "info": cmd_info,
        "validate": cmd_validate,
        "install": cmd_install,
        "uninstall": cmd_uninstall,
        "backup": cmd_backup,
        "doctor": cmd_doctor,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
