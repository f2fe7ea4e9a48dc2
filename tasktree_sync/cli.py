"""CLI entry point for tasktree-sync."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from .backup import load_backup, restore_backup, save_backup, tasks_to_csv
from .firestore import FirestoreClient
from .progress import aggregate
from .store import ProjectStore
from .sync import load_remote


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tasktree-sync",
        description="Inspect, back up and restore task trees stored in Firestore.",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help="OAuth access token for Firestore (or set TASKTREE_TOKEN / FIRESTORE_TOKEN)",
    )
    parser.add_argument(
        "--firebase-project",
        type=str,
        default=os.environ.get("TASKTREE_FIREBASE_PROJECT"),
        help="Firebase project id (or set TASKTREE_FIREBASE_PROJECT)",
    )
    parser.add_argument(
        "--user-id",
        type=str,
        default=os.environ.get("TASKTREE_USER_ID"),
        help="User whose documents to read (or set TASKTREE_USER_ID)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p_export = sub.add_parser("export", help="Write a JSON backup of all projects and groups")
    p_export.add_argument("backup_file", type=str, help="Destination JSON file")

    p_import = sub.add_parser(
        "import",
        help="Replace ALL remote projects and groups with a JSON backup",
    )
    p_import.add_argument("backup_file", type=str, help="Backup JSON file to restore")
    p_import.add_argument(
        "--yes",
        action="store_true",
        help="Confirm that existing remote data may be overwritten",
    )

    sub.add_parser("progress", help="Print completion progress for every active project")

    p_csv = sub.add_parser("csv", help="Export one project's tasks as CSV")
    p_csv.add_argument("project_id", type=str, help="Project document id")
    p_csv.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Write to this file instead of stdout",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(message)s",
    )

    # Resolve token
    token = args.token or os.environ.get("TASKTREE_TOKEN") or os.environ.get("FIRESTORE_TOKEN")
    if not token:
        logging.error("No token provided. Use --token or set TASKTREE_TOKEN / FIRESTORE_TOKEN")
        return 1
    if not args.firebase_project or not args.user_id:
        logging.error("Both --firebase-project and --user-id are required")
        return 1

    if args.command == "import":
        backup_path = Path(args.backup_file)
        if not backup_path.is_file():
            logging.error("Backup file not found: %s", backup_path)
            return 1
        if not args.yes:
            logging.error("Import overwrites all remote data; pass --yes to confirm")
            return 1

    try:
        return asyncio.run(_run(args, token))
    except Exception as e:
        logging.error("%s failed: %s", args.command, e)
        return 1


async def _run(args: argparse.Namespace, token: str) -> int:
    client = FirestoreClient(
        token=token,
        firebase_project=args.firebase_project,
        user_id=args.user_id,
    )
    store = ProjectStore(remote=client)
    try:
        if args.command == "import":
            state = load_backup(args.backup_file)
            logging.info(
                "Restoring %d project(s), %d group(s) and %d resource(s) from %s",
                len(state.projects),
                len(state.groups),
                len(state.resources),
                args.backup_file,
            )
            result = await restore_backup(store, client, state)
            logging.info(
                "Import complete: %d deleted, %d written",
                result.deleted,
                result.written,
            )
            return 0

        await load_remote(store, client)

        if args.command == "export":
            save_backup(args.backup_file, store.state)
            logging.info(
                "Wrote %d project(s), %d group(s) and %d resource(s) to %s",
                len(store.projects),
                len(store.groups),
                len(store.resources),
                args.backup_file,
            )
            return 0

        if args.command == "progress":
            for project in store.visible_projects:
                progress = aggregate(project.tasks)
                print(
                    f"{project.name}: {progress.completed}/{progress.total} "
                    f"({progress.percent}%)"
                )
            return 0

        # csv
        project = store.get_project(args.project_id)
        if project is None:
            logging.error("Project not found: %s", args.project_id)
            return 1
        content = tasks_to_csv(project.tasks)
        if args.output:
            Path(args.output).write_text(content, encoding="utf-8")
            logging.info("Wrote %s", args.output)
        else:
            sys.stdout.write(content)
        return 0
    finally:
        await client.close()


if __name__ == "__main__":
    sys.exit(main())
