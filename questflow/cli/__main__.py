"""
QuestFlow CLI - Command-line interface for the question store.

Usage:
    questflow list [--json]
    questflow show ID [--json]
    questflow add --type TYPE --question TEXT [--option O]... [--answer N] [--media FILE]...
    questflow edit ID [--type TYPE] [--question TEXT] [--option O]... [--answer N]
    questflow delete ID [--yes]
    questflow export FILE
    questflow import FILE
    questflow attachment ID INDEX [--output FILE]
    questflow storage choose PATH | storage status
    questflow settings show | settings set NAME VALUE
    questflow sync status | push | dead-letters | requeue [ID]...
    questflow clear [--yes]
"""

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from questflow import QuestFlow
from questflow.errors import QuestFlowError
from questflow.logging_config import setup_questflow_logging
from questflow.protocols import Severity, StaticConfirmer
from questflow.types import DraftAttachment, Record, RecordKind, Settings

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

_MARKS = {
    Severity.INFO: "•",
    Severity.SUCCESS: "✓",
    Severity.WARNING: "!",
    Severity.ERROR: "✗",
}

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


class ConsoleNotifier:
    """Prints notifications to stderr."""

    def notify(self, severity: Severity, title: str, message: str) -> None:
        print(f"{_MARKS.get(Severity(severity), '•')} {title}: {message}", file=sys.stderr)


class PromptConfirmer:
    """Asks on the terminal. Anything but an explicit yes declines."""

    def confirm(self, title: str, body: str, confirm_label: str, cancel_label: str) -> bool:
        try:
            answer = input(f"{title}: {body} [{confirm_label.lower()}/{cancel_label.lower()}] ")
        except (EOFError, KeyboardInterrupt):
            print()
            return False
        return answer.strip().lower() in {"y", "yes", confirm_label.lower()}


# === Formatting ===


def _format_record(record: Record) -> str:
    lines = [f"[{record.kind.value}] {record.body}", f"  id: {record.id}"]
    for i, choice in enumerate(record.choices):
        marker = "*" if i == record.correct_choice_index else " "
        lines.append(f"  {marker} {i}. {choice}")
    for i, attachment in enumerate(record.attachments):
        lines.append(f"  media {i}: {attachment.name} ({attachment.media_type}, {attachment.state})")
    lines.append(f"  updated: {record.updated_at.isoformat() if record.updated_at else '-'}")
    return "\n".join(lines)


def _read_media(paths: Optional[List[str]]) -> List[DraftAttachment]:
    attachments = []
    for raw in paths or []:
        path = Path(raw).expanduser()
        media_type, _ = mimetypes.guess_type(path.name)
        if not media_type:
            raise ValueError(f"Cannot determine media type of {path.name}")
        attachments.append(
            DraftAttachment(media_type=media_type, name=path.name, data=path.read_bytes())
        )
    return attachments


def _parse_setting(name: str, value: str) -> Dict[str, Any]:
    attr = {persisted: attr for attr, persisted in Settings.PERSISTED_NAMES.items()}.get(
        name, name.replace("-", "_")
    )
    if attr in ("auto_sync", "dark_mode"):
        lowered = value.lower()
        if lowered not in _TRUE | _FALSE:
            raise ValueError(f"{name} must be true or false")
        return {attr: lowered in _TRUE}
    return {attr: value}


# === Commands ===


def cmd_list(args, q: QuestFlow):
    """List all questions."""
    records = q.list_records()
    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return
    if not records:
        print("No questions yet.")
        return
    for record in records:
        print(f"{record.id}  [{record.kind.value}] {record.body}")


def cmd_show(args, q: QuestFlow):
    """Show one question."""
    record = q.get_record(args.id)
    if args.json:
        print(json.dumps(record.to_dict(), indent=2))
    else:
        print(_format_record(record))


def cmd_add(args, q: QuestFlow):
    """Create a question."""
    draft: Dict[str, Any] = {
        "kind": args.type,
        "body": args.question,
        "choices": args.option or [],
        "correct_choice_index": args.answer,
        "attachments": _read_media(args.media),
    }
    if RecordKind.parse(args.type) is RecordKind.TRUE_FALSE and not args.option:
        draft["choices"] = ["True", "False"]
    if args.id:
        draft["id"] = args.id
    record = q.create_record(draft)
    print(f"✓ Created {record.id}")


def cmd_edit(args, q: QuestFlow):
    """Update fields of a question."""
    patch: Dict[str, Any] = {}
    if args.type:
        patch["kind"] = args.type
    if args.question is not None:
        patch["body"] = args.question
    if args.option is not None:
        patch["choices"] = args.option
    if args.clear_answer:
        patch["correct_choice_index"] = None
    elif args.answer is not None:
        patch["correct_choice_index"] = args.answer
    if args.media is not None:
        patch["attachments"] = _read_media(args.media)
    if not patch:
        print("Nothing to change.")
        return
    record = q.update_record(args.id, patch)
    print(f"✓ Updated {record.id}")


def cmd_delete(args, q: QuestFlow):
    """Delete a question."""
    if q.delete_record(args.id):
        print(f"✓ Deleted {args.id}")
    else:
        print(f"✗ Not deleted: {args.id}")


def cmd_export(args, q: QuestFlow):
    """Export all questions to a JSON file."""
    count = q.export_to(args.file)
    print(f"✓ Exported {count} questions to {args.file}")


def cmd_import(args, q: QuestFlow):
    """Import questions from a JSON export."""
    result = q.import_from(args.file)
    print(
        f"✓ Imported {result.total} questions "
        f"({result.inserted} new, {result.replaced} updated, {result.kept} unchanged)"
    )


def cmd_attachment(args, q: QuestFlow):
    """Write an attachment's bytes to a file or stdout."""
    data = q.read_attachment(args.id, args.index)
    if args.output:
        Path(args.output).expanduser().write_bytes(data)
        print(f"✓ Wrote {len(data)} bytes to {args.output}")
    else:
        sys.stdout.buffer.write(data)


def cmd_storage(args, q: QuestFlow):
    """Handle storage subcommands."""
    if args.storage_action == "choose":
        count = q.choose_directory(args.path)
        print(f"✓ Using {args.path} ({count} questions)")
    elif args.storage_action == "status":
        status = q.status()
        print(f"Storage: {status['backend']}")
        print(f"Media files: {'supported' if status['supports_binary'] else 'not available'}")
        print(f"Questions: {status['record_count']}")


def cmd_settings(args, q: QuestFlow):
    """Handle settings subcommands."""
    if args.settings_action == "show":
        data = q.settings.get().to_dict()
        if data.get("apiKey"):
            data["apiKey"] = "***"
        print(json.dumps(data, indent=2))
    elif args.settings_action == "set":
        q.update_settings(**_parse_setting(args.name, args.value))
        print(f"✓ {args.name} updated")


def cmd_sync(args, q: QuestFlow):
    """Handle sync subcommands."""
    if args.sync_action == "status":
        status = q.sync_status()
        print(f"Pending: {status['queue_length']}")
        print(f"Dead letters: {status['dead_letter']}")
        print(f"Last sync: {status['last_sync_time'] or 'never'}")
    elif args.sync_action == "push":
        result = q.force_sync()
        if result.skipped:
            print(f"Sync skipped: {result.skipped}")
        else:
            print(
                f"✓ Delivered {result.delivered}, failed {result.failed}, "
                f"abandoned {result.abandoned}"
            )
    elif args.sync_action == "dead-letters":
        items = q.sync_queue.dead_letters()
        if not items:
            print("No dead letters.")
        for item in items:
            print(f"{item.id}  {item.action}  attempts={item.attempts}")
    elif args.sync_action == "requeue":
        count = q.sync_queue.requeue_dead_letters(args.ids or None)
        print(f"✓ Requeued {count} items")


def cmd_clear(args, q: QuestFlow):
    """Delete all questions and media and reset settings."""
    if q.clear_data():
        print("✓ All data cleared")
    else:
        print("Cancelled.")


COMMANDS = {
    "list": cmd_list,
    "show": cmd_show,
    "add": cmd_add,
    "edit": cmd_edit,
    "delete": cmd_delete,
    "export": cmd_export,
    "import": cmd_import,
    "attachment": cmd_attachment,
    "storage": cmd_storage,
    "settings": cmd_settings,
    "sync": cmd_sync,
    "clear": cmd_clear,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="questflow",
        description="Local-first question store with offline sync",
    )
    parser.add_argument("--data-dir", help="Data directory (default: ~/.questflow)")
    parser.add_argument("--log-level", help="Write logs to <data dir>/logs at this level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    kinds = [k.value for k in RecordKind]

    p_list = subparsers.add_parser("list", help="List questions")
    p_list.add_argument("--json", "-j", action="store_true")

    p_show = subparsers.add_parser("show", help="Show a question")
    p_show.add_argument("id")
    p_show.add_argument("--json", "-j", action="store_true")

    p_add = subparsers.add_parser("add", help="Create a question")
    p_add.add_argument("--type", "-t", choices=kinds, required=True)
    p_add.add_argument("--question", "-q", required=True, help="Question text")
    p_add.add_argument("--option", "-o", action="append", help="Answer option (repeatable)")
    p_add.add_argument("--answer", "-a", type=int, help="Index of the correct option")
    p_add.add_argument("--media", "-m", action="append", help="Image or audio file (repeatable)")
    p_add.add_argument("--id", help="Explicit question id")

    p_edit = subparsers.add_parser("edit", help="Update a question")
    p_edit.add_argument("id")
    p_edit.add_argument("--type", "-t", choices=kinds)
    p_edit.add_argument("--question", "-q")
    p_edit.add_argument("--option", "-o", action="append", help="Replaces all options")
    p_edit.add_argument("--answer", "-a", type=int)
    p_edit.add_argument("--clear-answer", action="store_true")
    p_edit.add_argument("--media", "-m", action="append", help="Replaces all media")

    p_delete = subparsers.add_parser("delete", help="Delete a question")
    p_delete.add_argument("id")
    p_delete.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    p_export = subparsers.add_parser("export", help="Export questions to JSON")
    p_export.add_argument("file")

    p_import = subparsers.add_parser("import", help="Import questions from JSON")
    p_import.add_argument("file")

    p_attachment = subparsers.add_parser("attachment", help="Read an attachment")
    p_attachment.add_argument("id")
    p_attachment.add_argument("index", type=int)
    p_attachment.add_argument("--output", "-o", help="Write to this file instead of stdout")

    p_storage = subparsers.add_parser("storage", help="Record directory")
    storage_sub = p_storage.add_subparsers(dest="storage_action", required=True)
    p_choose = storage_sub.add_parser("choose", help="Use a directory for questions and media")
    p_choose.add_argument("path")
    storage_sub.add_parser("status", help="Show where questions are stored")

    p_settings = subparsers.add_parser("settings", help="Settings")
    settings_sub = p_settings.add_subparsers(dest="settings_action", required=True)
    settings_sub.add_parser("show", help="Show settings")
    p_set = settings_sub.add_parser("set", help="Change a setting")
    p_set.add_argument("name", help="e.g. apiUrl, apiKey, autoSync, darkMode")
    p_set.add_argument("value")

    p_sync = subparsers.add_parser("sync", help="Remote sync")
    sync_sub = p_sync.add_subparsers(dest="sync_action", required=True)
    sync_sub.add_parser("status", help="Show sync queue status")
    sync_sub.add_parser("push", help="Upload every question now")
    sync_sub.add_parser("dead-letters", help="List items that failed to sync")
    p_requeue = sync_sub.add_parser("requeue", help="Retry dead-lettered items")
    p_requeue.add_argument("ids", nargs="*", help="Item ids (default: all)")

    p_clear = subparsers.add_parser("clear", help="Delete all data")
    p_clear.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    return parser


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        log_dir = Path(args.data_dir).expanduser() / "logs" if args.data_dir else None
        setup_questflow_logging(args.log_level, log_dir=log_dir)

    confirmer = StaticConfirmer(True) if getattr(args, "yes", False) else PromptConfirmer()
    try:
        q = QuestFlow(args.data_dir, notifier=ConsoleNotifier(), confirmer=confirmer)
    except (QuestFlowError, OSError) as e:
        logger.error(f"Failed to initialize QuestFlow: {e}")
        sys.exit(1)

    try:
        COMMANDS[args.command](args, q)
    except (QuestFlowError, ValueError, OSError) as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    finally:
        q.close()


if __name__ == "__main__":
    main()
