"""Command-line argument parsing for git-worktree-keeper."""

import argparse
import sys

from git_worktree_keeper.__version__ import __version__


def _add_target_flags(parser: argparse.ArgumentParser) -> None:
    """-n/-r/-l select a worktree or repository explicitly."""
    parser.add_argument("-n", "--id", dest="worktree_id", type=int, metavar="ID", help="Worktree ID")
    parser.add_argument("-r", "--repo", help="Repository name")
    parser.add_argument("-l", "--label", help="Repository label (must match a single repo)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wt",
        description="Stable numeric IDs, notes and PR status for git worktrees",
        epilog="Setup: set WT_WORKTREE_DIR (or worktree_dir in ~/.wt/config.yaml). "
        "PR status needs GITHUB_TOKEN or 'github_token' in the config file.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("--version", action="version", version=f"git-worktree-keeper {__version__}")
    parser.add_argument(
        "--debug", action="store_true", help="Show debug information for troubleshooting"
    )
    parser.add_argument("--config", metavar="PATH", help="Config file (default: ~/.wt/config.yaml)")
    parser.add_argument("--worktree-dir", metavar="DIR", help="Directory holding the worktrees")
    parser.add_argument("--repo-dir", metavar="DIR", help="Directory holding the main repositories")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    list_parser = subparsers.add_parser("list", aliases=["ls"], help="List worktrees with their IDs")
    list_parser.add_argument(
        "--refresh-pr", action="store_true", help="Refresh PR status before listing"
    )
    list_parser.add_argument(
        "--force", action="store_true", help="With --refresh-pr, refetch even fresh PR status"
    )
    list_parser.add_argument(
        "--sort",
        choices=["id", "repo", "branch"],
        help="Sort by id, repo or branch (default: from config, id)",
    )

    show_parser = subparsers.add_parser("show", help="Show a worktree or repository")
    show_parser.add_argument("target", nargs="?", help="Worktree ID, branch or repo:branch")
    _add_target_flags(show_parser)

    cd_parser = subparsers.add_parser("cd", help="Print the path of a worktree (use with $(...))")
    cd_parser.add_argument("target", nargs="?", help="Worktree ID, branch or repo:branch")
    _add_target_flags(cd_parser)

    note_parser = subparsers.add_parser("note", help="Manage the note of a worktree")
    note_sub = note_parser.add_subparsers(dest="note_command", metavar="ACTION")
    note_sub.required = True
    note_set = note_sub.add_parser("set", help="Set the note")
    note_set.add_argument("text", nargs="+", help="Note text")
    _add_target_flags(note_set)
    note_get = note_sub.add_parser("get", help="Print the note")
    _add_target_flags(note_get)
    note_clear = note_sub.add_parser("clear", help="Clear the note")
    _add_target_flags(note_clear)

    exec_parser = subparsers.add_parser(
        "exec", help="Run a command in one or more worktrees"
    )
    exec_parser.add_argument(
        "targets",
        nargs="*",
        help="IDs, branches, repo:branch or label:branch (default: current worktree)",
    )
    exec_parser.add_argument(
        "-n", "--id", dest="ids", type=int, action="append", default=[], metavar="ID",
        help="Worktree ID (repeatable)",
    )

    remove_parser = subparsers.add_parser("remove", aliases=["rm"], help="Remove a worktree")
    remove_parser.add_argument("target", help="Worktree ID, branch or repo:branch")
    remove_parser.add_argument(
        "--force", action="store_true", help="Remove even with uncommitted changes"
    )

    prune_parser = subparsers.add_parser(
        "prune", help="Remove clean worktrees whose PR was merged"
    )
    prune_parser.add_argument(
        "-n", "--id", dest="ids", type=int, action="append", default=[], metavar="ID",
        help="Only consider this worktree ID (repeatable)",
    )
    prune_parser.add_argument(
        "-f", "--force", action="store_true",
        help="Remove the -n worktrees even if dirty or not merged",
    )
    prune_parser.add_argument(
        "--dry-run", action="store_true", help="Show what would be removed"
    )
    prune_parser.add_argument(
        "--refresh-pr", action="store_true", help="Refresh PR status before deciding"
    )

    pr_parser = subparsers.add_parser("pr", help="Pull request status")
    pr_sub = pr_parser.add_subparsers(dest="pr_command", metavar="ACTION")
    pr_sub.required = True
    pr_refresh = pr_sub.add_parser("refresh", help="Refresh cached PR status")
    pr_refresh.add_argument("--force", action="store_true", help="Refetch even fresh PR status")

    cache_parser = subparsers.add_parser("cache", help="Registry maintenance")
    cache_sub = cache_parser.add_subparsers(dest="cache_command", metavar="ACTION")
    cache_sub.required = True
    cache_sub.add_parser("reset", help="Clear the registry and renumber worktrees from 1")

    label_parser = subparsers.add_parser("label", help="Manage repository labels")
    label_sub = label_parser.add_subparsers(dest="label_command", metavar="ACTION")
    label_sub.required = True
    for action in ("add", "remove"):
        sub = label_sub.add_parser(action, help=f"{action.capitalize()} a label")
        sub.add_argument("label", help="Label name")
        sub.add_argument("-r", "--repo", help="Repository name (default: current repository)")

    return parser


def parse_args(argv=None):
    """Parse command-line arguments.

    For ``exec``, everything after ``--`` is the command to run:
    ``wt exec api:main web:main -- make test``.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    command: list = []
    if "--" in argv and "exec" in argv[: argv.index("--")]:
        split = argv.index("--")
        argv, command = argv[:split], argv[split + 1:]

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "exec" and not command:
        parser.error("exec needs a command after '--'")
    args.command_args = command
    return args
