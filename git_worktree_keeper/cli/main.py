"""Command-line interface for git-worktree-keeper"""

import sys
from contextlib import contextmanager
from typing import Iterator, Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import Progress

from git_worktree_keeper.cli.args import parse_args
from git_worktree_keeper.config import load_config
from git_worktree_keeper.core import ProgressCallback, WorktreeKeeper
from git_worktree_keeper.exceptions import WorktreeKeeperError
from git_worktree_keeper.logging_config import setup_logging
from git_worktree_keeper.services.display_service import DisplayService

console = Console()
# Paths and notes go to stdout so `cd "$(wt cd 3)"` works; everything else to stderr
err_console = Console(stderr=True)


@contextmanager
def _progress(enabled: bool) -> Iterator[Optional[ProgressCallback]]:
    """Yield an on_progress callback that drives a Rich progress bar."""
    if not enabled:
        yield None
        return

    with Progress(console=err_console, transient=True) as progress:
        task = progress.add_task("Fetching PR status...", total=None)

        def on_progress(completed: int, total: int) -> None:
            progress.update(task, completed=completed, total=total)

        yield on_progress


def _run(args, keeper: WorktreeKeeper, display: DisplayService) -> int:
    """Dispatch one parsed command. Returns the process exit code."""
    command = args.command

    if command in ("list", "ls"):
        with _progress(args.refresh_pr and err_console.is_terminal) as on_progress:
            rows = keeper.list_worktrees(
                refresh_pr=args.refresh_pr, force=args.force, sort_by=args.sort, on_progress=on_progress
            )
        display.display_worktree_table(rows)
        return 0

    if command == "show":
        context = keeper.context(args.worktree_id, args.repo, args.label)
        target, entry = keeper.show(context, args.target)
        display.display_target(target, entry)
        return 0

    if command == "cd":
        target = keeper.resolve(args.target, keeper.context(args.worktree_id, args.repo, args.label))
        print(target.path)
        return 0

    if command == "note":
        context = keeper.context(args.worktree_id, args.repo, args.label)
        if args.note_command == "get":
            _, note = keeper.get_note(context)
            if note:
                print(note)
            return 0
        note = " ".join(args.text) if args.note_command == "set" else None
        target = keeper.set_note(context, note)
        err_console.print(f"[green]Note {'set' if note else 'cleared'} for {target.describe()}[/green]")
        return 0

    if command == "exec":
        results = keeper.exec_in(args.command_args, tokens=args.targets, ids=args.ids)
        failed = [path for path, code in results.items() if code != 0]
        for path in failed:
            err_console.print(f"[red]Command failed in {path} (exit {results[path]})[/red]")
        return 1 if failed else 0

    if command in ("remove", "rm"):
        target = keeper.remove(args.target, force=args.force)
        err_console.print(f"[green]Removed {target.describe()}[/green]")
        return 0

    if command == "prune":
        with _progress(args.refresh_pr and err_console.is_terminal) as on_progress:
            result = keeper.prune(
                ids=args.ids,
                force=args.force,
                dry_run=args.dry_run,
                refresh_pr=args.refresh_pr,
                on_progress=on_progress,
            )
        display.display_prune_result(result)
        return 1 if result.failed or (args.ids and result.skipped) else 0

    if command == "pr":
        with _progress(err_console.is_terminal) as on_progress:
            result = keeper.refresh_prs(force=args.force, on_progress=on_progress)
        display.display_refresh_result(result)
        return 0

    if command == "cache":
        path_to_id = keeper.reset()
        err_console.print(f"[green]Registry reset, {len(path_to_id)} worktrees renumbered[/green]")
        return 0

    if command == "label":
        repo = keeper.label(args.label, repo=args.repo, remove=args.label_command == "remove")
        display.display_repo_labels(repo)
        return 0

    err_console.print(f"[red]Unknown command: {command}[/red]")
    return 1


def main(argv=None):
    """Main entry point for the application."""
    debug = False
    try:
        parsed_args = parse_args(argv)
        debug = parsed_args.debug

        # Setup logging before creating WorktreeKeeper
        setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)

        config = load_config(
            parsed_args.config,
            worktree_dir=parsed_args.worktree_dir,
            repo_dir=parsed_args.repo_dir,
            verbose=parsed_args.verbose or None,
            debug=parsed_args.debug or None,
        )

        if parsed_args.debug:
            err_console.print("[yellow]Debug mode enabled[/yellow]")
            err_console.print("[yellow]Configuration:[/yellow]")
            for key, value in config.to_dict().items():
                if key == "github_token" and value:
                    value = "***"
                err_console.print(f"  {key}: {value}")

        keeper = WorktreeKeeper(config)
        display = DisplayService(console=console, verbose=parsed_args.verbose)
        return _run(parsed_args, keeper, display)
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 1
    except (WorktreeKeeperError, ValueError, FileNotFoundError) as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        if debug:
            err_console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
