"""Display and formatting service for worktree information"""
from typing import List, Optional, TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from git_worktree_keeper.constants import COLUMNS, PR_STATE_COLORS, PR_STATE_OPEN, SYMBOL_DIRTY
from git_worktree_keeper.logging_config import get_logger
from git_worktree_keeper.models.registry import PRStatus, WorktreeEntry
from git_worktree_keeper.models.worktree import RepoInfo, Target

if TYPE_CHECKING:
    from git_worktree_keeper.core import PruneResult, WorktreeRow
    from git_worktree_keeper.services.pr_refresh import RefreshResult

logger = get_logger(__name__)


def format_pr(pr: Optional[PRStatus]) -> str:
    """Format cached PR status, with a link when the URL is known.

    Returns:
        "" when never fetched, "-" when the branch has no PR, else "#N STATE"
    """
    if pr is None or not pr.fetched:
        return ""
    if not pr.has_pr:
        return "[dim]-[/dim]"

    state = "DRAFT" if pr.is_draft and pr.state == PR_STATE_OPEN else pr.state
    text = f"#{pr.number} {state}"
    if pr.is_approved:
        text += " ✓"
    elif pr.comment_count:
        text += f" ({pr.comment_count})"

    color = PR_STATE_COLORS.get(pr.state)
    if pr.url:
        text = f"[link={pr.url}]{text}[/link]"
    return f"[{color}]{text}[/{color}]" if color else text


def format_branch(branch: str, is_dirty: bool = False) -> str:
    name = branch or "[dim](detached)[/dim]"
    return f"{name} {SYMBOL_DIRTY}" if is_dirty else name


class DisplayService:
    def __init__(self, console: Optional[Console] = None, verbose: bool = False):
        self.console = console or Console()
        self.verbose = verbose

    def display_worktree_table(self, rows: List["WorktreeRow"]) -> None:
        """Display a table of worktrees with their stable ids."""
        if not rows:
            self.console.print("[yellow]No worktrees found[/yellow]")
            return

        table = Table()
        for col in COLUMNS:
            if col.key == "path" and not self.verbose:
                continue
            table.add_column(col.label, max_width=col.width or None, overflow="ellipsis")

        for row in rows:
            cells = [
                str(row.id),
                row.worktree.repo_name,
                format_branch(row.worktree.branch, row.worktree.is_dirty),
                format_pr(row.entry.pr),
                row.entry.note or "",
            ]
            if self.verbose:
                cells.append(row.worktree.path)
            table.add_row(*cells)

        self.console.print(table)

    def display_target(self, target: Target, entry: Optional[WorktreeEntry]) -> None:
        """Show one resolved worktree or repository."""
        if target.id is not None:
            self.console.print(f"[bold]ID:[/bold]     {target.id}")
        self.console.print(f"[bold]Repo:[/bold]   {target.repo_name}")
        self.console.print(f"[bold]Branch:[/bold] {format_branch(target.branch)}")
        self.console.print(f"[bold]Path:[/bold]   {target.path}")
        if entry is None:
            return
        if entry.origin_url:
            self.console.print(f"[bold]Origin:[/bold] {entry.origin_url}")
        pr_text = format_pr(entry.pr)
        if pr_text:
            self.console.print(f"[bold]PR:[/bold]     {pr_text}")
        if entry.note:
            self.console.print(f"[bold]Note:[/bold]   {entry.note}")

    def display_refresh_result(self, result: "RefreshResult") -> None:
        parts = [f"{result.fetched} fetched"]
        if result.skipped:
            parts.append(f"{result.skipped} skipped")
        if result.failed:
            parts.append(f"[red]{result.failed} failed[/red]")
        if result.cancelled:
            parts.append(f"[yellow]{result.cancelled} cancelled[/yellow]")
        self.console.print(f"PR status: {', '.join(parts)}")

    def display_repo_labels(self, repo: RepoInfo) -> None:
        labels = ", ".join(repo.labels) if repo.labels else "[dim](none)[/dim]"
        self.console.print(f"{repo.name}: {labels}")

    def display_prune_result(self, result: "PruneResult") -> None:
        """Table of pruned worktrees (and skipped ones when verbose), then a summary."""
        rows = [(target, "[green]Merged PR[/green]") for target in result.removed]
        rows += [(target, f"[red]{escape(reason)}[/red]") for target, reason in result.failed]
        if self.verbose:
            rows += [(target, f"[dim]{reason}[/dim]") for target, reason in result.skipped]

        if rows:
            table = Table()
            table.add_column("ID", max_width=4)
            table.add_column("Repo")
            table.add_column("Branch")
            table.add_column("Reason")
            for target, reason in rows:
                table.add_row(str(target.id), target.repo_name, format_branch(target.branch), reason)
            self.console.print(table)

        verb = "Would remove" if result.dry_run else "Removed"
        summary = f"{verb} {len(result.removed)} worktree(s), skipped {len(result.skipped)}"
        if result.failed:
            summary += f", [red]{len(result.failed)} failed[/red]"
        self.console.print(summary)
