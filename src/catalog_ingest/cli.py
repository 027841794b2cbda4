"""CLI for catalog ingest.

Commands:
    init-db                         - Create database tables
    import-materials <file>         - Resolve and import a material batch
    import-manufacturers <file>     - Resolve and import a manufacturer batch
    queue list|approve|reject|approve-all|retry
                                    - Work the approval queue
    submission create|start|ready|reject|show
                                    - Drive a submission through its lifecycle
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from catalog_ingest.db import async_session_factory, init_db
from catalog_ingest.errors import CommitFailureError, IngestError
from catalog_ingest.intake import BatchParseResult, parse_manufacturer_batch, parse_material_batch
from catalog_ingest.matching import CatalogMatcher, MatchCandidate
from catalog_ingest.models import DecisionAction, EntityKind, PendingStatus
from catalog_ingest.resolution import DirectCommitter, ResolutionDecision, ResolutionSession
from catalog_ingest.services import ApprovalQueue, SubmissionLedger

app = typer.Typer(
    name="catalog-ingest",
    help="Duplicate-aware ingestion of materials and manufacturers into a studio catalog",
    no_args_is_help=True,
)
queue_app = typer.Typer(help="Review pending entities", no_args_is_help=True)
submission_app = typer.Typer(help="Submission lifecycle", no_args_is_help=True)
app.add_typer(queue_app, name="queue")
app.add_typer(submission_app, name="submission")

console = Console()

StudioOption = Annotated[
    UUID, typer.Option("--studio", "-s", envvar="CATALOG_STUDIO_ID", help="Studio (tenant) id")
]
ReviewerOption = Annotated[
    str, typer.Option("--reviewer", "-r", envvar="CATALOG_USER", help="Reviewer / user id")
]

BAND_STYLES = {
    "very_high": "bold green",
    "high": "green",
    "medium": "yellow",
    "low": "dim",
}


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def fail(message: str) -> typer.Exit:
    console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(1)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("init-db")
def init_db_command():
    """Create all tables."""
    async def _init():
        await init_db()
        console.print("[green]Database initialized.[/green]")

    run_async(_init())


# ── Imports ─────────────────────────────────────────────────────────────────


def render_matches(matches: list[MatchCandidate]) -> Table:
    table = Table(title="Possible duplicates")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Score", justify="right")
    table.add_column("Band")
    table.add_column("Details")
    table.add_column("Projects")
    for position, match in enumerate(matches, start=1):
        band = match.band.value
        details = ", ".join(v for v in (match.category, match.reference_sku) if v)
        if match.exact_match:
            details = f"{details} [bold](exact)[/bold]" if details else "[bold]exact[/bold]"
        projects = (
            ", ".join(p.name for p in match.projects) if match.projects else "-"
        )
        table.add_row(
            str(position),
            match.name,
            f"{match.score:.2f}",
            f"[{BAND_STYLES[band]}]{band.replace('_', ' ')}[/{BAND_STYLES[band]}]",
            details or "-",
            projects,
        )
    return table


async def resolve_interactively(
    session: ResolutionSession, matcher: CatalogMatcher
) -> list[ResolutionDecision] | None:
    """Walk the batch with prompts. Returns None when the user cancels."""
    allow_replace = session.kind == EntityKind.MANUFACTURER
    while (step := await session.current()) is not None:
        candidate = step.candidate
        console.print(
            Panel(
                "\n".join(
                    f"[bold]{key}:[/bold] {value}"
                    for key, value in candidate.model_dump(exclude_none=True).items()
                ),
                title=f"Candidate {step.index + 1}/{step.total}",
            )
        )
        if step.matches:
            enriched = await matcher.attach_projects(session.studio_id, step.matches)
            console.print(render_matches(enriched))
        else:
            console.print("[dim]No existing record looks like this one.[/dim]")

        hint = "c=create, <n>=link to match n"
        if allow_replace:
            hint += ", r<n>=replace match n"
        hint += ", b=back, q=cancel"
        default = "1" if step.suggested_action == DecisionAction.LINK else "c"
        answer = typer.prompt(hint, default=default).strip().lower()

        if answer == "q":
            session.cancel()
            return None
        if answer == "b":
            if not session.back():
                console.print("[yellow]Already at the first candidate.[/yellow]")
            continue
        if answer == "c":
            await session.decide(DecisionAction.CREATE)
            continue

        action = DecisionAction.LINK
        if allow_replace and answer.startswith("r"):
            action = DecisionAction.REPLACE
            answer = answer[1:]
        if not answer.isdigit() or not 1 <= int(answer) <= len(step.matches):
            console.print(f"[yellow]Unrecognized choice: {answer!r}[/yellow]")
            continue
        await session.decide(action, step.matches[int(answer) - 1].existing_id)

    return session.complete()


def report_skipped(parsed: BatchParseResult) -> None:
    if not parsed.skipped:
        return
    console.print(f"[yellow]Skipped {parsed.skipped} malformed record(s):[/yellow]")
    for record in parsed.skipped_records:
        console.print(f"  • {record.reason}")


async def run_import(
    path: Path,
    *,
    kind: EntityKind,
    studio_id: UUID,
    user: str,
    project_id: UUID | None,
    submission_id: UUID | None,
    client_id: UUID | None,
    auto: bool,
    review: bool,
    threshold: float | None,
) -> None:
    parser = parse_material_batch if kind == EntityKind.MATERIAL else parse_manufacturer_batch
    try:
        parsed = parser(path.read_text(encoding="utf-8"))
    except IngestError as exc:
        raise fail(str(exc)) from exc
    report_skipped(parsed)
    if not parsed.candidates:
        raise fail("No valid records to import")

    async with async_session_factory() as db:
        matcher = CatalogMatcher(db)
        session = ResolutionSession(
            matcher,
            studio_id,
            parsed.candidates,
            kind=kind,
            submission_id=submission_id,
            project_id=project_id,
            client_id=client_id,
            threshold=threshold,
        )

        try:
            if auto:
                await session.auto_resolve()
                decisions: list[ResolutionDecision] | None = session.complete()
            else:
                precheck = await matcher.precheck(studio_id, parsed.candidates)
                if not precheck.has_duplicates:
                    console.print("[green]No possible duplicates found; creating all records.[/green]")
                    await session.auto_resolve()
                    decisions = session.complete()
                else:
                    decisions = await resolve_interactively(session, matcher)
            if decisions is None:
                console.print("[yellow]Import cancelled; nothing was written.[/yellow]")
                return

            if review:
                queued = await ApprovalQueue(db).submit_decisions(
                    studio_id,
                    decisions,
                    submission_id=submission_id,
                    project_id=project_id,
                    client_id=client_id,
                    created_by=user,
                )
                await db.commit()
                console.print(
                    f"[bold]Summary:[/bold] {len(queued.pending)} queued for review, "
                    f"{queued.linked} linked ({queued.already_linked} already on the project)"
                )
            else:
                summary = await DirectCommitter(db).commit(
                    studio_id, decisions, project_id=project_id
                )
                if submission_id is not None:
                    await SubmissionLedger(db).on_child_resolved(studio_id, submission_id)
                await db.commit()
                console.print(
                    f"[bold]Summary:[/bold] {len(summary.created)} created, {summary.linked} linked "
                    f"({summary.already_linked} already on the project)"
                )
        except IngestError as exc:
            await db.rollback()
            raise fail(str(exc)) from exc


ImportFile = Annotated[
    Path, typer.Argument(exists=True, dir_okay=False, help="JSON file (flat or keyed by manufacturer)")
]
AutoOption = Annotated[
    bool, typer.Option("--auto", help="Accept every default suggestion without prompting")
]
ReviewOption = Annotated[
    bool,
    typer.Option("--review/--direct", help="Queue new records for approval, or commit directly"),
]
SubmissionOption = Annotated[
    UUID | None, typer.Option("--submission", help="Parent submission (PDF-derived batch)")
]
ClientOption = Annotated[UUID | None, typer.Option("--client", help="Client id for provenance")]
ThresholdOption = Annotated[
    float | None, typer.Option("--threshold", help="Minimum match score to show")
]


@app.command("import-materials")
def import_materials(
    path: ImportFile,
    studio: StudioOption,
    user: ReviewerOption = "cli",
    project: Annotated[
        UUID | None, typer.Option("--project", "-p", help="Project to associate materials with")
    ] = None,
    submission: SubmissionOption = None,
    client: ClientOption = None,
    auto: AutoOption = False,
    review: ReviewOption = True,
    threshold: ThresholdOption = None,
):
    """Import a batch of materials."""
    run_async(
        run_import(
            path,
            kind=EntityKind.MATERIAL,
            studio_id=studio,
            user=user,
            project_id=project,
            submission_id=submission,
            client_id=client,
            auto=auto,
            review=review,
            threshold=threshold,
        )
    )


@app.command("import-manufacturers")
def import_manufacturers(
    path: ImportFile,
    studio: StudioOption,
    user: ReviewerOption = "cli",
    submission: SubmissionOption = None,
    client: ClientOption = None,
    auto: AutoOption = False,
    review: ReviewOption = True,
    threshold: ThresholdOption = None,
):
    """Import a batch of manufacturers."""
    run_async(
        run_import(
            path,
            kind=EntityKind.MANUFACTURER,
            studio_id=studio,
            user=user,
            project_id=None,
            submission_id=submission,
            client_id=client,
            auto=auto,
            review=review,
            threshold=threshold,
        )
    )


# ── Approval queue ──────────────────────────────────────────────────────────


@queue_app.command("list")
def queue_list(
    studio: StudioOption,
    status: Annotated[
        PendingStatus, typer.Option("--status", help="Entry status")
    ] = PendingStatus.PENDING,
    submission: SubmissionOption = None,
    limit: Annotated[int, typer.Option("--limit", "-n")] = 50,
):
    """List queue entries, oldest first."""
    async def _list():
        async with async_session_factory() as db:
            entries = await ApprovalQueue(db).list_entries(
                studio, status, submission_id=submission, limit=limit
            )

        if not entries:
            console.print(f"[yellow]No {status.value} entries.[/yellow]")
            return
        table = Table(title=f"Queue ({status.value})")
        table.add_column("ID")
        table.add_column("Kind")
        table.add_column("Name")
        table.add_column("Category")
        table.add_column("Created by")
        table.add_column("Created")
        for entry in entries:
            table.add_row(
                str(entry.pending_id),
                entry.entity_kind.value,
                entry.name,
                entry.category or "-",
                entry.created_by or "-",
                entry.created_at.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)

    run_async(_list())


@queue_app.command("approve")
def queue_approve(
    pending_id: Annotated[UUID, typer.Argument(help="Pending entity id")],
    studio: StudioOption,
    reviewer: ReviewerOption = "cli",
):
    """Approve one entry and commit it to the catalog."""
    async def _approve():
        async with async_session_factory() as db:
            try:
                result = await ApprovalQueue(db).approve(studio, pending_id, reviewer)
            except CommitFailureError as exc:
                # Keep the approval; retry finishes the commit
                await db.commit()
                raise fail(f"{exc}. Run 'queue retry {pending_id}'.") from exc
            except IngestError as exc:
                raise fail(str(exc)) from exc
            await db.commit()

        console.print(f"[green]Approved[/green] → {result.kind.value} {result.entity_id}")
        if result.association_id:
            state = "created" if result.association_created else "already present"
            console.print(f"  Project association {state}")
        if result.submission_completed:
            console.print("  [green]Submission completed.[/green]")

    run_async(_approve())


@queue_app.command("reject")
def queue_reject(
    pending_id: Annotated[UUID, typer.Argument(help="Pending entity id")],
    studio: StudioOption,
    reviewer: ReviewerOption = "cli",
    reason: Annotated[str | None, typer.Option("--reason", help="Why it was rejected")] = None,
):
    """Reject one entry."""
    async def _reject():
        async with async_session_factory() as db:
            try:
                result = await ApprovalQueue(db).reject(studio, pending_id, reviewer, reason)
            except IngestError as exc:
                raise fail(str(exc)) from exc
            await db.commit()

        console.print(f"[green]Rejected[/green] {pending_id}")
        if result.submission_completed:
            console.print("  [green]Submission completed.[/green]")

    run_async(_reject())


@queue_app.command("approve-all")
def queue_approve_all(
    studio: StudioOption,
    reviewer: ReviewerOption = "cli",
    submission: SubmissionOption = None,
):
    """Approve every pending entry (each committed independently)."""
    async def _approve_all():
        async with async_session_factory() as db:
            bulk = await ApprovalQueue(db).approve_all(studio, reviewer, submission_id=submission)
            await db.commit()

        console.print(
            f"[bold]Summary:[/bold] {len(bulk.approved)} approved, "
            f"{len(bulk.skipped)} already resolved, {len(bulk.failed)} failed"
        )
        for pending_id in bulk.failed:
            console.print(f"  [red]•[/red] {pending_id} (run 'queue retry')")

    run_async(_approve_all())


@queue_app.command("retry")
def queue_retry(
    studio: StudioOption,
    pending_id: Annotated[
        UUID | None, typer.Argument(help="Entry to re-commit (default: all unfinished)")
    ] = None,
):
    """Finish commits of approved entries that failed to commit."""
    async def _retry():
        async with async_session_factory() as db:
            queue = ApprovalQueue(db)
            if pending_id is not None:
                targets = [pending_id]
            else:
                targets = [entry.pending_id for entry in await queue.list_uncommitted(studio)]
            done = 0
            for target in targets:
                try:
                    await queue.retry_commit(studio, target)
                    done += 1
                except IngestError as exc:
                    console.print(f"[red]•[/red] {target}: {exc}")
            await db.commit()
        console.print(f"[bold]Summary:[/bold] {done} of {len(targets)} committed")

    run_async(_retry())


# ── Submissions ─────────────────────────────────────────────────────────────


@submission_app.command("create")
def submission_create(
    file_name: Annotated[str, typer.Argument(help="Source document name")],
    studio: StudioOption,
    project: Annotated[UUID | None, typer.Option("--project", "-p")] = None,
    client: ClientOption = None,
    notes: Annotated[str | None, typer.Option("--notes")] = None,
):
    """Register a new submission."""
    async def _create():
        async with async_session_factory() as db:
            submission = await SubmissionLedger(db).create(
                studio, file_name, project_id=project, client_id=client, notes=notes
            )
            await db.commit()
        console.print(f"[green]Created submission[/green] {submission.submission_id}")

    run_async(_create())


def _transition_command(name: str, help_text: str):
    @submission_app.command(name, help=help_text)
    def _command(
        submission_id: Annotated[UUID, typer.Argument(help="Submission id")],
        studio: StudioOption,
        user: ReviewerOption = "cli",
        reason: Annotated[
            str | None, typer.Option("--reason", help="Rejection reason (reject only)")
        ] = None,
    ):
        async def _run():
            async with async_session_factory() as db:
                ledger = SubmissionLedger(db)
                try:
                    if name == "start":
                        submission = await ledger.start_processing(studio, submission_id, actor=user)
                    elif name == "ready":
                        submission = await ledger.mark_ready_for_review(
                            studio, submission_id, actor=user
                        )
                    else:
                        submission = await ledger.reject(
                            studio, submission_id, reason=reason, actor=user
                        )
                except IngestError as exc:
                    raise fail(str(exc)) from exc
                await db.commit()
            console.print(f"Submission {submission_id}: [bold]{submission.status.value}[/bold]")

        run_async(_run())

    return _command


_transition_command("start", "Mark a submission as processing.")
_transition_command("ready", "Mark a submission as ready for review.")
_transition_command("reject", "Reject a submission.")


@submission_app.command("show")
def submission_show(
    submission_id: Annotated[UUID, typer.Argument(help="Submission id")],
    studio: StudioOption,
):
    """Show a submission and its review progress."""
    async def _show():
        async with async_session_factory() as db:
            ledger = SubmissionLedger(db)
            try:
                submission = await ledger.get(studio, submission_id)
                progress = await ledger.progress(studio, submission_id)
            except IngestError as exc:
                raise fail(str(exc)) from exc

        lines = [
            f"[bold]ID:[/bold] {submission.submission_id}",
            f"[bold]File:[/bold] {submission.file_name}",
            f"[bold]Status:[/bold] {submission.status.value}",
            f"[bold]Children:[/bold] {progress.total} total, {progress.pending} pending, "
            f"{progress.approved} approved, {progress.rejected} rejected",
        ]
        if submission.rejection_reason:
            lines.append(f"[bold]Rejection reason:[/bold] {submission.rejection_reason}")
        lines.append(f"[bold]Created:[/bold] {submission.created_at}")
        console.print(Panel("\n".join(lines), title="Submission"))

        transitions = (submission.details or {}).get("transitions", [])
        if transitions:
            table = Table(title="History")
            table.add_column("From")
            table.add_column("To")
            table.add_column("By")
            table.add_column("At")
            for entry in transitions:
                table.add_row(entry["from"], entry["to"], entry.get("by") or "-", entry["at"])
            console.print(table)

    run_async(_show())


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
