"""Typer CLI for migrating local mailboxes through the Email Migration API."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
from rich.console import Console

from apps_mail_migration.config.settings import AppSettings, ServiceSettings, load_settings
from apps_mail_migration.migration_api.auth import AuthError, ClientLogin, LoginCredentials
from apps_mail_migration.migration_api.client import MigrationClient
from apps_mail_migration.models.types import (
    Placement,
    RunOptions,
    SourceType,
    collect_labels,
    collect_properties,
)
from apps_mail_migration.pipeline.orchestrator import UploadOrchestrator
from apps_mail_migration.sources.models import mail_source_for
from apps_mail_migration.sources.normalize import MessageNormalizer
from apps_mail_migration.sources.traversal import iter_candidates
from apps_mail_migration.transport.connection import Transport, TransportError
from apps_mail_migration.utils.logging import configure_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Upload local mbox, maildir and Apple Mail messages to a hosted mailbox.",
)

_PLACEMENTS_KEY = "placements"


def _record_placement(ctx: typer.Context, param: typer.CallbackParam, value: bool) -> bool:
    """Remember placement flags in command-line order (last one wins)."""
    if value and param.name:
        ctx.meta.setdefault(_PLACEMENTS_KEY, []).append(Placement(param.name))
    return value


def open_transport(settings: ServiceSettings) -> Transport:
    """Open the persistent connection to the migration host.

    Args:
        settings: Service endpoint settings.

    Returns:
        Connected, not yet authenticated Transport.
    """
    return Transport(
        base_url=settings.migration_base_url,
        user_agent=settings.user_agent,
        max_redirects=settings.max_redirects,
        timeout_seconds=settings.timeout_seconds,
        verify_tls=settings.verify_tls,
        ca_file=settings.ca_file,
        debug=settings.debug_protocol,
    )


def login(transport: Transport, settings: ServiceSettings, *, email: str, password: str) -> None:
    """Authenticate the transport or exit with a configuration error.

    Args:
        transport: Transport to install the token into.
        settings: Service endpoint settings.
        email: Administrator (or end-user) email address.
        password: Account password.
    """
    credentials = LoginCredentials(
        email=email,
        password=password,
        account_type=settings.account_type,
        service=settings.service,
    )
    try:
        ClientLogin(transport=transport, login_url=settings.login_url).login(credentials)
    except AuthError as exc:
        logger.error("Authentication failed: %s", exc)
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from None
    except TransportError as exc:
        logger.error("Login request failed: %s", exc)
        typer.echo(f"Login request failed: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("migrate")
def migrate_cmd(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, help="Source folder or mbox file."),
    *,
    domain: str = typer.Option(..., "--domain", "-d", help="Hosted domain, e.g. example.com."),
    admin_email: str = typer.Option(
        ...,
        "--admin-email",
        "-e",
        help="Email address used for authentication.",
    ),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        envvar="MAILMIG_PASSWORD",
        help="Password used for authentication.",
    ),
    user: str = typer.Option(..., "--user", "-u", help="User name (without domain) to migrate to."),
    source_type: SourceType = typer.Option(
        SourceType.apple,
        "--type",
        "-t",
        case_sensitive=False,
        help="Source layout: apple (.emlx in Messages/), maildir, mbox or file.",
    ),
    sender: str | None = typer.Option(
        None,
        "--from",
        "-f",
        help="From address for messages that have none (default <user>@<domain>).",
    ),
    label: list[str] | None = typer.Option(
        None,
        "--label",
        "-l",
        help="Extra label to apply (repeatable).",
    ),
    inbox: bool = typer.Option(
        False,
        "--inbox",
        "-i",
        callback=_record_placement,
        help="Migrate into the Inbox.",
    ),
    sent: bool = typer.Option(
        False,
        "--sent",
        "-s",
        callback=_record_placement,
        help="Migrate as Sent Mail.",
    ),
    draft: bool = typer.Option(
        False,
        "--draft",
        "-a",
        callback=_record_placement,
        help="Migrate as Drafts.",
    ),
    trash: bool = typer.Option(
        False,
        "--trash",
        "-r",
        callback=_record_placement,
        help="Migrate into Trash.",
    ),
    starred: bool = typer.Option(False, "--starred", "-x", help="Star migrated messages."),
    unread: bool = typer.Option(False, "--unread", "-n", help="Mark migrated messages unread."),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        exists=True,
        dir_okay=False,
        help="Optional path to a .env file (in addition to environment variables).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Read and repair messages but do not log in or upload anything.",
    ),
    report: Path | None = typer.Option(
        None,
        "--report",
        dir_okay=False,
        help="Write a JSON summary of the run to this path.",
    ),
) -> None:
    """Upload every message found in SOURCE to the target mailbox."""
    settings: AppSettings = load_settings(env_file=env_file)
    configure_logging(settings=settings.logging, debug_protocol=settings.service.debug_protocol)

    try:
        options = RunOptions(
            domain=domain,
            admin_email=admin_email,
            user=user,
            source=source,
            source_type=source_type,
            sender=sender or f"{user}@{domain}",
            properties=collect_properties(
                placements=list(ctx.meta.get(_PLACEMENTS_KEY, [])),
                starred=starred,
                unread=unread,
            ),
            labels=collect_labels(settings.upload.default_label, label),
            dry_run=dry_run,
        )
        mail_source = mail_source_for(options.source_type, options.source)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from None

    console = Console(stderr=True)
    console.print(
        f"[bold blue]Migration starting[/bold blue] ({options.source_type.value}: "
        f"{options.source}, dry_run={options.dry_run})",
    )
    console.print(f"  [dim]Target:[/dim] {options.target}")
    console.print(f"  [dim]Properties:[/dim] {', '.join(options.properties) or 'none'}")
    console.print(f"  [dim]Labels:[/dim] {', '.join(options.labels)}")

    normalizer = MessageNormalizer(
        default_sender=options.sender,
        default_recipient=settings.upload.default_recipient,
        placeholder_domain=settings.upload.placeholder_domain,
    )

    transport = None if options.dry_run else open_transport(settings.service)
    try:
        uploader: MigrationClient | None = None
        if transport is not None:
            login(transport, settings.service, email=options.admin_email, password=password)
            uploader = MigrationClient(
                transport=transport,
                base_url=settings.service.migration_base_url,
                domain=options.domain,
                username=options.user,
            )
            console.print(f"[green]✔[/green] Authenticated as {options.admin_email}")

        orchestrator = UploadOrchestrator(
            settings=settings.upload,
            normalizer=normalizer,
            uploader=uploader,
            properties=options.properties,
            labels=options.labels,
            console=console,
        )
        tally = orchestrator.run(iter_candidates(mail_source))
    except KeyboardInterrupt:
        raise typer.Exit(code=130) from None
    finally:
        if transport is not None:
            transport.close()

    verb = "would be uploaded" if options.dry_run else "uploaded"
    console.print("\n[bold green]Migration finished![/bold green]")
    console.print(f"  [dim]{verb}:[/dim] [bold]{tally.uploaded}[/bold]")
    console.print(f"  [dim]rejected:[/dim] [bold]{tally.rejected}[/bold]")
    console.print(f"  [dim]skipped:[/dim] [bold]{tally.skipped}[/bold]")
    console.print(f"  [dim]retries:[/dim] [bold]{tally.retries}[/bold]")
    typer.echo(f"{tally.uploaded} messages {verb}")

    if report is not None:
        summary = tally.to_report(source=str(options.source), dry_run=options.dry_run)
        report.parent.mkdir(parents=True, exist_ok=True)
        report.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
        console.print(f"Wrote {report}")


@app.command("login")
def login_cmd(
    *,
    admin_email: str = typer.Option(..., "--admin-email", "-e", help="Email address to log in as."),
    password: str = typer.Option(
        ...,
        "--password",
        "-p",
        envvar="MAILMIG_PASSWORD",
        help="Password used for authentication.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        exists=True,
        dir_okay=False,
        help="Optional path to a .env file (in addition to environment variables).",
    ),
) -> None:
    """Check that the credentials yield an authorization token."""
    settings = load_settings(env_file=env_file)
    configure_logging(settings=settings.logging, debug_protocol=settings.service.debug_protocol)

    with open_transport(settings.service) as transport:
        login(transport, settings.service, email=admin_email, password=password)
    typer.echo(f"Login OK for: {admin_email}")
