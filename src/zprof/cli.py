"""zprof CLI entry point."""

import sys
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from zprof import __version__, cli_logger, exit_codes
from zprof.config import load_config
from zprof.edit_session import (
    EditDecision,
    RollbackReason,
    SessionCommitted,
    SessionPreserved,
    SessionRolledBack,
    run_edit_session,
    subprocess_editor,
)
from zprof.errors import ManifestError, ZprofError, handle_cli_error, report_error
from zprof.home import get_zprof_home, require_zprof_home
from zprof.init import init_zprof_home
from zprof.manifest import SUPPORTED_FRAMEWORKS, load_and_validate
from zprof.profile import (
    create_profile,
    current_profile,
    delete_profile,
    import_profile,
    is_diverged,
    list_profiles,
    regenerate_profile,
    use_profile,
)

app = typer.Typer(
    name="zprof",
    help="zprof - Switchable zsh profiles generated from a declarative manifest.",
    no_args_is_help=True,
)

console = Console()

DIVERGED_WARNING = (
    "Profile '{name}' has an invalid manifest that was kept after a cancelled edit. "
    "Its shell files still reflect the previous manifest. Run 'zprof edit {name}' to fix it."
)

DECISIONS = {
    "r": EditDecision.RETRY,
    "retry": EditDecision.RETRY,
    "s": EditDecision.RESTORE,
    "restore": EditDecision.RESTORE,
    "c": EditDecision.CANCEL,
    "cancel": EditDecision.CANCEL,
    "": EditDecision.CANCEL,
}


def _stdin_prompt(text: str) -> str:
    """Prompt user for input via stdin."""
    return input(text)


def require_home() -> Path:
    """Get the zprof home and verify it is initialized.

    Raises:
        typer.Exit: With HOME_NOT_INITIALIZED if the home is not initialized.
    """
    try:
        return require_zprof_home()
    except ZprofError as e:
        _fail(e)


def _fail(error: ZprofError) -> NoReturn:
    """Report a zprof error and exit with its code."""
    report_error(error)
    raise typer.Exit(error.exit_code) from error


def _warn_diverged(name: str) -> None:
    cli_logger.warning(DIVERGED_WARNING.format(name=escape(name)))


def _decision_prompt(error: ManifestError) -> EditDecision:
    """Show what is wrong with the edited manifest and ask what to do."""
    cli_logger.error(escape(error.message))
    for line in error.details():
        if line != error.message:
            cli_logger.dim(f"  • {escape(line)}")

    while True:
        try:
            answer = _stdin_prompt("[R]etry editing, re[S]tore the original, or [C]ancel? [c]: ")
        except EOFError:
            return EditDecision.CANCEL
        decision = DECISIONS.get(answer.strip().lower())
        if decision is not None:
            return decision
        cli_logger.warning(f"Unrecognized choice: {answer.strip()!r}")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"zprof {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show zprof version and exit.",
    ),
) -> None:
    """zprof - Switchable zsh profiles generated from a declarative manifest."""


@app.command()
def init(
    directory: Annotated[
        Path | None,
        typer.Argument(
            help="Target directory to initialize. Defaults to ZPROF_HOME or ~/.zsh-profiles/",
        ),
    ] = None,
) -> None:
    """Initialize the zprof home directory.

    Creates the directory structure, the shared history file and an initial
    config. If already initialized, this is a no-op.
    """
    target = directory if directory else get_zprof_home()

    result = init_zprof_home(target)

    if result.is_valid:
        cli_logger.success(f"zprof home initialized at {target}")
        raise typer.Exit(exit_codes.SUCCESS)
    else:
        cli_logger.error(f"Failed to initialize zprof home at {target}")
        for error in result.errors:
            cli_logger.dim(f"  • {error}")
        raise typer.Exit(exit_codes.GENERAL_ERROR)


@app.command()
def create(
    name: Annotated[str, typer.Argument(help="Name of the new profile.")],
    framework: Annotated[
        str | None,
        typer.Option(
            "--framework",
            "-f",
            help=f"Framework: {', '.join(SUPPORTED_FRAMEWORKS)}. Defaults to default_framework from config.",
        ),
    ] = None,
    theme: Annotated[str | None, typer.Option("--theme", "-t", help="Theme name.")] = None,
    plugins: Annotated[
        list[str] | None,
        typer.Option("--plugin", "-p", help="Plugin to enable. Repeat for several."),
    ] = None,
    env: Annotated[
        list[str] | None,
        typer.Option("--env", "-e", help="Environment variable as KEY=VALUE. Repeat for several."),
    ] = None,
) -> None:
    """Create a new profile and generate its shell files."""
    zprof_home = require_home()

    env_vars: dict[str, str] = {}
    for item in env or []:
        key, sep, value = item.partition("=")
        if not sep:
            cli_logger.error(f"Invalid --env value {item!r}; expected KEY=VALUE")
            raise typer.Exit(exit_codes.INVALID_ARGS)
        env_vars[key] = value

    try:
        chosen = framework or load_config(zprof_home).default_framework
        if chosen is None:
            cli_logger.error("No framework given and no default_framework configured")
            cli_logger.info(f"  Pass --framework with one of: {', '.join(SUPPORTED_FRAMEWORKS)}")
            raise typer.Exit(exit_codes.INVALID_ARGS)

        manifest = create_profile(
            name,
            chosen,
            theme=theme,
            plugins=plugins or [],
            env=env_vars,
            home=zprof_home,
        )
    except ZprofError as e:
        _fail(e)

    cli_logger.success(f"Created profile '{escape(name)}' ({manifest.framework.value})")
    cli_logger.info(f"  Run [bold]zprof use {escape(name)}[/bold] to activate it.")


@app.command("list")
def list_cmd() -> None:
    """List all profiles."""
    zprof_home = require_home()

    try:
        profiles = list_profiles(zprof_home)
    except ZprofError as e:
        _fail(e)

    if not profiles:
        cli_logger.info("No profiles yet. Run [bold]zprof create <name>[/bold] to create one.")
        raise typer.Exit(exit_codes.SUCCESS)

    table = Table(show_header=True, header_style="bold")
    table.add_column("NAME", style="cyan")
    table.add_column("FRAMEWORK")
    table.add_column("STATUS")

    for profile in profiles:
        if profile.problem is not None:
            status = f"[red]broken[/red] ({escape(profile.problem)})"
        elif profile.diverged:
            status = "[yellow]diverged[/yellow]"
        else:
            status = "[green]ok[/green]"
        name = escape(profile.name)
        if profile.is_active:
            name = f"{name} [green](active)[/green]"
        table.add_row(name, profile.framework or "-", status)

    console.print(table)


@app.command()
def show(
    name: Annotated[str, typer.Argument(help="Profile to show.")],
) -> None:
    """Show a profile's manifest."""
    zprof_home = require_home()

    try:
        manifest = load_and_validate(name, home=zprof_home)
    except ZprofError as e:
        if isinstance(e, ManifestError) and is_diverged(name, zprof_home):
            _warn_diverged(name)
        _fail(e)

    console.print(f"[bold]{escape(manifest.name)}[/bold]")
    console.print(f"  Framework: {manifest.framework.value}")
    console.print(f"  Theme:     {escape(manifest.theme or '-')}")
    console.print(f"  Plugins:   {escape(', '.join(manifest.enabled_plugins) or '-')}")
    if manifest.env:
        console.print("  Env:")
        for key, value in manifest.env.items():
            console.print(f"    {key}={value}", markup=False)
    console.print(f"  Created:   {manifest.profile.created.isoformat()}")
    console.print(f"  Modified:  {manifest.profile.modified.isoformat()}")

    if is_diverged(name, zprof_home):
        _warn_diverged(name)


@app.command()
def edit(
    name: Annotated[str, typer.Argument(help="Profile to edit.")],
    editor: Annotated[
        str | None,
        typer.Option("--editor", help="Editor command. Defaults to $EDITOR, $VISUAL, then vim."),
    ] = None,
) -> None:
    """Edit a profile's manifest and regenerate its shell files.

    An invalid manifest is never applied: you can retry, restore the
    original, or keep the invalid file and fix it later.
    """
    zprof_home = require_home()

    try:
        outcome = run_edit_session(
            name,
            subprocess_editor(editor),
            _decision_prompt,
            home=zprof_home,
        )
    except ZprofError as e:
        _fail(e)

    match outcome:
        case SessionCommitted(written=written):
            cli_logger.success(f"Updated profile '{escape(name)}'")
            for path in written:
                cli_logger.dim(f"  • {escape(str(path))}")
            raise typer.Exit(exit_codes.SUCCESS)

        case SessionRolledBack(reason=RollbackReason.EDITOR_FAILED, detail=detail):
            cli_logger.error(f"Edit aborted: {escape(detail or '')}")
            cli_logger.info("  The original manifest was restored.")
            raise typer.Exit(exit_codes.GENERAL_ERROR)

        case SessionRolledBack():
            cli_logger.success(f"Restored the original manifest for '{escape(name)}'")
            raise typer.Exit(exit_codes.SUCCESS)

        case SessionPreserved(backup_path=backup_path) as preserved:
            cli_logger.warning(preserved.warning)
            cli_logger.recovery(backup_path)
            raise typer.Exit(exit_codes.MANIFEST_INVALID)


@app.command()
def regenerate(
    name: Annotated[str, typer.Argument(help="Profile to regenerate.")],
) -> None:
    """Regenerate a profile's shell files from its manifest."""
    zprof_home = require_home()

    try:
        written = regenerate_profile(name, home=zprof_home)
    except ZprofError as e:
        _fail(e)

    cli_logger.success(f"Regenerated shell files for '{escape(name)}'")
    for path in written:
        cli_logger.dim(f"  • {escape(str(path))}")


@app.command()
def delete(
    name: Annotated[str, typer.Argument(help="Profile to delete.")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip the confirmation prompt."),
    ] = False,
) -> None:
    """Delete a profile. A backup of it is kept."""
    zprof_home = require_home()

    if not yes:
        confirm = typer.confirm(f"Delete profile '{name}'?", default=False)
        if not confirm:
            cli_logger.info("Delete cancelled")
            raise typer.Exit(exit_codes.SUCCESS)

    try:
        backup = delete_profile(name, home=zprof_home)
    except ZprofError as e:
        _fail(e)

    cli_logger.success(f"Deleted profile '{escape(name)}'")
    cli_logger.recovery(backup)


@app.command("import")
def import_cmd(
    source: Annotated[
        Path,
        typer.Argument(help="Extracted profile directory containing profile.toml."),
    ],
    name: Annotated[
        str | None,
        typer.Option("--name", help="Import under a different profile name."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite an existing profile of the same name."),
    ] = False,
) -> None:
    """Import a profile from a directory and regenerate its shell files."""
    zprof_home = require_home()

    try:
        result = import_profile(source, name=name, force=force, home=zprof_home)
    except ZprofError as e:
        _fail(e)

    verb = "Replaced" if result.replaced else "Imported"
    cli_logger.success(f"{verb} profile '{escape(result.name)}' ({result.manifest.framework.value})")
    if result.backup_path is not None:
        cli_logger.recovery(result.backup_path)


@app.command()
def use(
    name: Annotated[str, typer.Argument(help="Profile to activate.")],
) -> None:
    """Make a profile the active one."""
    zprof_home = require_home()

    try:
        result = use_profile(name, home=zprof_home)
    except ZprofError as e:
        _fail(e)

    cli_logger.success(f"Active profile is now '{escape(name)}'")
    cli_logger.info(f"  Start a new shell with: [bold]ZDOTDIR={escape(str(result.profile_dir))} exec zsh[/bold]")
    if result.diverged:
        _warn_diverged(name)


@app.command()
def current() -> None:
    """Show the active profile."""
    zprof_home = require_home()
    active_name = None

    try:
        active_name = load_config(zprof_home).active_profile
        active = current_profile(zprof_home)
    except ZprofError as e:
        if isinstance(e, ManifestError) and active_name and is_diverged(active_name, zprof_home):
            _warn_diverged(active_name)
        _fail(e)

    if active is None:
        cli_logger.info("No active profile. Use [bold]zprof use <name>[/bold] to activate a profile.")
        raise typer.Exit(exit_codes.SUCCESS)

    console.print(f"Current profile: [bold]{escape(active.name)}[/bold]")
    console.print(f"  Framework: {active.manifest.framework.value}")
    console.print(f"  Created:   {active.manifest.profile.created.strftime('%b %d, %Y')}")

    if active.diverged:
        _warn_diverged(active.name)


def main_cli() -> None:
    """CLI entry point with top-level exception handling.

    Wraps the Typer app to catch any unhandled exceptions and format them
    as clean error messages instead of raw tracebacks.
    """
    cli_logger.setup_logging()
    try:
        app()
    except Exception as e:
        sys.exit(handle_cli_error(e))


if __name__ == "__main__":
    main_cli()
