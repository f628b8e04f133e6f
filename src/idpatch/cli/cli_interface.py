"""
IDPatch CLI Interface
Command-line interface for patching, inspecting and restoring the target application
"""

import click
import sys
from pathlib import Path
from typing import List, Optional

from colorama import Fore, Style, just_fix_windows_console

from idpatch.core.auto_update import AutoUpdateBlocker
from idpatch.core.config import Config, RunConfig, get_invoking_user
from idpatch.core.errors import IDPatchError
from idpatch.core.fs_utils import find_latest
from idpatch.core.logger import setup_logging
from idpatch.core.models import RemediationChoice, RunReport, RunState, StorageIdMode
from idpatch.core.patch_pipeline import PatchPipeline
from idpatch.core.remediation import BundleRestorer, DamagedAppFixer, RemediationResult
from idpatch.core.resource_locator import ResourceLocator
from idpatch.core.storage_config import StorageConfigManager
from idpatch.core.target_profiles import TargetProfile, TargetProfileLoader

just_fix_windows_console()

STATE_COLORS = {
    "missing": Fore.RED,
    "already_patched": Fore.GREEN,
    "needs_patch": Fore.YELLOW,
}


def _fail(error: IDPatchError):
    click.echo(f"{Fore.RED}❌ {error.message}{Style.RESET_ALL}")
    if error.remediation:
        click.echo(f"{Fore.CYAN}💡 {error.remediation}{Style.RESET_ALL}")
    sys.exit(1)


def _run_config(ctx, **overrides) -> RunConfig:
    profile: TargetProfile = ctx.obj['profile']
    return RunConfig.from_config(ctx.obj['config'], profile.install_path,
                                 owner_group=profile.owner_group,
                                 bundle_mode=profile.bundle_mode, **overrides)


def _storage_manager(profile: TargetProfile) -> StorageConfigManager:
    if profile.storage_file is None:
        click.echo(f"{Fore.RED}❌ Profile '{profile.name}' defines no storage file{Style.RESET_ALL}")
        sys.exit(1)
    backup_dir = profile.storage_backup_dir or profile.storage_file.parent / "backups"
    return StorageConfigManager(profile.storage_file, backup_dir, get_invoking_user())


def _print_lines(lines: List[str], color: str = Fore.CYAN):
    for line in lines:
        click.echo(f"{color}{line}{Style.RESET_ALL}")


def _print_remediation(result: RemediationResult):
    color = Fore.GREEN if result.success else Fore.RED
    icon = "✅" if result.success else "❌"
    click.echo(f"{color}{icon} {result.message}{Style.RESET_ALL}")
    _print_lines([f"💡 {hint}" for hint in result.hints])


def print_report(report: RunReport, log_file: Optional[Path] = None):
    """Print per-resource states, outcomes and the final state"""
    click.echo(f"{Fore.CYAN}{'─' * 60}{Style.RESET_ALL}")
    click.echo(f"{Style.BRIGHT}Target resources:{Style.RESET_ALL}")
    for resource in report.resources:
        state = resource.state.value
        click.echo(f"   {STATE_COLORS.get(state, Fore.WHITE)}{state:<16}{Style.RESET_ALL} {resource.relative_path}")

    if report.outcomes:
        click.echo(f"{Style.BRIGHT}Outcomes:{Style.RESET_ALL}")
    for outcome in report.outcomes:
        if outcome.success:
            icon, color = "✅", Fore.GREEN
        elif outcome.skipped:
            icon, color = "➖", Fore.WHITE
        else:
            icon, color = "❌", Fore.RED
        line = f"   {icon} {outcome.relative_path}: {outcome.message}"
        if outcome.success and outcome.call_sites_rewritten:
            line += f" ({outcome.call_sites_rewritten} call site(s) rewritten)"
        click.echo(f"{color}{line}{Style.RESET_ALL}")

    if report.staged is not None and not report.success:
        click.echo(f"   📁 Working copy: {Fore.WHITE}{report.staged.app_path}{Style.RESET_ALL}")
        click.echo(f"   💾 Backup: {Fore.WHITE}{report.staged.backup_path}{Style.RESET_ALL}")

    color = Fore.GREEN if report.success else Fore.RED
    if report.state == RunState.DEGRADED_SIGNED:
        color = Fore.YELLOW
    click.echo(f"{color}{Style.BRIGHT}Final state: {report.state.value}{Style.RESET_ALL}")

    if report.remediation:
        click.echo(f"{Fore.CYAN}💡 Next steps:{Style.RESET_ALL}")
        _print_lines([f"   {line}" for line in report.remediation])
    if log_file:
        click.echo(f"📋 Log file: {log_file}")


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--config', '-c', help='Configuration file path')
@click.option('--profile', '-p', help='Target profile name or YAML file')
@click.option('--app-path', '-a', type=click.Path(path_type=Path),
              help='Override the application install path')
@click.pass_context
def cli(ctx, verbose, config, profile, app_path):
    """IDPatch - Machine identifier patcher for desktop application bundles"""
    ctx.ensure_object(dict)
    ctx.obj['config'] = Config(config)
    app_config = ctx.obj['config']

    # Setup logging
    log_level = "DEBUG" if verbose else app_config.get("log_level", "INFO")
    log_file = app_config.get_log_file()
    run_logger = setup_logging(log_file, level=log_level)
    run_logger.start_run()
    ctx.call_on_close(run_logger.end_run)
    ctx.obj['log_file'] = log_file

    try:
        target = TargetProfileLoader().load(profile or app_config.get("profile"))
    except IDPatchError as e:
        _fail(e)
    if app_path:
        target = target.with_install_path(app_path)
    ctx.obj['profile'] = target.for_user(get_invoking_user())

    click.echo(f"{Fore.CYAN}┌─────────────────────────────────────────┐{Style.RESET_ALL}")
    title = f"IDPatch CLI v{app_config.get('version')}"
    click.echo(f"{Fore.CYAN}│{Style.RESET_ALL} {Fore.BLUE}{Style.BRIGHT}{title:<40}{Style.RESET_ALL}{Fore.CYAN}│{Style.RESET_ALL}")
    click.echo(f"{Fore.CYAN}└─────────────────────────────────────────┘{Style.RESET_ALL}")

    if verbose:
        click.echo(f"{Fore.YELLOW}🔍 Verbose mode enabled{Style.RESET_ALL}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show the patch state of the installed application"""
    profile: TargetProfile = ctx.obj['profile']
    click.echo(f"{Fore.BLUE}🔍 Inspecting {profile.install_path}...{Style.RESET_ALL}")

    if not profile.install_path.is_dir():
        click.echo(f"{Fore.RED}❌ Application not found: {profile.install_path}{Style.RESET_ALL}")
        sys.exit(1)

    located = ResourceLocator(profile).locate(profile.install_path)
    click.echo(f"{Style.BRIGHT}Profile: {profile.name}{Style.RESET_ALL}")
    for resource in located.resources:
        state = resource.state.value
        click.echo(f"   {STATE_COLORS.get(state, Fore.WHITE)}{state:<16}{Style.RESET_ALL} {resource.relative_path}")

    if located.all_patched:
        click.echo(f"{Fore.GREEN}✅ All target files are patched{Style.RESET_ALL}")
    elif located.missing:
        click.echo(f"{Fore.RED}❌ {len(located.missing)} target file(s) missing{Style.RESET_ALL}")
    else:
        click.echo(f"{Fore.YELLOW}⚠️  {len(located.needs_patch)} file(s) need patching{Style.RESET_ALL}")

    if profile.storage_file is not None:
        present = "present" if profile.storage_file.exists() else "not found"
        click.echo(f"   🗂️  Storage file ({present}): {Fore.WHITE}{profile.storage_file}{Style.RESET_ALL}")

    backup = find_latest(ctx.obj['config'].get_temp_dir(), profile.backup_prefix)
    if backup is not None:
        click.echo(f"   💾 Latest bundle backup: {Fore.WHITE}{backup}{Style.RESET_ALL}")


@cli.command()
@click.option('--reset-ids/--keep-ids', default=False,
              help='Also rewrite deviceId/machineId in storage.json')
@click.option('--disable-updates/--keep-updates', default=False,
              help='Disable auto-update after a successful run')
@click.option('--restore-first', is_flag=True,
              help='Start from the newest bundle backup instead of the installed copy')
@click.option('--fix-quarantine', is_flag=True, help='Remove the quarantine attribute after install')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def patch(ctx, reset_ids, disable_updates, restore_first, fix_quarantine, yes):
    """Patch, re-sign and reinstall the application"""
    profile: TargetProfile = ctx.obj['profile']

    if not yes:
        click.echo(f"{Fore.YELLOW}⚠️  This will modify {profile.install_path}; "
                   f"the application will be closed.{Style.RESET_ALL}")
        if not click.confirm("Continue?"):
            click.echo("Operation cancelled")
            return

    run_config = _run_config(
        ctx,
        storage_ids=StorageIdMode.RESET if reset_ids else StorageIdMode.KEEP,
        disable_updates=RemediationChoice.RUN if disable_updates else RemediationChoice.SKIP,
        restore_bundle=RemediationChoice.RUN if restore_first else RemediationChoice.SKIP,
        fix_quarantine=RemediationChoice.RUN if fix_quarantine else RemediationChoice.SKIP,
    )

    click.echo(f"{Fore.BLUE}🚀 Starting patch run for {profile.app_name}...{Style.RESET_ALL}")
    report = PatchPipeline(profile, run_config).run()
    print_report(report, ctx.obj['log_file'])

    if report.state == RunState.DEGRADED_SIGNED:
        sys.exit(2)
    if not report.success:
        sys.exit(1)


@cli.command(name="reset-ids")
@click.pass_context
def reset_ids(ctx):
    """Back up storage.json and write fresh identifiers"""
    manager = _storage_manager(ctx.obj['profile'])

    try:
        manager.backup()
        values = manager.reset_identifiers()
    except (OSError, ValueError) as e:
        click.echo(f"{Fore.RED}❌ Failed to reset identifiers: {e}{Style.RESET_ALL}")
        sys.exit(1)

    click.echo(f"{Fore.GREEN}✅ Identifiers updated:{Style.RESET_ALL}")
    for key, value in values.items():
        click.echo(f"   {key}: {Fore.WHITE}{value}{Style.RESET_ALL}")


@cli.command(name="restore-config")
@click.option('--backup', '-b', 'backup_name', help='Backup file name to restore')
@click.pass_context
def restore_config(ctx, backup_name):
    """Restore storage.json from a previous backup"""
    manager = _storage_manager(ctx.obj['profile'])
    backups = manager.list_backups()

    if not backups:
        click.echo(f"{Fore.YELLOW}⚠️  No backup files found in {manager.backup_dir}{Style.RESET_ALL}")
        sys.exit(1)

    if backup_name:
        chosen = next((b for b in backups if b.name == backup_name), None)
        if chosen is None:
            click.echo(f"{Fore.RED}❌ Backup not found: {backup_name}{Style.RESET_ALL}")
            sys.exit(1)
    else:
        click.echo(f"{Style.BRIGHT}Available backups:{Style.RESET_ALL}")
        for i, backup in enumerate(backups, 1):
            click.echo(f"   {i}. {backup.name}")
        index = click.prompt("Select a backup", type=click.IntRange(1, len(backups)))
        chosen = backups[index - 1]

    if manager.restore(chosen):
        click.echo(f"{Fore.GREEN}✅ Configuration restored from {chosen.name}{Style.RESET_ALL}")
    else:
        click.echo(f"{Fore.RED}❌ Failed to restore configuration{Style.RESET_ALL}")
        sys.exit(1)


@cli.command(name="restore-bundle")
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def restore_bundle(ctx, yes):
    """Replace the installation with the newest bundle backup"""
    profile: TargetProfile = ctx.obj['profile']
    if not yes and not click.confirm(f"Replace {profile.install_path} with the latest backup?"):
        click.echo("Operation cancelled")
        return

    try:
        result = BundleRestorer(profile, _run_config(ctx)).restore()
    except IDPatchError as e:
        _fail(e)
    _print_remediation(result)
    if not result.success:
        sys.exit(1)


@cli.command(name="fix-damaged")
@click.pass_context
def fix_damaged(ctx):
    """Clear quarantine and re-sign an application reported as damaged"""
    result = DamagedAppFixer(ctx.obj['profile'].install_path).fix()
    _print_remediation(result)
    if not result.success:
        sys.exit(1)


@cli.command(name="disable-updates")
@click.pass_context
def disable_updates(ctx):
    """Disable the application's auto-updater"""
    profile: TargetProfile = ctx.obj['profile']
    update_config = profile.install_path / profile.update_config if profile.update_config else None
    blocker = AutoUpdateBlocker(update_config, profile.updater_cache)
    result = blocker.disable()

    if result.success:
        click.echo(f"{Fore.GREEN}✅ Auto-update disabled{Style.RESET_ALL}")
        click.echo(f"{Fore.CYAN}💡 Verification:{Style.RESET_ALL}")
        _print_lines([f"   {step}" for step in blocker.verification_steps()])
        return

    click.echo(f"{Fore.YELLOW}⚠️  Auto-update could not be fully disabled, run manually:{Style.RESET_ALL}")
    _print_lines([f"   {cmd}" for cmd in result.manual_commands])
    sys.exit(1)


if __name__ == "__main__":
    cli()
