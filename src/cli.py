import json
from pathlib import Path
from typing import Any, Optional

import typer

from config.sync import BackupTag
from core.dependencies import DependencyContainer
from data.services.conflict_resolution import (
    ResolutionAction,
    resolution_options,
    resolution_warning,
    resolve,
)
from data.services.storage_sync_service import StorageSyncService
from data.services.sync_errors import SyncError
from data.services.sync_types import SyncConfig, format_timestamp, target_to_dict
from data.storage.credential_store import StoredCredentials
from utils.logger_setup import resolve_log_level

app = typer.Typer(
    name="puffin_sync",
    help="Reconcile the local Puffin database with its cloud backup.",
    add_completion=False
)
backups_app = typer.Typer(help="Manage local safety backups.", add_completion=False)
credentials_app = typer.Typer(help="Manage stored cloud credentials.", add_completion=False)
app.add_typer(backups_app, name="backups")
app.add_typer(credentials_app, name="credentials")


def build_container(data_dir: Optional[Path], verbose: bool) -> DependencyContainer:
    return DependencyContainer(
        data_dir=data_dir,
        log_level=resolve_log_level(verbose=verbose),
        console_output=verbose,
    )


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Optional[Path] = typer.Option(
        None, "--data-dir", help="Directory holding the database, sync config and backups."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
):
    """Puffin cloud sync."""
    ctx.obj = build_container(data_dir, verbose)
    ctx.call_on_close(ctx.obj.close)


def _service(ctx: typer.Context) -> StorageSyncService:
    return ctx.obj.sync_service


def _emit(payload: dict[str, Any], as_json: bool, text: str) -> None:
    if as_json:
        typer.echo(json.dumps(payload, indent=2))
    else:
        typer.echo(text)


def _fail(error: SyncError, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(error.to_dict(), indent=2))
    else:
        typer.secho(f"Error [{error.code.value}]: {error.message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _fail_invalid(message: str, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps({"success": False, "error": message, "code": "invalid_argument"}, indent=2))
    else:
        typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _config_payload(config: SyncConfig) -> dict[str, Any]:
    return {
        "isConfigured": config.is_configured,
        "isFileBasedSync": config.is_file_based_sync,
        "target": target_to_dict(config.target),
        "lastSyncedAt": format_timestamp(config.last_synced_at),
    }


@app.command()
def check(ctx: typer.Context, as_json: bool = typer.Option(False, "--json", help="Print JSON.")):
    """
    Report the sync state and whether editing is allowed.
    """
    result = _service(ctx).check()
    payload = result.to_dict()
    payload["options"] = [action.value for action in resolution_options(result)]

    lines = [f"State: {result.state.value}", result.message]
    if result.warning:
        lines.append(f"Warning: {result.warning}")
    lines.append("Editing allowed." if result.can_edit else "Editing blocked until you resolve the sync state.")
    _emit(payload, as_json, "\n".join(lines))


@app.command()
def push(ctx: typer.Context, as_json: bool = typer.Option(False, "--json", help="Print JSON.")):
    """
    Upload the local database to the cloud.
    """
    try:
        result = _service(ctx).push()
    except SyncError as e:
        _fail(e, as_json)
    _emit(result.to_dict(), as_json, f"Uploaded. Last synced at {format_timestamp(result.last_synced_at)}.")


@app.command()
def pull(ctx: typer.Context, as_json: bool = typer.Option(False, "--json", help="Print JSON.")):
    """
    Replace the local database with the cloud copy.
    """
    try:
        result = _service(ctx).pull()
    except SyncError as e:
        _fail(e, as_json)
    _emit(result.to_dict(), as_json, f"Downloaded. Last synced at {format_timestamp(result.last_synced_at)}.")


@app.command()
def status(ctx: typer.Context, as_json: bool = typer.Option(False, "--json", help="Print JSON.")):
    """
    Show the configured target and the local and cloud files.
    """
    info = _service(ctx).status()
    if not info.get("configured"):
        _emit(info, as_json, "Cloud sync is not configured.")
        return

    remote = info.get("remote", {})
    lines = [
        f"Target: {info['target']}",
        f"Last synced: {info.get('lastSyncedAt') or 'never'}",
        f"Local database: {info['local'].get('modifiedTime') or 'missing'}",
        f"Cloud backup: {remote.get('modifiedTime') or remote.get('error') or 'missing'}",
    ]
    _emit(info, as_json, "\n".join(lines))


@app.command("configure-folder")
def configure_folder(
    ctx: typer.Context,
    folder_id: str = typer.Argument(..., help="Folder (object prefix) holding the backup."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name of the folder."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Sync against the backup inside a folder.
    """
    try:
        config = _service(ctx).configure_folder(folder_id, name)
    except ValueError as e:
        _fail_invalid(str(e), as_json)
    _emit(_config_payload(config), as_json, f"Sync folder set to {folder_id}.")


@app.command("configure-file")
def configure_file(
    ctx: typer.Context,
    file_id: str = typer.Argument(..., help="Object name of the backup file."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name of the file."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Sync against one fixed backup file.
    """
    try:
        config = _service(ctx).configure_file(file_id, name)
    except ValueError as e:
        _fail_invalid(str(e), as_json)
    _emit(_config_payload(config), as_json, f"Sync file set to {file_id}.")


@app.command()
def disconnect(ctx: typer.Context, as_json: bool = typer.Option(False, "--json", help="Print JSON.")):
    """
    Revoke access and forget the sync target. Local data is kept.
    """
    revoked = _service(ctx).disconnect()
    text = "Disconnected from cloud sync."
    if not revoked:
        text += " The access token could not be revoked; remove the app's access from your account manually."
    _emit({"success": True, "revoked": revoked}, as_json, text)


@app.command("resolve")
def resolve_command(
    ctx: typer.Context,
    action: ResolutionAction = typer.Argument(..., help="What to do with the current sync state."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the data-loss confirmation."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Resolve a blocked sync state by downloading or uploading.
    """
    service = _service(ctx)
    current = service.check()
    warning = resolution_warning(current)
    if warning and not yes and not as_json:
        typer.confirm(f"{warning} Continue?", abort=True)
    elif warning and not yes:
        _fail_invalid("Confirmation required: pass --yes to resolve a conflict.", as_json)

    try:
        result = resolve(service, action)
    except ValueError as e:
        _fail_invalid(str(e), as_json)
    except SyncError as e:
        _fail(e, as_json)

    _emit(result.to_dict(), as_json, f"State: {result.state.value}\n{result.message}")


@backups_app.command("list")
def backups_list(ctx: typer.Context, as_json: bool = typer.Option(False, "--json", help="Print JSON.")):
    """
    List local backups, newest first.
    """
    backups = _service(ctx).list_backups()
    payload = {"backups": [b.to_dict() for b in backups]}
    if not backups:
        _emit(payload, as_json, "No backups found.")
        return
    lines = [f"{b.filename}  {b.size} bytes  {format_timestamp(b.created_at)}" for b in backups]
    _emit(payload, as_json, "\n".join(lines))


@backups_app.command("create")
def backups_create(
    ctx: typer.Context,
    tag: BackupTag = typer.Option(BackupTag.MANUAL, "--tag", help="Tag used in the backup name."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Take a backup of the local database now.
    """
    try:
        path = _service(ctx).create_backup(tag)
    except SyncError as e:
        _fail(e, as_json)
    _emit({"success": True, "filename": path.name}, as_json, f"Created backup {path.name}")


@backups_app.command("delete")
def backups_delete(
    ctx: typer.Context,
    filename: str = typer.Argument(..., help="Backup file name."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Delete one backup.
    """
    try:
        _service(ctx).delete_backup(filename)
    except SyncError as e:
        _fail(e, as_json)
    _emit({"success": True, "filename": filename}, as_json, f"Deleted backup {filename}")


@backups_app.command("restore")
def backups_restore(
    ctx: typer.Context,
    filename: str = typer.Argument(..., help="Backup file name."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Replace the local database with a backup.
    """
    try:
        pre_restore = _service(ctx).restore_backup(filename)
    except SyncError as e:
        _fail(e, as_json)
    payload = {"success": True, "preRestoreBackup": pre_restore.name if pre_restore else None}
    _emit(payload, as_json, f"Restored {filename}.")


@backups_app.command("import")
def backups_import(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="DuckDB file to restore from."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Replace the local database with an external DuckDB file.
    """
    try:
        pre_restore = _service(ctx).import_backup(source)
    except SyncError as e:
        _fail(e, as_json)
    payload = {"success": True, "preRestoreBackup": pre_restore.name if pre_restore else None}
    _emit(payload, as_json, f"Imported {source.name}.")


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Delete the local database after taking a backup.
    """
    if not yes:
        typer.confirm("Delete the local database? A backup is taken first.", abort=True)
    backup_path = _service(ctx).reset_database()
    payload = {"success": True, "backupFilename": backup_path.name if backup_path else None}
    _emit(payload, as_json, "Local database reset.")


@credentials_app.command("set")
def credentials_set(
    ctx: typer.Context,
    client_id: Optional[str] = typer.Option(None, "--client-id", help="OAuth client id."),
    client_secret: Optional[str] = typer.Option(None, "--client-secret", help="OAuth client secret."),
    refresh_token: Optional[str] = typer.Option(None, "--refresh-token", help="OAuth refresh token."),
    email: Optional[str] = typer.Option(None, "--email", help="Account the OAuth credentials belong to."),
    service_account_file: Optional[Path] = typer.Option(
        None, "--service-account-file", help="Service account key JSON."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
):
    """
    Store cloud credentials, encrypted on disk.
    """
    if service_account_file is not None:
        try:
            info = json.loads(service_account_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            _fail_invalid(f"Could not read service account file: {e}", as_json)
        credentials = StoredCredentials(service_account_info=info)
    else:
        credentials = StoredCredentials(
            client_id=client_id, client_secret=client_secret, refresh_token=refresh_token
        )

    if not credentials.is_usable:
        _fail_invalid("Provide --client-id, --client-secret and --refresh-token, or --service-account-file.", as_json)

    _service(ctx).set_credentials(credentials, user_email=email)
    _emit({"success": True}, as_json, "Credentials saved.")


@credentials_app.command("clear")
def credentials_clear(ctx: typer.Context, as_json: bool = typer.Option(False, "--json", help="Print JSON.")):
    """
    Delete stored credentials.
    """
    _service(ctx).clear_credentials()
    _emit({"success": True}, as_json, "Credentials cleared.")


if __name__ == "__main__":
    app()
