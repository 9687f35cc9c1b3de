"""Choices offered to the user when a sync check blocks editing, and how they run."""

from __future__ import annotations

from enum import Enum
from typing import Any

from data.services.sync_types import SyncCheckResult, SyncState


class ResolutionAction(str, Enum):
    """What the user decided to do with a sync check result."""

    USE_CLOUD = "use_cloud"
    USE_LOCAL = "use_local"
    DOWNLOAD = "download"
    UPLOAD = "upload"
    PROCEED = "proceed"


DATA_LOSS_WARNING = (
    "Keeping one version permanently replaces the other. "
    "A local backup is taken first, but cloud-side changes are not backed up."
)

_OPTIONS = {
    SyncState.NEVER_SYNCED: (ResolutionAction.USE_CLOUD, ResolutionAction.USE_LOCAL),
    SyncState.CLOUD_ONLY: (ResolutionAction.DOWNLOAD,),
    SyncState.CONFLICT: (ResolutionAction.USE_CLOUD, ResolutionAction.USE_LOCAL),
    SyncState.NO_CLOUD_BACKUP: (ResolutionAction.UPLOAD, ResolutionAction.PROCEED),
    SyncState.LOCAL_ONLY: (ResolutionAction.UPLOAD, ResolutionAction.PROCEED),
}

_PULL_ACTIONS = {ResolutionAction.USE_CLOUD, ResolutionAction.DOWNLOAD}
_PUSH_ACTIONS = {ResolutionAction.USE_LOCAL, ResolutionAction.UPLOAD}


def resolution_options(result: SyncCheckResult) -> tuple[ResolutionAction, ...]:
    """Actions the user may pick for ``result``. There is no default."""
    return _OPTIONS.get(result.state, (ResolutionAction.PROCEED,))


def resolution_warning(result: SyncCheckResult) -> str | None:
    if result.state is SyncState.CONFLICT:
        return DATA_LOSS_WARNING
    return None


def resolve(service: Any, action: ResolutionAction | str) -> SyncCheckResult:
    """
    Run the chosen action and return a fresh check.

    Editing is only permitted by the returned result, never by the fact that
    an action completed.

    Raises:
        ValueError: if ``action`` is not offered for the current state
        SyncError: if the push or pull fails
    """
    action = ResolutionAction(action)
    current = service.check()
    offered = resolution_options(current)
    if action not in offered:
        choices = ", ".join(a.value for a in offered)
        raise ValueError(f"'{action.value}' is not available in state {current.state.value} (choose: {choices})")

    if action in _PULL_ACTIONS:
        service.pull()
    elif action in _PUSH_ACTIONS:
        service.push()

    return service.check()
