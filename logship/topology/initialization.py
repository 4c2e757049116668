"""Seeding decision for a secondary database.

Rules, evaluated in order:
  1. More than one seeding mode, or a seeding mode together with
     "no initialization", is a configuration conflict.
  2. "No initialization" needs the secondary to exist and still be restoring
     or in standby.
  3. A secondary that is already restoring/standby is initialized; it is only
     reseeded when forced.
  4. An online secondary is only overwritten when forced.
  5. A missing secondary with no mode requested is seeded from a fresh base
     copy when forced, otherwise the operator has to decide.
  6. Reused backups must be reachable from the secondary role.
"""

import logging
from typing import Callable, Optional

from logship.models.errors import (
    ConflictingInitializationError, NeedsInitializationError, PathUnreachableError,
)
from logship.models.types import (
    DatabaseState, InitializationPlan, InitializationRequest, InitKind, PendingDecision,
)

logger = logging.getLogger(__name__)

SKIP = InitializationPlan(InitKind.NONE)


def resolve(requested: InitializationRequest, secondary_state: Optional[DatabaseState],
            force: bool, path_reachable: Optional[Callable[[str], bool]] = None):
    """Return an InitializationPlan or a PendingDecision.

    Raises:
        ConflictingInitializationError: If modes are combined.
        NeedsInitializationError: If the secondary cannot be used as it is.
        PathUnreachableError: If a reused backup path is not reachable.
    """
    requested = requested or InitializationRequest()
    modes = requested.requested_modes()
    if len(modes) > 1:
        raise ConflictingInitializationError(
            f"Only one initialization mode may be requested, got {[m.value for m in modes]}"
        )
    if modes and requested.no_initialization:
        raise ConflictingInitializationError(
            f"'{modes[0].value}' cannot be combined with no initialization"
        )

    exists = secondary_state is not None
    pending = exists and secondary_state.is_recovery_pending

    if requested.no_initialization:
        if not pending:
            raise NeedsInitializationError(
                "Secondary database must exist and be restoring or in standby "
                "when no initialization is requested"
                if exists else
                "Secondary database does not exist and no initialization was requested"
            )
        return SKIP

    if pending and not (force and modes):
        if modes:
            logger.info("Secondary %s is already initialized, skipping %s",
                        secondary_state.name, modes[0].value)
        return SKIP

    if exists and not pending and not force:
        raise NeedsInitializationError(
            f"Secondary database {secondary_state.name} exists and is {secondary_state.state}; "
            "use force to overwrite it"
        )

    if not modes:
        if force:
            return InitializationPlan(InitKind.GENERATE_NEW)
        return PendingDecision(
            question="Secondary database does not exist. Generate a new full backup to initialize it?",
        )

    kind = modes[0]
    if kind == InitKind.GENERATE_NEW:
        return InitializationPlan(kind)

    path = requested.existing_backup if kind == InitKind.REUSE_EXISTING else requested.backup_folder
    if path_reachable is not None and not path_reachable(path):
        raise PathUnreachableError(f"Backup path {path} is not reachable")
    return InitializationPlan(kind, path)
