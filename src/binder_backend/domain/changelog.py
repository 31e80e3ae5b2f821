from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from binder_backend.config import settings
from binder_backend.schemas_binder import (
    LOCAL_USER,
    Binder,
    ChangeRecord,
    ChangeType,
    utc_now,
)


def new_change_id() -> str:
    return f"change_{uuid.uuid4().hex}"


def make_change(
    change_type: ChangeType,
    data: dict[str, Any],
    *,
    user_id: str | None,
    now: datetime | None = None,
) -> ChangeRecord:
    return ChangeRecord(
        id=new_change_id(),
        timestamp=now or utc_now(),
        type=change_type,
        user_id=user_id or LOCAL_USER,
        data=dict(data),
    )


def record_change(
    binder: Binder,
    change_type: ChangeType,
    data: dict[str, Any],
    *,
    user_id: str | None = None,
    now: datetime | None = None,
    max_entries: int | None = None,
) -> Binder:
    """Return ``binder`` marked as locally modified with one appended change.

    Bumps ``version``, stamps ``lastModified``/``lastModifiedBy``, sets the
    sync status to ``local`` and queues the record in ``pendingChanges``.
    The changelog keeps only the most recent ``max_entries`` records.
    """

    stamp = now or utc_now()
    actor = user_id or binder.owner_id or LOCAL_USER
    change = make_change(change_type, data, user_id=actor, now=stamp)

    limit = max_entries if max_entries is not None else settings.changelog_max_entries
    changelog = [*binder.changelog, change]
    if limit > 0 and len(changelog) > limit:
        changelog = changelog[-limit:]

    sync = binder.sync.model_copy(
        update={
            "status": "local",
            "pending_changes": [*binder.sync.pending_changes, change],
        }
    )
    return binder.model_copy(
        update={
            "version": binder.version + 1,
            "last_modified": stamp,
            "last_modified_by": actor,
            "sync": sync,
            "changelog": changelog,
        }
    )
