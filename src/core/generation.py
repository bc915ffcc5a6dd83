"""Daily task generation — materializes a day's tasks from active routines.

Generation is idempotent: a routine that already has a non-adhoc task on the
target day is skipped, so calling ``generate_for_date`` twice for the same
(user, day) inserts nothing the second time. The store's unique index on
(user, routine, day) backs this up when two calls race.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from src.core.errors import ProfileNotFound, require_user
from src.core.recurrence import should_generate
from src.data.models import TaskInstance, TaskStatus

if TYPE_CHECKING:
    from src.ports.store_port import TrackerStore

logger = logging.getLogger(__name__)


def generate_for_date(store: TrackerStore, user_id: int | None, target_date: date) -> int:
    """Create the missing routine tasks for ``target_date``.

    Returns the number of tasks inserted.

    Raises:
        NotAuthenticated: no user id.
        ProfileNotFound: the user never completed onboarding.
        StoreError: a read or the batch insert failed; nothing was inserted
            and the call can simply be repeated.
    """
    user_id = require_user(user_id)

    profile = store.get_profile(user_id)
    if profile is None:
        raise ProfileNotFound(user_id)

    templates = store.list_active_templates(user_id)
    if not templates:
        logger.debug("No active routines for user %d", user_id)
        return 0

    existing = store.list_instances(user_id, target_date, is_adhoc=False)
    represented = {t.template_id for t in existing}

    staged: list[TaskInstance] = []
    for template in templates:
        if template.id in represented:
            continue
        if not should_generate(template, target_date, profile):
            continue
        staged.append(
            TaskInstance(
                user_id=user_id,
                template_id=template.id,
                title=template.title,
                scheduled_date=target_date,
                time_slot=template.time_slot,
                status=TaskStatus.PENDING,
                is_adhoc=False,
            )
        )

    if not staged:
        return 0

    inserted = store.insert_instances(staged)
    logger.info(
        "Generated %d task(s) for user %d on %s",
        len(inserted), user_id, target_date.isoformat(),
    )
    return len(inserted)

