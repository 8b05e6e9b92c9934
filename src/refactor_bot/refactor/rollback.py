"""Return the working tree to the last accepted state after a batch."""

from __future__ import annotations

import asyncio
import logging

from .refactor_batch import VersionControl
from .types import RefactorFilesResult

LOGGER = logging.getLogger(__name__)


async def reset_to_last_accepted_commit(
    vcs: VersionControl,
    result: RefactorFilesResult,
    fallback_commit: str,
) -> str:
    """Hard-reset to the batch's last accepted commit, or ``fallback_commit``.

    Returns the commit the tree now points at.
    """
    target = result.last_accepted_commit() or fallback_commit
    current = await asyncio.to_thread(vcs.current_commit)
    if current != target:
        LOGGER.info("Resetting %s -> %s", current[:12], target[:12])
    await asyncio.to_thread(vcs.reset_to, target)
    return target


__all__ = ["reset_to_last_accepted_commit"]
