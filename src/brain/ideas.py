"""
Content idea status workflow.

    extracted -> selected -> writing -> written -> scheduled -> published
    any non-terminal state -> archived

published and archived are terminal.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from src.brain.errors import NotFoundError, ValidationError
from src.brain.store import BrainStore

logger = logging.getLogger(__name__)


class IdeaStatus(str, Enum):
    EXTRACTED = "extracted"
    SELECTED = "selected"
    WRITING = "writing"
    WRITTEN = "written"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    ARCHIVED = "archived"


TERMINAL = frozenset({IdeaStatus.PUBLISHED, IdeaStatus.ARCHIVED})

TRANSITIONS = {
    IdeaStatus.EXTRACTED: {IdeaStatus.SELECTED, IdeaStatus.ARCHIVED},
    IdeaStatus.SELECTED: {IdeaStatus.WRITING, IdeaStatus.EXTRACTED, IdeaStatus.ARCHIVED},
    # writing -> selected is the revert path when dispatch fails
    IdeaStatus.WRITING: {IdeaStatus.WRITTEN, IdeaStatus.SELECTED, IdeaStatus.EXTRACTED, IdeaStatus.ARCHIVED},
    IdeaStatus.WRITTEN: {IdeaStatus.SCHEDULED, IdeaStatus.WRITING, IdeaStatus.ARCHIVED},
    IdeaStatus.SCHEDULED: {IdeaStatus.PUBLISHED, IdeaStatus.WRITTEN, IdeaStatus.ARCHIVED},
    IdeaStatus.PUBLISHED: set(),
    IdeaStatus.ARCHIVED: set(),
}


def can_transition(current: IdeaStatus, target: IdeaStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(current: str, target: str) -> IdeaStatus:
    """
    Validate a status change.

    Raises:
        ValidationError: unknown status or a move the workflow does not allow.
    """
    try:
        current_status = IdeaStatus(current)
        target_status = IdeaStatus(target)
    except ValueError as e:
        raise ValidationError(f"Unknown idea status: {e}")

    if current_status in TERMINAL:
        raise ValidationError(f"Idea is {current_status.value} and cannot change status")
    if not can_transition(current_status, target_status):
        raise ValidationError(f"Cannot move idea from {current_status.value} to {target_status.value}")
    return target_status


class IdeaWorkflow:
    """
    Applies status changes to stored ideas.

    Usage:
        workflow = IdeaWorkflow(store)
        await workflow.advance("user-1", idea_id, IdeaStatus.SELECTED)
        job_id = await workflow.start_writing("user-1", idea_id, dispatch)
    """

    def __init__(self, store: BrainStore):
        self.store = store

    async def advance(self, owner_id: str, idea_id: str, target: IdeaStatus) -> IdeaStatus:
        idea = await self.store.get_idea(owner_id, idea_id)
        if idea is None:
            raise NotFoundError("content idea", idea_id)
        status = transition(idea.status, target)
        await self.store.update_idea_status(owner_id, idea_id, status.value)
        return status

    async def start_writing(
        self,
        owner_id: str,
        idea_id: str,
        dispatch: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Mark an idea as writing, then dispatch generation.

        The status is set before dispatch so the idea is not picked twice.
        If dispatch raises, the previous status is restored and the error
        propagates.
        """
        idea = await self.store.get_idea(owner_id, idea_id)
        if idea is None:
            raise NotFoundError("content idea", idea_id)

        previous = idea.status
        transition(previous, IdeaStatus.WRITING)
        await self.store.update_idea_status(owner_id, idea_id, IdeaStatus.WRITING.value)

        try:
            return await dispatch()
        except Exception:
            logger.warning(f"Dispatch failed for idea {idea_id}, reverting status to {previous}")
            await self.store.update_idea_status(owner_id, idea_id, previous)
            raise
