from __future__ import annotations

from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizroster.errors import Conflict, Forbidden, InvalidInput, NotFound
from quizroster.logger import get_logger
from quizroster.models.group import MEMBERSHIP_ACTIVE, Group, GroupStudent

_logger = get_logger("services.groups")


async def get_group(session: AsyncSession, group_id: str) -> Optional[Group]:
    return await session.get(Group, group_id)


async def ensure_mentor_owns_group(session: AsyncSession, group_id: str, mentor_id: str) -> Group:
    group = await get_group(session, group_id)
    if group is None:
        raise NotFound("Group not found")
    if group.mentor_id != mentor_id:
        _logger.warning(
            "group.ownership.reject",
            "Mentor does not own group",
            group_id=group_id,
            mentor_id=mentor_id,
        )
        raise Forbidden("You do not have permission to manage this group")
    return group


def ensure_not_archived(group: Group) -> None:
    if group.is_archived:
        raise Conflict("Group has been archived")


async def create_group(
    session: AsyncSession,
    *,
    name: str,
    mentor_id: str,
    term: Optional[str] = None,
) -> Group:
    name = (name or "").strip()
    if not name:
        raise InvalidInput("Group name is required")

    async with _logger.operation(
        "group.create", "Creating group", mentor_id=mentor_id, group_name=name
    ) as op:
        group = Group(id=str(uuid4()), name=name, term=term, mentor_id=mentor_id, is_archived=False)
        session.add(group)
        await session.commit()
        op.step("db.commit", "Committed group", group_id=group.id)
        return group


async def list_groups_for_mentor(session: AsyncSession, mentor_id: str) -> List[Group]:
    result = await session.execute(
        select(Group).where(Group.mentor_id == mentor_id).order_by(Group.created_at.desc())
    )
    return list(result.scalars().all())


async def archive_group(session: AsyncSession, group_id: str, mentor_id: str) -> Group:
    group = await ensure_mentor_owns_group(session, group_id, mentor_id)
    if not group.is_archived:
        group.is_archived = True
        await session.commit()
        _logger.info("group.archive", "Archived group", group_id=group_id, mentor_id=mentor_id)
    return group


async def list_active_member_ids(session: AsyncSession, group_id: str) -> List[str]:
    result = await session.execute(
        select(GroupStudent.student_id).where(
            GroupStudent.group_id == group_id,
            GroupStudent.status == MEMBERSHIP_ACTIVE,
        )
    )
    return [str(student_id) for student_id in result.scalars().all()]
