"""Client machine registration and ownership checks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from backend.exceptions import DuplicateMachineError, MachineNotFoundError
from backend.models.machine import UserMachine
from backend.services.auth_service import bind_api_key_to_machine
from backend.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from backend.services.auth_service import ApiKeyAuth

logger = logging.getLogger(__name__)


async def get_owned_machine(session: AsyncSession, user_id: str, machine_id: str) -> UserMachine:
    """Return the machine if it belongs to ``user_id``, else raise ``MachineNotFoundError``."""
    stmt = select(UserMachine).where(UserMachine.id == machine_id, UserMachine.user_id == user_id)
    machine = (await session.execute(stmt)).scalar_one_or_none()
    if machine is None:
        raise MachineNotFoundError(machine_id)
    return machine


async def get_machine(session: AsyncSession, machine_id: str) -> UserMachine | None:
    return await session.get(UserMachine, machine_id)


async def register_machine(
    session: AsyncSession,
    auth: ApiKeyAuth,
    name: str,
    machine_identifier: str,
) -> UserMachine:
    """Register a machine for the caller and bind the calling key if it is unbound."""
    existing = await session.execute(
        select(UserMachine.id).where(
            UserMachine.user_id == auth.user_id,
            UserMachine.machine_identifier == machine_identifier,
        )
    )
    if existing.first() is not None:
        raise DuplicateMachineError("Machine with this identifier already exists")

    machine = UserMachine(
        user_id=auth.user_id,
        name=name,
        machine_identifier=machine_identifier,
        created_at=format_iso(now_utc()),
    )
    session.add(machine)
    try:
        await session.flush()
        if auth.machine_id is None:
            await bind_api_key_to_machine(session, auth.key_id, machine.id)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DuplicateMachineError("Machine with this identifier already exists") from exc

    logger.info("Registered machine %s (%s) for user %s", name, machine.id, auth.user_id)
    return machine
