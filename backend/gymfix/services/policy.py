from __future__ import annotations
"""Capability checks shared by every route.

An ``Actor`` is the caller's approved roles in the tenant scope a request
touches (a gym and/or its factory). ``check`` turns (actor, capability) into an
``AuthzResult``; ``require`` aborts with 403 when the result is a denial.
"""
from dataclasses import dataclass
from typing import FrozenSet, Optional, Set
from flask import abort
from flask_jwt_extended import get_jwt_identity
from sqlalchemy import select
from gymfix.constants.roles import CAPABILITIES, SIDE_GYM, SIDE_FACTORY, Grant
from gymfix.models.authz import FactoryMember, GymMember, Gym


@dataclass(frozen=True)
class Actor:
    user_id: int
    gym_role: Optional[str] = None
    factory_role: Optional[str] = None

    @property
    def grants(self) -> FrozenSet[Grant]:
        out: Set[Grant] = set()
        if self.gym_role:
            out.add((SIDE_GYM, self.gym_role))
        if self.factory_role:
            out.add((SIDE_FACTORY, self.factory_role))
        return frozenset(out)

    @property
    def sides(self) -> Set[str]:
        return {side for side, _ in self.grants}

    def role_on(self, side: str) -> Optional[str]:
        return self.gym_role if side == SIDE_GYM else self.factory_role

    def on_side(self, side: str) -> 'Actor':
        """The same user with only the roles held on ``side``."""
        if side == SIDE_GYM:
            return Actor(self.user_id, gym_role=self.gym_role)
        return Actor(self.user_id, factory_role=self.factory_role)


@dataclass(frozen=True)
class AuthzResult:
    allowed: bool
    capability: str
    reason: str = ''

    def __bool__(self) -> bool:
        return self.allowed

    def enforce(self) -> None:
        if not self.allowed:
            abort(403, description=self.reason)


def check(actor: Actor, capability: str) -> AuthzResult:
    granted_to = CAPABILITIES.get(capability)
    if granted_to is None:
        raise KeyError(f'unknown capability {capability}')
    if not actor.grants:
        return AuthzResult(False, capability, 'Forbidden - not a member')
    if actor.grants & granted_to:
        return AuthzResult(True, capability)
    roles = ', '.join(sorted(f'{side} {role}' for side, role in granted_to))
    return AuthzResult(False, capability, f'Forbidden - requires {roles}')


def require(actor: Actor, capability: str) -> Actor:
    check(actor, capability).enforce()
    return actor


def current_user_id() -> int:
    # Identity stored as string, cast back to int for DB lookup
    return int(get_jwt_identity())


def gym_role(session, user_id: int, gym_id: int) -> Optional[str]:
    """Role of an approved gym membership, else None (pending memberships grant nothing)."""
    m = session.execute(
        select(GymMember).where(GymMember.user_id == user_id, GymMember.gym_id == gym_id)
    ).scalar_one_or_none()
    if not m or m.approved_at is None:
        return None
    return m.role


def factory_role(session, user_id: int, factory_id: int) -> Optional[str]:
    m = session.execute(
        select(FactoryMember).where(FactoryMember.user_id == user_id, FactoryMember.factory_id == factory_id)
    ).scalar_one_or_none()
    if not m or m.approved_at is None:
        return None
    return m.role


def actor_for_factory(session, user_id: int, factory_id: int) -> Actor:
    return Actor(user_id=user_id, factory_role=factory_role(session, user_id, factory_id))


def actor_for_gym(session, user_id: int, gym: Gym) -> Actor:
    return Actor(
        user_id=user_id,
        gym_role=gym_role(session, user_id, gym.id),
        factory_role=factory_role(session, user_id, gym.factory_id),
    )


def actor_for_ticket(session, user_id: int, ticket) -> Actor:
    return Actor(
        user_id=user_id,
        gym_role=gym_role(session, user_id, ticket.gym_id),
        factory_role=factory_role(session, user_id, ticket.factory_id),
    )


def stakeholder_ids(session, *, gym_id: Optional[int] = None, gym_roles=(), factory_id: Optional[int] = None, factory_roles=()) -> Set[int]:
    """User ids holding one of the given approved roles in a gym and/or factory."""
    ids: Set[int] = set()
    if gym_id is not None and gym_roles:
        q = select(GymMember.user_id).where(
            GymMember.gym_id == gym_id, GymMember.role.in_(gym_roles), GymMember.approved_at.is_not(None)
        )
        ids.update(session.execute(q).scalars())
    if factory_id is not None and factory_roles:
        q = select(FactoryMember.user_id).where(
            FactoryMember.factory_id == factory_id, FactoryMember.role.in_(factory_roles), FactoryMember.approved_at.is_not(None)
        )
        ids.update(session.execute(q).scalars())
    return ids
