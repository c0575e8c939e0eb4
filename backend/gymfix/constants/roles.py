"""Central enum-like definitions for tenant roles and the capabilities they grant.
Extend cautiously; capability codes are referenced by routes and the ticket lifecycle.
"""
from __future__ import annotations
from typing import Dict, FrozenSet, Tuple

SIDE_GYM = 'gym'
SIDE_FACTORY = 'factory'
SIDES = (SIDE_GYM, SIDE_FACTORY)

FACTORY_OWNER = 'owner'
FACTORY_APPROVER = 'approver'
FACTORY_EMPLOYEE = 'employee'
FACTORY_ROLES = (FACTORY_OWNER, FACTORY_APPROVER, FACTORY_EMPLOYEE)

GYM_OWNER = 'owner'
GYM_EMPLOYEE = 'employee'
GYM_ROLES = (GYM_OWNER, GYM_EMPLOYEE)

# (side, role) pairs
Grant = Tuple[str, str]

_ANY_GYM: FrozenSet[Grant] = frozenset((SIDE_GYM, r) for r in GYM_ROLES)
_ANY_FACTORY: FrozenSet[Grant] = frozenset((SIDE_FACTORY, r) for r in FACTORY_ROLES)
_FACTORY_DECIDERS: FrozenSet[Grant] = frozenset({(SIDE_FACTORY, FACTORY_OWNER), (SIDE_FACTORY, FACTORY_APPROVER)})
_GYM_OWNERS: FrozenSet[Grant] = frozenset({(SIDE_GYM, GYM_OWNER)})

CAPABILITIES: Dict[str, FrozenSet[Grant]] = {
    # membership administration
    'GYM.MEMBERS.READ': _ANY_GYM,
    'GYM.MEMBERS.MANAGE': _GYM_OWNERS,
    'FACTORY.MEMBERS.READ': _ANY_FACTORY,
    'FACTORY.MEMBERS.MANAGE': frozenset({(SIDE_FACTORY, FACTORY_OWNER)}),
    'FACTORY.USERS.SEARCH': _FACTORY_DECIDERS,
    'FACTORY.USERS.READ': _FACTORY_DECIDERS,
    'FACTORY.GYMS.MANAGE': _FACTORY_DECIDERS,
    'FACTORY.EQUIPMENT.MANAGE': _FACTORY_DECIDERS,
    'FACTORY.READ': _ANY_FACTORY,
    'GYM.READ': _ANY_GYM | _ANY_FACTORY,
    # ticket workflow
    'TICKET.READ': _ANY_GYM | _ANY_FACTORY,
    'TICKET.CREATE': _ANY_GYM,
    'TICKET.COMMENT': _ANY_GYM | _ANY_FACTORY,
    'TICKET.REVIEW': _ANY_FACTORY,
    'TICKET.GYM_FIX': _GYM_OWNERS,
    'TICKET.VISIT.REQUEST': _GYM_OWNERS | _ANY_FACTORY,
    'TICKET.VISIT.DECIDE': _FACTORY_DECIDERS,
    'TICKET.VISIT.COMPLETE': _ANY_FACTORY,
    'TICKET.CONFIRM.GYM': _GYM_OWNERS,
    'TICKET.CONFIRM.FACTORY': _ANY_FACTORY,
}

# confirmer_role labels stored on TicketConfirmation rows
CONFIRMER_ROLES = {
    (SIDE_GYM, GYM_OWNER): 'gym_owner',
    (SIDE_FACTORY, FACTORY_OWNER): 'factory_owner',
    (SIDE_FACTORY, FACTORY_APPROVER): 'factory_approver',
    (SIDE_FACTORY, FACTORY_EMPLOYEE): 'factory_employee',
}
