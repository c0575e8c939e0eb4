"""Test seeding utilities to reduce duplication.

The whole suite shares one in-memory database, so every helper that creates
users takes (or generates) a unique email.
"""
import uuid
from typing import Optional
from gymfix import get_db
from gymfix.models.authz import User, Factory, FactoryMember, Gym, GymMember, utcnow
from gymfix.models.equipment import Equipment


def unique_email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


def ensure_user(email: str, name: Optional[str] = None, password: str = 'pw') -> User:
    session = get_db()
    u = session.query(User).filter_by(email=email).one_or_none()
    if not u:
        u = User(name=name or email.split('@')[0], email=email, password_hash='')
        u.set_password(password)
        session.add(u); session.commit(); session.refresh(u)
    return u


def new_user(prefix: str = 'user') -> User:
    return ensure_user(unique_email(prefix))


def create_factory(owner: User, name: str = 'Iron Works') -> Factory:
    session = get_db()
    f = Factory(name=name, owner_user_id=owner.id)
    session.add(f); session.flush()
    session.add(FactoryMember(user_id=owner.id, factory_id=f.id, role='owner', approved_at=utcnow()))
    session.commit(); session.refresh(f)
    return f


def add_factory_member(factory: Factory, user: User, role: str, approved: bool = True) -> FactoryMember:
    session = get_db()
    m = FactoryMember(user_id=user.id, factory_id=factory.id, role=role, approved_at=utcnow() if approved else None)
    session.add(m); session.commit()
    return m


def create_gym(factory: Factory, owner: User, name: str = 'Downtown Gym', status: str = 'active') -> Gym:
    """Gym plus its owner membership; the membership is approved when the gym is active."""
    session = get_db()
    gym = Gym(name=name, factory_id=factory.id, owner_user_id=owner.id, status=status,
              approved_at=utcnow() if status == 'active' else None)
    session.add(gym); session.flush()
    session.add(GymMember(user_id=owner.id, gym_id=gym.id, role='owner',
                          approved_at=utcnow() if status == 'active' else None))
    session.commit(); session.refresh(gym)
    return gym


def add_gym_member(gym: Gym, user: User, role: str = 'employee', approved: bool = True) -> GymMember:
    session = get_db()
    m = GymMember(user_id=user.id, gym_id=gym.id, role=role, approved_at=utcnow() if approved else None)
    session.add(m); session.commit()
    return m


def create_equipment(factory: Factory, creator: User, gym: Optional[Gym] = None, qr_code: Optional[str] = None,
                     name: str = 'Treadmill T1', equipment_type: str = 'treadmill') -> Equipment:
    session = get_db()
    e = Equipment(
        factory_id=factory.id,
        gym_id=gym.id if gym else None,
        name=name,
        serial_number=f"SN-{uuid.uuid4().hex[:6]}",
        qr_code=qr_code or f"EQ-{uuid.uuid4().hex[:10]}",
        equipment_type=equipment_type,
        muscle_group='cardio',
        created_by=creator.id,
    )
    session.add(e); session.commit(); session.refresh(e)
    return e


def seed_world(qr_code: Optional[str] = None) -> dict:
    """High level convenience: a factory with owner/approver/employee, an active gym
    with owner/employee, and one piece of equipment installed in that gym."""
    factory_owner = new_user('factory-owner')
    approver = new_user('approver')
    factory_employee = new_user('factory-employee')
    gym_owner = new_user('gym-owner')
    gym_employee = new_user('gym-employee')
    outsider = new_user('outsider')
    factory = create_factory(factory_owner)
    add_factory_member(factory, approver, 'approver')
    add_factory_member(factory, factory_employee, 'employee')
    gym = create_gym(factory, gym_owner)
    add_gym_member(gym, gym_employee, 'employee')
    equipment = create_equipment(factory, factory_owner, gym=gym, qr_code=qr_code)
    return {
        'factory_owner': factory_owner,
        'approver': approver,
        'factory_employee': factory_employee,
        'gym_owner': gym_owner,
        'gym_employee': gym_employee,
        'outsider': outsider,
        'factory': factory,
        'gym': gym,
        'equipment': equipment,
    }
