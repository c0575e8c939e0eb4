"""Importing this package registers every table on ``Base.metadata``."""
from gymfix.models.authz import Base, User, Factory, FactoryMember, Gym, GymMember  # noqa: F401
from gymfix.models.equipment import Equipment  # noqa: F401
from gymfix.models.ticket import Ticket, TicketEvent, FactoryVisitRequest, TicketConfirmation  # noqa: F401
from gymfix.models.notification import Notification  # noqa: F401
from gymfix.models.audit import AuditLog  # noqa: F401
