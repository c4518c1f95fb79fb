"""Central registry for SQLAlchemy models with string-based relationships.

Importing this module loads every ORM class that may be referenced by name,
so mappers configure even when a single model module is imported alone.
"""

from bikawo.domain.bookings import db_models as booking_db_models  # noqa: F401
from bikawo.domain.payments import db_models as payment_db_models  # noqa: F401
from bikawo.domain.notifications import db_models as notification_db_models  # noqa: F401
