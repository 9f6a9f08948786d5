# Import every model so Base.metadata is complete for Alembic and create_all.
from app.db.session import Base  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.trek import Trek  # noqa: F401
from app.models.trek_add_on import TrekAddOn  # noqa: F401
from app.models.promo_code import PromoCode  # noqa: F401
from app.models.batch import Batch  # noqa: F401
from app.models.booking import Booking  # noqa: F401
from app.models.participant import BookingParticipant  # noqa: F401
from app.models.failed_booking import FailedBooking  # noqa: F401
from app.models.email_log import EmailLog  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401
