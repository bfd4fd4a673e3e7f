from .db import db
from .user import StaffUser
from .audit_log import AuditLog
from .session import StaffSession
from .rate_limit import RateLimitBucket
from .slot import Slot
from .hold import Hold
from .booking import Booking, BookingStatus
