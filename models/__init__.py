from .db import db
from .audit_log import AuditLog
from .booking import Booking, BookingStatus, ServiceLine, RescheduleEntry, SlotHold
from .payment import PaymentEntry, PaymentMethod
from .redeemable_code import RedeemableCode, CodeType, CodeEffect, RedemptionContext
