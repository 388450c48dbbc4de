# backend/app/routes/__init__.py
from . import (
    admin_bookings as admin_bookings,
    admin_config as admin_config,
    admin_payment_holds as admin_payment_holds,
    prometheus as prometheus,
)
