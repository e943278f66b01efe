"""SendSafe API routers.

- deliveries: recipient pickup (public, email and access code gated)
- sender: sender delivery management (gateway authenticated)
- audit: compliance metrics (admin)
"""

from sendsafe.api.routers.audit import router as audit_router
from sendsafe.api.routers.deliveries import router as deliveries_router
from sendsafe.api.routers.sender import router as sender_router

__all__ = [
    "audit_router",
    "deliveries_router",
    "sender_router",
]
