from .rental_routes import bp as rentals_bp
from .payment_routes import bp as payments_bp
from .wallet_routes import bp as wallet_bp
from .notification_routes import bp as notifications_bp
from .admin_routes import bp as admin_bp

__all__ = [
    "rentals_bp",
    "payments_bp",
    "wallet_bp",
    "notifications_bp",
    "admin_bp",
]
