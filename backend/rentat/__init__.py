import pymysql
pymysql.install_as_MySQLdb()
from flask import Flask
from flask_cors import CORS

from .config import DevConfig
from .extensions import db, migrate, jwt, ma
from .utils.errors import register_error_handlers
from .api import (
    rental_routes,
    payment_routes,
    wallet_routes,
    notification_routes,
    admin_routes,
)
from .services.collaborators import (
    DatabaseNotifier,
    SimulatedPaymentGateway,
    UserFlagIdentityService,
)
from .services.commission_service import CommissionCalculator


def create_app(config_class=DevConfig, *, payment_gateway=None, identity=None, notifier=None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class)

    CORS(
        app,
        resources={r"/api/*": {"origins": app.config["FRONTEND_ORIGIN"]}},
        supports_credentials=True,
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    ma.init_app(app)

    # External collaborators; callers may inject their own
    app.extensions["rentat"] = {
        "payment_gateway": payment_gateway or SimulatedPaymentGateway(),
        "identity": identity or UserFlagIdentityService(),
        "notifier": notifier or DatabaseNotifier(),
        "commission_calculator": CommissionCalculator.from_config(app.config),
    }

    # Register blueprints
    app.register_blueprint(rental_routes.bp, url_prefix="/api/rentals")
    app.register_blueprint(payment_routes.bp, url_prefix="/api/payments")
    app.register_blueprint(wallet_routes.bp, url_prefix="/api/wallet")
    app.register_blueprint(notification_routes.bp, url_prefix="/api/notifications")
    app.register_blueprint(admin_routes.bp, url_prefix="/api/admin")

    register_error_handlers(app)

    @app.get("/api/health")
    def health_check():
        return {"status": "ok", "service": "rentat-backend"}

    return app
