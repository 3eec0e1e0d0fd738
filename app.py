import logging

from flask import Flask, jsonify
from dotenv import load_dotenv

load_dotenv()

from config import Config  # noqa: E402  (load_dotenv needs to run first)
from errors import InventoryError  # noqa: E402
from extensions import db, login_manager  # noqa: E402  (load_dotenv needs to run first)
from gateway import init_gateway  # noqa: E402


def create_app(test_config: dict | None = None) -> Flask:
    """Application factory for the after-sales tracker."""

    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # init extensions
    db.init_app(app)
    login_manager.init_app(app)

    # blueprints
    from modules.spare_parts import bp as spare_parts_bp
    from modules.cases import bp as cases_bp
    from modules.technicians import bp as technicians_bp
    from ui_routes import ui

    app.register_blueprint(spare_parts_bp)
    app.register_blueprint(cases_bp)
    app.register_blueprint(technicians_bp)
    app.register_blueprint(ui)  # dashboard "/" and login

    # DB
    with app.app_context():
        # Models must be imported before create_all()
        import models  # noqa: F401
        from modules.spare_parts import models as spare_parts_models  # noqa: F401
        from modules.cases import models as cases_models  # noqa: F401
        from modules.technicians import models as technicians_models  # noqa: F401

        db.create_all()

    init_gateway(app)

    # --- JSON errors ---
    @app.errorhandler(InventoryError)
    def handle_inventory_error(err: InventoryError):
        return jsonify(ok=False, **err.to_dict()), err.status_code

    @app.errorhandler(403)
    def handle_forbidden(_err):
        return jsonify(ok=False, error="FORBIDDEN", message="Insufficient role for this action"), 403

    @app.errorhandler(404)
    def handle_not_found(_err):
        return jsonify(ok=False, error="NOT_FOUND", message="No such endpoint"), 404

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
