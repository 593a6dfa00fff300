import logging
from flask import Flask
from dotenv import load_dotenv


def _storage(app: Flask, database_url: str, session_factory=None):
    if session_factory is None:
        from .storage.db import init_db, make_engine, make_session_factory
        engine = make_engine(app.config.get("DATABASE_URL", database_url))
        init_db(engine)
        session_factory = make_session_factory(engine)
    app.config["SESSION_FACTORY"] = session_factory
    if "CLIENT_FOR_SHOP" not in app.config:
        from .services.factory import client_for_shop
        app.config["CLIENT_FOR_SHOP"] = lambda shop: client_for_shop(session_factory, shop)


def _routes(app: Flask):
    from .routes import cron, register, setup_metafields, webhooks

    for module, prefix in (
        (webhooks, "/webhooks/discounts"),
        (cron, "/cron"),
        (register, "/register_webhooks"),
        (setup_metafields, "/setup/metafields"),
    ):
        app.register_blueprint(module.bp, url_prefix=prefix)

    @app.get("/health")
    def health():
        return {"ok": True}, 200


def create_app(overrides: dict | None = None, session_factory=None):
    load_dotenv()
    from . import config
    from .utils.logger import configure_logging, level_from_name

    app = Flask(__name__)

    # under gunicorn, log through its handlers
    app.logger.handlers = logging.getLogger("gunicorn.error").handlers
    app.logger.setLevel(level_from_name(config.LOG_LEVEL))
    configure_logging(config.LOG_LEVEL)

    app.config.update(
        BASE_URL=config.BASE_URL,
        SHOPIFY_API_SECRET=config.SHOPIFY_API_SECRET,
        CRON_SECRET_TOKEN=config.CRON_SECRET_TOKEN,
        SYNC_CONFIG=config.SyncConfig.from_env(),
        WEBHOOK_INLINE=False,
    )
    app.config.update(overrides or {})

    _storage(app, config.DATABASE_URL, session_factory)
    _routes(app)
    return app
