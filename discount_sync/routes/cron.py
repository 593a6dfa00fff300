# discount_sync/routes/cron.py
import logging
from flask import Blueprint, current_app

from ..services.factory import build_service_stack
from ..services.sweep import sweep_expired_discounts
from ..utils.security import verify_cron_token

bp = Blueprint("cron", __name__)
logger = logging.getLogger(__name__)


@bp.post("/discount-cleanup")
def discount_cleanup():
    verify_cron_token(current_app.config["CRON_SECRET_TOKEN"])
    try:
        result = sweep_expired_discounts(
            current_app.config["SESSION_FACTORY"],
            current_app.config["SYNC_CONFIG"],
            client_for_shop=current_app.config["CLIENT_FOR_SHOP"],
        )
    except Exception as e:
        logger.exception("[cron] discount cleanup failed")
        return {"success": False, "error": str(e)}, 500
    return {"success": True, **result.to_dict()}, 200


@bp.post("/initialize/<shop>")
def initialize(shop: str):
    verify_cron_token(current_app.config["CRON_SECRET_TOKEN"])
    client = current_app.config["CLIENT_FOR_SHOP"](shop)
    if client is None:
        return {"success": False, "error": f"No valid session for {shop}"}, 404

    service = build_service_stack(client, shop, current_app.config["SESSION_FACTORY"],
                                  current_app.config["SYNC_CONFIG"])
    result = service.initialize_all_discounts()
    return result.to_dict(), (200 if result.success else 502)
