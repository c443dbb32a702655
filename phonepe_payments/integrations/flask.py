"""
Flask adapter for the PhonePe webhook processor.

Requires the ``web`` extra::

    from phonepe_payments.integrations.flask import create_webhook_blueprint

    app.register_blueprint(create_webhook_blueprint(processor))
"""

import logging

from flask import Blueprint, Response, request

from ..webhooks import WebhookProcessor

logger = logging.getLogger(__name__)

DEFAULT_ROUTE = "/webhook/phonepe"


def create_webhook_blueprint(
    processor: WebhookProcessor, route: str = DEFAULT_ROUTE, name: str = "phonepe_webhook"
) -> Blueprint:
    """Build a blueprint that forwards raw POST bodies and X-VERIFY to ``processor``."""
    blueprint = Blueprint(name, __name__)

    @blueprint.route(route, methods=["POST"])
    def phonepe_webhook():
        # Signature covers the exact bytes sent, so read the body before any parsing.
        raw_body = request.get_data(cache=False) or b""
        outcome = processor.handle(raw_body, request.headers.get("X-VERIFY"), source_ip=request.remote_addr)
        return Response(outcome.body, status=outcome.status_code, mimetype="text/plain")

    logger.debug("PhonePe webhook blueprint registered at %s", route)
    return blueprint
