# Overview: JSON translation of checkout errors for every blueprint.

from flask import current_app, jsonify

from ..errors import CheckoutError


def register_error_handlers(app):
    @app.errorhandler(CheckoutError)
    def handle_checkout_error(e: CheckoutError):
        if e.http_status >= 500:
            current_app.logger.warning("%s: %s", e.code, e.message)
        return jsonify(e.to_dict()), e.http_status
