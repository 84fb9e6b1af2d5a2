from __future__ import annotations

import time
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, current_app, jsonify, request

from .errors import Communicate, DeserializeError, NotFound, SerializeError, StoreError
from .invoice import PaymentMethod

api_v1 = Blueprint("api_v1", __name__, url_prefix="/api/v1")


def _json_ok(data: Dict[str, Any], status_code: int = 200):
    payload = {"ok": True}
    payload.update(data)
    return jsonify(payload), status_code


def _json_err(message: str, status_code: int = 400, **extra):
    payload = {"ok": False, "error": message}
    if extra:
        payload.update(extra)
    return jsonify(payload), status_code


def _gateway():
    return current_app.config["GATEWAY"]


def _whole_number(value) -> Optional[int]:
    """
    A non-negative integer from a JSON int or a decimal digit string. Floats,
    booleans and exponent notation are refused rather than truncated.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return None


@api_v1.errorhandler(NotFound)
def _not_found(exc):
    return _json_err("not_found", 404)


@api_v1.errorhandler(Communicate)
def _store_down(exc):
    return _json_err("store_unavailable", 503, detail=str(exc))


@api_v1.errorhandler(StoreError)
def _store_error(exc):
    kind = "corrupt_record" if isinstance(exc, DeserializeError) else "store_error"
    if isinstance(exc, SerializeError):
        kind = "serialize_failed"
    return _json_err(kind, 500, detail=str(exc))


@api_v1.route("/health", methods=["GET"])
def api_health():
    gw = _gateway()
    thread = getattr(gw, "_thread", None)
    return _json_ok({
        "status": "ok",
        "time": int(time.time()),
        "gateway": gw.name,
        "polling": bool(thread is not None and thread.is_alive()),
    })


@api_v1.route("/invoices", methods=["POST"])
def api_invoice_create():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return _json_err("bad_request", 400)
    amount = _whole_number(data.get("amount"))
    if amount is None:
        return _json_err("invalid_amount", 400)
    expires_in = _whole_number(data.get("expires_in_seconds", 3600))
    if expires_in is None:
        return _json_err("invalid_expiry", 400)

    token = data.get("token_address")
    try:
        method = PaymentMethod.token(token) if token else PaymentMethod.native()
    except ValueError:
        return _json_err("invalid_token_address", 400)

    message_hex = str(data.get("message") or "")
    try:
        message = bytes.fromhex(message_hex[2:] if message_hex.startswith("0x") else message_hex)
    except ValueError:
        return _json_err("invalid_message", 400, detail="message must be hex")

    try:
        invoice_id, invoice = _gateway().new_invoice(amount, method, message, expires_in)
    except ValueError as exc:
        return _json_err("invalid_amount", 400, detail=str(exc))
    return _json_ok({"id": invoice_id, "invoice": invoice.to_public_dict()}, 201)


@api_v1.route("/invoices", methods=["GET"])
def api_invoice_list():
    items = [{"id": key, "invoice": inv.to_public_dict()} for key, inv in _gateway().get_all_invoices()]
    return _json_ok({"count": len(items), "invoices": items})


@api_v1.route("/invoices/latest", methods=["GET"])
def api_invoice_latest():
    key, invoice = _gateway().get_last_invoice()
    return _json_ok({"id": key, "invoice": invoice.to_public_dict()})


@api_v1.route("/invoices/<invoice_id>", methods=["GET"])
def api_invoice_get(invoice_id: str):
    invoice = _gateway().get_invoice(invoice_id)
    return _json_ok({"id": invoice_id, "invoice": invoice.to_public_dict()})


def create_app(gateway) -> Flask:
    app = Flask(__name__)
    app.config["GATEWAY"] = gateway
    app.register_blueprint(api_v1)
    return app
