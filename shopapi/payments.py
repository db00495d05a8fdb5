"""
Paymob checkout orchestration.

A checkout attempt runs three gateway calls strictly in order (auth token, remote order,
payment key), then records the remote order on the local one. Nothing is retried; the
first failing stage ends the attempt and the local order is marked ``failed``.
"""
import hashlib
import hmac
import json
import logging
import math
from typing import Dict, List, Optional, Tuple

import requests
from flask import jsonify, request

from .config import Settings
from .documents import normalize_text, parse_number, to_object_id, utcnow
from .errors import (
    GatewayAuthFailed,
    GatewayFailure,
    GatewayKeyFailed,
    GatewayOrderFailed,
    InvalidBillingData,
    require_json_object,
)

DEFAULT_EMAIL = "no-email@example.com"
DEFAULT_PHONE = "+201000000000"
DEFAULT_FIRST_NAME = "Customer"
DEFAULT_LAST_NAME = "Name"
DEFAULT_LOCALITY = "Cairo"
DEFAULT_STREET = "Unknown"
DEFAULT_POSTAL_CODE = "00000"
GATEWAY_COUNTRY = "EGY"
NOT_APPLICABLE = "NA"
PAYMENT_KEY_EXPIRATION = 3600

REQUIRED_PAYMENT_FIELDS = ("amount", "items", "customer", "userId", "orderId")

WEBHOOK_SIGNATURE_HEADER = "x-paymob-signature"

# Transaction callback fields concatenated, in this order, for the HMAC.
TRANSACTION_HMAC_FIELDS = (
    "amount_cents",
    "created_at",
    "currency",
    "error_occured",
    "has_parent_transaction",
    "id",
    "integration_id",
    "is_3d_secure",
    "is_auth",
    "is_capture",
    "is_refunded",
    "is_standalone_payment",
    "is_voided",
    "order.id",
    "owner",
    "pending",
    "source_data.pan",
    "source_data.sub_type",
    "source_data.type",
    "success",
)


def to_minor_units(amount) -> int:
    # Half-up rounding, as the gateway expects for cents.
    return int(math.floor(float(amount) * 100 + 0.5))


def truncate(value, limit: int) -> str:
    return normalize_text(value)[:limit]


def customer_field(customer: Dict, key: str):
    value = customer.get(key)
    if value:
        return value
    nested = customer.get("customer")
    if isinstance(nested, dict):
        return nested.get(key)
    return None


def shipping_field(customer: Dict, key: str) -> str:
    shipping_address = customer.get("shipping_address")
    if not isinstance(shipping_address, dict):
        return ""
    return normalize_text(shipping_address.get(key))


def build_billing_data(customer: Dict) -> Dict[str, str]:
    """Billing block for the payment key request; street and city are mandatory."""
    billing_data = {
        "first_name": truncate(customer_field(customer, "first_name"), 30) or DEFAULT_FIRST_NAME,
        "last_name": truncate(customer_field(customer, "last_name"), 30) or DEFAULT_LAST_NAME,
        "email": normalize_text(customer_field(customer, "email")) or DEFAULT_EMAIL,
        "phone_number": normalize_text(customer_field(customer, "phone_number")) or DEFAULT_PHONE,
        "country": GATEWAY_COUNTRY,
        "city": shipping_field(customer, "city")[:30],
        "street": shipping_field(customer, "street")[:100],
        "apartment": NOT_APPLICABLE,
        "floor": NOT_APPLICABLE,
        "building": NOT_APPLICABLE,
        "postal_code": shipping_field(customer, "postal_code") or DEFAULT_POSTAL_CODE,
        "state": shipping_field(customer, "state")[:30] or DEFAULT_LOCALITY,
    }
    if not billing_data["street"] or not billing_data["city"]:
        raise InvalidBillingData()
    return billing_data


def build_order_items(items: List[Dict]) -> List[Dict]:
    order_items = []
    for item in items:
        name = normalize_text(item.get("name"))
        order_items.append(
            {
                "name": name[:50],
                "description": truncate(item.get("description"), 100) or name[:100],
                "amount_cents": to_minor_units(parse_number(item.get("price")) or 0),
                "quantity": item.get("quantity"),
            }
        )
    return order_items


def build_shipping_data(customer: Dict) -> Dict[str, str]:
    return {
        "apartment": NOT_APPLICABLE,
        "email": normalize_text(customer_field(customer, "email")) or DEFAULT_EMAIL,
        "floor": NOT_APPLICABLE,
        "first_name": normalize_text(customer_field(customer, "first_name")) or DEFAULT_FIRST_NAME,
        "street": shipping_field(customer, "street") or DEFAULT_STREET,
        "building": NOT_APPLICABLE,
        "phone_number": normalize_text(customer_field(customer, "phone_number")) or DEFAULT_PHONE,
        "postal_code": shipping_field(customer, "postal_code") or DEFAULT_POSTAL_CODE,
        "city": shipping_field(customer, "city") or DEFAULT_LOCALITY,
        "country": GATEWAY_COUNTRY,
        "last_name": normalize_text(customer_field(customer, "last_name")) or DEFAULT_LAST_NAME,
        "state": shipping_field(customer, "state") or DEFAULT_LOCALITY,
    }


def mask_customer(customer: Dict) -> Dict[str, str]:
    return {
        "first_name": "***" if customer_field(customer, "first_name") else "missing",
        "city": "***" if shipping_field(customer, "city") else "missing",
        "street": "***" if shipping_field(customer, "street") else "missing",
        "phone_number": "***",
    }


def _hmac_value(transaction: Dict, dotted_key: str) -> str:
    value = transaction
    for part in dotted_key.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        elif part != "id":
            # ``order`` may arrive as a bare id instead of a nested object.
            value = None
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def compute_transaction_hmac(transaction: Dict, secret: str) -> str:
    message = "".join(_hmac_value(transaction, key) for key in TRANSACTION_HMAC_FIELDS)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha512).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> Optional[Dict]:
    """Return the transaction object when the signature matches, otherwise ``None``."""
    if not secret or not signature:
        return None
    try:
        payload = json.loads(raw_body or b"")
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    transaction = payload.get("obj") if isinstance(payload.get("obj"), dict) else payload
    expected = compute_transaction_hmac(transaction, secret)
    if not hmac.compare_digest(expected, str(signature).strip().lower()):
        return None
    return transaction


class PaymobClient:
    def __init__(self, settings: Settings, logger: Optional[logging.Logger] = None):
        self.settings = settings
        self.base_url = settings.paymob_api_url.rstrip("/")
        self.logger = logger or logging.getLogger(__name__)

    def _post(self, path: str, payload: Dict, failure_cls, prefix: str, log_context: Dict) -> Dict:
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=payload)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as exc:
            detail = _response_message(exc.response) or str(exc)
            self.logger.error(
                "%s: status=%s url=%s context=%s",
                prefix,
                getattr(exc.response, "status_code", None),
                url,
                log_context,
            )
            raise failure_cls(f"{prefix}: {detail}")
        except ValueError as exc:
            self.logger.error("%s: invalid JSON from %s", prefix, url)
            raise failure_cls(f"{prefix}: {exc}")

    def authenticate(self) -> str:
        data = self._post(
            "/auth/tokens",
            {"api_key": self.settings.paymob_api_key},
            GatewayAuthFailed,
            "Authentication failed",
            {},
        )
        token = data.get("token")
        if not token:
            raise GatewayAuthFailed("Authentication failed: No authentication token received")
        return token

    def create_order(self, auth_token: str, amount: float, items: List[Dict], customer: Dict):
        amount_cents = to_minor_units(amount)
        payload = {
            "auth_token": auth_token,
            "delivery_needed": "false",
            "amount_cents": amount_cents,
            "currency": self.settings.paymob_currency,
            "first_name": customer_field(customer, "first_name"),
            "last_name": customer_field(customer, "last_name"),
            "phone_number": customer_field(customer, "phone_number"),
            "items": build_order_items(items),
            "shipping_data": build_shipping_data(customer),
        }
        data = self._post(
            "/ecommerce/orders",
            payload,
            GatewayOrderFailed,
            "Order creation failed",
            {"amount_cents": amount_cents, **mask_customer(customer)},
        )
        remote_order_id = data.get("id")
        if not remote_order_id:
            raise GatewayOrderFailed("Order creation failed: No order ID received from Paymob")
        return remote_order_id

    def create_payment_key(self, auth_token: str, remote_order_id, amount: float, billing_data: Dict) -> str:
        amount_cents = to_minor_units(amount)
        payload = {
            "auth_token": auth_token,
            "amount_cents": amount_cents,
            "expiration": PAYMENT_KEY_EXPIRATION,
            "order_id": remote_order_id,
            "billing_data": billing_data,
            "currency": self.settings.paymob_currency,
            "integration_id": self.settings.paymob_integration_id,
        }
        data = self._post(
            "/acceptance/payment_keys",
            payload,
            GatewayKeyFailed,
            "Payment key generation failed",
            {"amount_cents": amount_cents, "order_id": remote_order_id},
        )
        payment_token = data.get("token")
        if not payment_token:
            raise GatewayKeyFailed(
                "Payment key generation failed: No payment token received from Paymob"
            )
        return payment_token

    def payment_url(self, payment_token: str, local_order_id: str) -> str:
        return (
            f"{self.base_url}/acceptance/iframes/{self.settings.paymob_iframe_id}"
            f"?payment_token={payment_token}&order={local_order_id}"
        )


def _response_message(response) -> Optional[str]:
    if response is None:
        return None
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        return data.get("message") or data.get("detail")
    return None


class PaymentOrchestrator:
    def __init__(self, settings: Settings, db, client: Optional[PaymobClient] = None, logger=None):
        self.settings = settings
        self.db = db
        self.logger = logger or logging.getLogger(__name__)
        self.client = client or PaymobClient(settings, self.logger)

    def _failure_body(self, message: str) -> Dict:
        body = {"success": False, "error": "Payment processing failed"}
        if not self.settings.is_production:
            body["details"] = message
        return body

    def mark_initiated(self, order_id, remote_order_id) -> None:
        now = utcnow()
        self.db.orders.update_one(
            {"_id": order_id},
            {
                "$set": {
                    "paymobOrderId": remote_order_id,
                    "paymentResult.status": "initiated",
                    "paymentResult.initiatedAt": now,
                    "updatedAt": now,
                }
            },
        )

    def mark_failed(self, order_id, message: str) -> None:
        try:
            self.db.orders.update_one(
                {"_id": order_id},
                {
                    "$set": {
                        "paymentResult.status": "failed",
                        "paymentResult.error": message,
                        "updatedAt": utcnow(),
                    }
                },
            )
        except Exception as exc:
            self.logger.warning("Unable to mark order %s as failed: %s", order_id, exc)

    def create_payment(self, payload: Dict) -> Tuple[Dict, int]:
        missing = {field: not payload.get(field) for field in REQUIRED_PAYMENT_FIELDS}
        if any(missing.values()):
            return {"success": False, "error": "Missing required fields", "missing": missing}, 400

        amount = parse_number(payload.get("amount"))
        if amount is None or amount <= 0:
            return {"success": False, "error": "Invalid amount value"}, 400

        items = payload.get("items")
        customer = payload.get("customer")
        if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
            return {"success": False, "error": "Items must be a list of objects"}, 400
        if not isinstance(customer, dict):
            return {"success": False, "error": "Customer must be an object"}, 400

        local_order_id = str(payload.get("orderId"))
        order_id = to_object_id(local_order_id)
        if order_id is None:
            return {"success": False, "error": "Invalid order id"}, 400

        try:
            billing_data = build_billing_data(customer)
            auth_token = self.client.authenticate()
            remote_order_id = self.client.create_order(auth_token, amount, items, customer)
            payment_token = self.client.create_payment_key(
                auth_token, remote_order_id, amount, billing_data
            )
            self.mark_initiated(order_id, remote_order_id)
        except GatewayFailure as error:
            self.logger.error("Payment processing failed for order %s: %s", local_order_id, error)
            self.mark_failed(order_id, error.message)
            return self._failure_body(error.message), error.status_code
        except Exception as exc:
            self.logger.exception("Payment processing failed for order %s", local_order_id)
            self.mark_failed(order_id, str(exc))
            return self._failure_body(str(exc)), 500

        self.logger.info(
            "Payment initiated for order %s (Paymob order %s)", local_order_id, remote_order_id
        )
        return (
            {
                "success": True,
                "paymentUrl": self.client.payment_url(payment_token, local_order_id),
                "paymobOrderId": remote_order_id,
                "localOrderId": local_order_id,
            },
            200,
        )

    def apply_transaction(self, transaction: Dict) -> bool:
        """Record a verified gateway callback; returns False when no order matches."""
        remote_order = transaction.get("order")
        remote_order_id = remote_order.get("id") if isinstance(remote_order, dict) else remote_order
        if remote_order_id in (None, ""):
            return False

        candidates = [remote_order_id, str(remote_order_id)]
        if isinstance(remote_order_id, str) and remote_order_id.isdigit():
            candidates.append(int(remote_order_id))

        success = bool(transaction.get("success"))
        now = utcnow()
        updates = {
            "isPaid": success,
            "paymentResult.status": "paid" if success else "failed",
            "paymentResult.update_time": now,
            "updatedAt": now,
        }
        if success:
            updates["paidAt"] = now

        result = self.db.orders.update_one(
            {"paymobOrderId": {"$in": candidates}}, {"$set": updates}
        )
        return result.matched_count > 0


def register_payment_routes(app, db, settings: Settings) -> PaymentOrchestrator:
    orchestrator = PaymentOrchestrator(settings, db, logger=app.logger)

    @app.route("/api/payment/create-payment", methods=["POST"])
    def create_payment():
        payload = require_json_object(request.get_json(silent=True))
        body, status = orchestrator.create_payment(payload)
        return jsonify(body), status

    @app.route("/api/payment/webhook", methods=["POST"])
    def payment_webhook():
        signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER) or request.args.get("hmac")
        transaction = verify_webhook_signature(
            request.get_data(), signature, settings.paymob_hmac_secret
        )
        if transaction is None:
            app.logger.warning("Paymob webhook rejected: invalid signature")
            return "Invalid signature", 400

        if not orchestrator.apply_transaction(transaction):
            app.logger.warning(
                "Paymob webhook: no order for Paymob order %s", transaction.get("order")
            )
            return jsonify({"error": "Order not found"}), 404

        return "OK", 200

    return orchestrator
