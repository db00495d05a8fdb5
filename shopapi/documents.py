"""
Document shapes for the ``users``, ``products`` and ``orders`` collections.

Every builder validates the incoming payload, collects all failing fields and raises
``ValidationFailed`` with the joined messages. The embedded-collection helpers
(addresses, cart, wishlist) mutate a loaded user document in place; callers persist the
changed list with ``$set``.
"""
import math
import re
import unicodedata
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId

from .errors import NotFound, ValidationFailed

MIN_PASSWORD_LENGTH = 6
DEFAULT_COUNTRY = "Egypt"

PRODUCT_TEXT_FIELDS = ("name", "description", "image", "price", "category")
PRODUCT_NULLABLE_FIELDS = ("rating", "numbersOfRating", "stock", "discount")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def normalize_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def parse_number(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if math.isfinite(numeric):
        return numeric
    return None


def slugify(value: Optional[str]) -> str:
    normalized = unicodedata.normalize("NFKD", str(value or ""))
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", ascii_value).strip("-").lower()
    return slug or "product"


def serialize_document(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.isoformat() + "Z"
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_document(item) for item in value]
    return value


def _require_text(payload: Dict, key: str, label: str, errors: List[str]) -> str:
    value = normalize_text(payload.get(key))
    if not value:
        errors.append(f"{label} is required")
    return value


def _require_number(payload: Dict, key: str, label: str, errors: List[str]) -> Optional[float]:
    raw_value = payload.get(key)
    if raw_value is None or (isinstance(raw_value, str) and not raw_value.strip()):
        errors.append(f"{label} is required")
        return None
    numeric = parse_number(raw_value)
    if numeric is None:
        errors.append(f"{label} must be a valid number")
    return numeric


# --- Users ---


def normalize_address(payload) -> Tuple[Dict, List[str]]:
    if not isinstance(payload, dict):
        return {}, ["Address must be an object"]

    errors: List[str] = []
    address = {
        "_id": to_object_id(payload.get("_id")) or ObjectId(),
        "street": _require_text(payload, "street", "Street", errors),
        "city": _require_text(payload, "city", "City", errors),
        "state": _require_text(payload, "state", "State", errors),
        "zipCode": normalize_text(payload.get("zipCode")),
        "country": normalize_text(payload.get("country")) or DEFAULT_COUNTRY,
        "isDefault": bool(payload.get("isDefault", False)),
    }
    return address, errors


def normalize_address_list(raw_addresses) -> List[Dict]:
    if raw_addresses is None:
        return []
    if not isinstance(raw_addresses, list):
        raise ValidationFailed("Addresses must be a list")

    addresses: List[Dict] = []
    errors: List[str] = []
    for entry in raw_addresses:
        address, address_errors = normalize_address(entry)
        errors.extend(address_errors)
        addresses.append(address)
    if errors:
        raise ValidationFailed(errors)

    # Keep the first flagged address as the default, or the first one if none is flagged.
    default_index = next(
        (index for index, address in enumerate(addresses) if address["isDefault"]), 0
    )
    for index, address in enumerate(addresses):
        address["isDefault"] = index == default_index
    return addresses


def build_user_document(
    name: str,
    email: str,
    password_hash: bytes,
    phone: str,
    addresses: Optional[List[Dict]] = None,
) -> Dict:
    now = utcnow()
    return {
        "name": normalize_text(name),
        "email": normalize_email(email),
        "password": password_hash,
        "phone": normalize_text(phone),
        "avatar": "",
        "addresses": addresses or [],
        "cart": [],
        "wishlist": [],
        "paymentMethods": [],
        "orderHistory": [],
        "preferences": {
            "newsletter": True,
            "emailNotifications": True,
            "smsNotifications": False,
        },
        "isAdmin": False,
        "isVerified": False,
        "verificationToken": None,
        "resetPasswordToken": None,
        "resetPasswordExpires": None,
        "lastLogin": now,
        "createdAt": now,
        "updatedAt": now,
    }


def serialize_user_profile(user_document: Dict) -> Dict:
    return serialize_document(
        {
            "_id": user_document.get("_id"),
            "name": user_document.get("name", ""),
            "email": user_document.get("email", ""),
            "phone": user_document.get("phone", ""),
            "avatar": user_document.get("avatar", ""),
            "addresses": user_document.get("addresses") or [],
            "preferences": user_document.get("preferences") or {},
            "isAdmin": bool(user_document.get("isAdmin")),
            "isVerified": bool(user_document.get("isVerified")),
        }
    )


def add_address(user_document: Dict, payload) -> Dict:
    address, errors = normalize_address(payload)
    if errors:
        raise ValidationFailed(errors)

    addresses = user_document.setdefault("addresses", [])
    if not addresses:
        address["isDefault"] = True
    elif address["isDefault"]:
        for existing in addresses:
            existing["isDefault"] = False
    addresses.append(address)
    return address


def set_default_address(user_document: Dict, address_id) -> Dict:
    target_id = to_object_id(address_id)
    addresses = user_document.get("addresses") or []
    if target_id is None or not any(address.get("_id") == target_id for address in addresses):
        raise NotFound("Address not found")

    for address in addresses:
        address["isDefault"] = address.get("_id") == target_id
    return user_document


def add_to_cart(user_document: Dict, product_id: ObjectId, price: float, quantity=1) -> Dict:
    quantity_value = parse_number(quantity)
    if quantity_value is None or quantity_value < 1 or int(quantity_value) != quantity_value:
        raise ValidationFailed("Quantity must be a whole number of at least 1")
    quantity_value = int(quantity_value)

    cart = user_document.setdefault("cart", [])
    for item in cart:
        if item.get("product") == product_id:
            item["quantity"] = int(item.get("quantity", 0)) + quantity_value
            return item

    item = {
        "_id": ObjectId(),
        "product": product_id,
        "quantity": quantity_value,
        "price": price,
        "addedAt": utcnow(),
    }
    cart.append(item)
    return item


def remove_from_cart(user_document: Dict, product_id: ObjectId) -> None:
    user_document["cart"] = [
        item for item in user_document.get("cart") or [] if item.get("product") != product_id
    ]


def clear_cart(user_document: Dict) -> None:
    user_document["cart"] = []


def summarize_cart(user_document: Dict) -> Dict:
    cart = user_document.get("cart") or []
    total = sum(float(item.get("price", 0)) * int(item.get("quantity", 0)) for item in cart)
    count = sum(int(item.get("quantity", 0)) for item in cart)
    return {
        "cart": serialize_document(cart),
        "cartTotal": round(total, 2),
        "cartItemCount": count,
    }


def add_to_wishlist(user_document: Dict, product_id: ObjectId) -> bool:
    wishlist = user_document.setdefault("wishlist", [])
    if any(item.get("product") == product_id for item in wishlist):
        return False
    wishlist.append({"_id": ObjectId(), "product": product_id, "addedAt": utcnow()})
    return True


def remove_from_wishlist(user_document: Dict, product_id: ObjectId) -> None:
    user_document["wishlist"] = [
        item
        for item in user_document.get("wishlist") or []
        if item.get("product") != product_id
    ]


# --- Products ---


def build_product_document(payload: Dict) -> Dict:
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid product data")

    errors: List[str] = []
    name = _require_text(payload, "name", "Name", errors)
    description = _require_text(payload, "description", "Description", errors)
    price = _require_number(payload, "price", "Price", errors)
    category = _require_text(payload, "category", "Category", errors)

    rating = parse_number(payload.get("rating"))
    if payload.get("rating") is not None and rating is None:
        errors.append("Rating must be a valid number")
    discount = parse_number(payload.get("discount"))
    if payload.get("discount") is not None and discount is None:
        errors.append("Discount must be a valid number")

    if errors:
        raise ValidationFailed(errors)

    now = utcnow()
    return {
        "name": name,
        "description": description,
        "image": normalize_text(payload.get("image")),
        "price": price,
        "category": category,
        "rating": rating or 0,
        "numbersOfRating": 0,
        "stock": bool(payload.get("stock", True)),
        "slug": slugify(payload.get("slug") or name),
        "discount": discount or 0,
        "createdAt": now,
        "updatedAt": now,
    }


def build_product_update(payload: Dict) -> Dict:
    """Return the ``$set`` fields for a partial product update.

    Text-like fields only overwrite when the new value is truthy, so ``name: ""`` keeps
    the stored name. Numeric/flag fields overwrite whenever they are not null, so
    ``rating: 0`` is stored.
    """
    if not isinstance(payload, dict):
        payload = {}

    updates: Dict = {}
    for key in PRODUCT_TEXT_FIELDS:
        value = payload.get(key)
        if value:
            updates[key] = value
    for key in PRODUCT_NULLABLE_FIELDS:
        value = payload.get(key)
        if value is not None:
            updates[key] = value

    errors: List[str] = []
    for key in ("price", "rating", "numbersOfRating", "discount"):
        if key in updates:
            numeric = parse_number(updates[key])
            if numeric is None:
                errors.append(f"{key} must be a valid number")
            else:
                updates[key] = numeric
    if "stock" in updates:
        updates["stock"] = bool(updates["stock"])
    for key in ("name", "description", "image", "category"):
        if key in updates:
            updates[key] = normalize_text(updates[key])
    if errors:
        raise ValidationFailed(errors)

    updates["updatedAt"] = utcnow()
    return updates


# --- Orders ---


def _normalize_order_item(payload, position: int, errors: List[str]) -> Dict:
    label = f"Order item {position}"
    if not isinstance(payload, dict):
        errors.append(f"{label} must be an object")
        return {}

    product_id = to_object_id(payload.get("product"))
    if product_id is None:
        errors.append(f"{label} product is required")
    return {
        "product": product_id,
        "name": _require_text(payload, "name", f"{label} name", errors),
        "image": _require_text(payload, "image", f"{label} image", errors),
        "price": _require_number(payload, "price", f"{label} price", errors),
        "qty": _require_number(payload, "qty", f"{label} qty", errors),
    }


def build_order_document(payload: Dict, user_id: Optional[ObjectId] = None) -> Dict:
    """Snapshot a checkout payload into an order document.

    Totals are stored as supplied; nothing here recomputes them from the line items.
    """
    errors: List[str] = []

    owner = to_object_id(payload.get("user")) if payload.get("user") else user_id
    if owner is None:
        errors.append("User is required")

    order_items = [
        _normalize_order_item(entry, index, errors)
        for index, entry in enumerate(payload.get("orderItems") or [], start=1)
    ]

    raw_shipping = payload.get("shippingAddress")
    if not isinstance(raw_shipping, dict):
        raw_shipping = {}
    shipping_address = {
        "address": _require_text(raw_shipping, "address", "Shipping address", errors),
        "city": _require_text(raw_shipping, "city", "Shipping city", errors),
        "postalCode": _require_text(raw_shipping, "postalCode", "Shipping postal code", errors),
        "country": _require_text(raw_shipping, "country", "Shipping country", errors),
    }

    payment_method = _require_text(payload, "paymentMethod", "Payment method", errors)
    subtotal = _require_number(payload, "subtotal", "Subtotal", errors)
    shipping_cost = _require_number(payload, "shippingCost", "Shipping cost", errors)
    total_price = _require_number(payload, "totalPrice", "Total price", errors)

    if errors:
        raise ValidationFailed(errors)

    now = utcnow()
    return {
        "user": owner,
        "orderItems": order_items,
        "shippingAddress": shipping_address,
        "paymentMethod": payment_method,
        "subtotal": subtotal,
        "shippingCost": shipping_cost,
        "totalPrice": total_price,
        "status": "pending",
        "isPaid": False,
        "paymobOrderId": None,
        "paymentResult": {},
        "createdAt": now,
        "updatedAt": now,
    }
