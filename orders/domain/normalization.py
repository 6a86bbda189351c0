# orders/domain/normalization.py
"""
Normalización de las líneas de pedido que envía el frontend.

Los clientes mandan variantes distintas para la referencia al producto, la imagen,
la talla y el color. Aquí se reducen todas a una sola forma canónica (OrderItem),
validada una vez en el borde del servicio.
"""
import math
from typing import Any, Dict, Optional

from .entities import OrderItem
from .errors import ValidationError

PLACEHOLDER_IMAGE = "/placeholder-image.jpg"


def _invalid(index: int, field: str, message: str, value: Any = None) -> ValidationError:
    return ValidationError.for_field(f"items[{index}].{field}", message, value)


def _product_reference(raw: Dict[str, Any]) -> Optional[str]:
    ref = raw.get("productId") or raw.get("product")
    if isinstance(ref, dict):
        ref = ref.get("_id") or ref.get("id")
    if ref is None or ref == "":
        return None
    return str(ref)


def _image_url(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        url = value.get("url")
        return url if isinstance(url, str) and url else None
    return None


def resolve_image(raw: Dict[str, Any]) -> str:
    """Admite 'image' (texto u objeto {url}) o 'images' (lista de textos u objetos)."""
    image = _image_url(raw.get("image"))
    if image:
        return image
    images = raw.get("images")
    if isinstance(images, list):
        for candidate in images:
            url = _image_url(candidate)
            if url:
                return url
    return PLACEHOLDER_IMAGE


def _variant_label(value: Any) -> Optional[str]:
    # Talla o color: texto plano u objeto {name} / {value}
    if isinstance(value, dict):
        value = value.get("name") or value.get("value")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_item(raw: Any, index: int) -> OrderItem:
    if not isinstance(raw, dict):
        raise _invalid(index, "", "Item must be an object", raw)

    product_id = _product_reference(raw)
    if not product_id:
        raise _invalid(index, "productId", "Product ID is required")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise _invalid(index, "name", "Item name is required", name)

    try:
        price = float(raw.get("price"))
    except (TypeError, ValueError):
        raise _invalid(index, "price", "Valid item price is required", raw.get("price"))
    # NaN e infinito romperían la suma del subtotal
    if not math.isfinite(price) or price < 0:
        raise _invalid(index, "price", "Valid item price is required", price)

    quantity = raw.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, (int, str)):
        raise _invalid(index, "quantity", "Valid quantity is required", quantity)
    try:
        quantity = int(quantity)
    except ValueError:
        raise _invalid(index, "quantity", "Valid quantity is required", raw.get("quantity"))
    if quantity < 1:
        raise _invalid(index, "quantity", "Valid quantity is required", quantity)

    size = _variant_label(raw.get("size"))
    if not size:
        raise _invalid(index, "size", "Item size is required", raw.get("size"))
    color = _variant_label(raw.get("color"))
    if not color:
        raise _invalid(index, "color", "Item color is required", raw.get("color"))

    return OrderItem(
        product_id=product_id,
        name=name.strip(),
        price=price,
        quantity=quantity,
        size=size,
        color=color,
        image=resolve_image(raw),
    )
