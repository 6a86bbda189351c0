import copy
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from orders.domain.entities import (
    Actor, CustomerInfo, Order, OrderItem, ShippingAddress, StatusHistoryEntry,
)
from orders.infrastructure.persistence.memory_repository import InMemoryOrderRepository

TEST_JWT_SECRET = "test-secret"

BASE_DATE = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)

VALID_PAYLOAD = {
    "items": [
        {
            "productId": "64f0c0ffee0000000000001",
            "name": "Camisa Oxford",
            "price": 60.00,
            "quantity": 1,
            "size": "M",
            "color": "Azul",
            "image": "/img/oxford.jpg",
        },
        {
            "product": "64f0c0ffee0000000000002",
            "name": "Pantalón Chino",
            "price": 20.00,
            "quantity": 2,
            "size": "32",
            "color": "Beige",
            "images": [{"url": "/img/chino.jpg"}],
        },
    ],
    "customerInfo": {"name": "Ana Gómez", "email": "ana@example.com", "phone": "3001234567"},
    "shippingAddress": {
        "fullName": "Ana Gómez",
        "address": "Calle 10 # 20-30",
        "city": "Bogotá",
        "state": "Cundinamarca",
        "zipCode": "110111",
        "country": "CO",
        "phone": "3001234567",
    },
    "paymentMethod": "cod",
    "subtotal": 100.00,
    "shipping": 5.99,
    "tax": 8.50,
    "discount": 0,
    "total": 114.49,
}


def make_payload(**overrides):
    payload = copy.deepcopy(VALID_PAYLOAD)
    payload.update(overrides)
    return payload


def make_order(order_id, status="pending", user_id="user-1", created_at=None, total=100.0,
               name="Ana Gómez", email="ana@example.com", order_number=None, items=None):
    created_at = created_at or BASE_DATE
    return Order(
        order_id=order_id,
        order_number=order_number or f"ORD-{order_id}",
        user_id=user_id,
        items=items if items is not None else [
            OrderItem(product_id="p1", name="Camisa", price=total, quantity=1, size="M", color="Azul")
        ],
        customer_info=CustomerInfo(name=name, email=email),
        shipping_address=ShippingAddress(
            full_name=name, address="Calle 1", city="Bogotá", state="Cundinamarca",
            zip_code="110111", phone="300",
        ),
        payment_method="COD",
        subtotal=total,
        total=total,
        status=status,
        status_history=[StatusHistoryEntry(status=status, note="", changed_at=created_at, changed_by=user_id)],
        created_at=created_at,
        updated_at=created_at,
    )


def make_token(user_id="user-1", role="user", email="ana@example.com", name="Ana Gómez",
               secret=TEST_JWT_SECRET, expires_in=timedelta(hours=1)):
    payload = {
        "userId": user_id,
        "role": role,
        "email": email,
        "name": name,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_header(**kwargs):
    return {"Authorization": f"Bearer {make_token(**kwargs)}"}


@pytest.fixture
def memory_repository():
    return InMemoryOrderRepository()


@pytest.fixture
def admin_actor():
    return Actor(user_id="admin-1", role="admin", email="admin@example.com", name="Admin")


@pytest.fixture
def customer_actor():
    return Actor(user_id="user-1", role="user", email="ana@example.com", name="Ana Gómez")
