"""
Ready-made schema descriptors for common models.

Each template is a raw descriptor using shorthand tokens, Python types and
partial descriptors; pass it to compile_schema() or register_or_get().

Example:
    >>> from docshape.templates import get_template
    >>> descriptor = get_template("user")
    >>> descriptor["role"]["enum"]
    ['user', 'admin', 'moderator']
"""

from __future__ import annotations

import copy
from typing import Any, Dict

TEMPLATES: Dict[str, Dict[str, Any]] = {
    "user": {
        # Identity
        "firstName": "string!",
        "lastName": "string!",
        "email": "email",
        "password": "password",
        "avatar": "url",
        # Profile
        "birthDate": "date?",
        "phone": "string?",
        "bio": "string?",
        # Status
        "isActive": "boolean+",
        "isVerified": "boolean+",
        "role": {"type": str, "enum": ["user", "admin", "moderator"], "default": "user"},
        "permissions": ["string"],
        # Metrics
        "loginCount": {"type": int, "default": 0},
        "lastLogin": "date?",
        # Preferences
        "settings": {
            "theme": {"type": str, "default": "light"},
            "notifications": {"type": bool, "default": True},
            "language": {"type": str, "default": "en"},
        },
    },
    "product": {
        "name": "string!",
        "sku": "string!!",
        "description": "string?",
        "category": "string!",
        "tags": ["string"],
        # Pricing
        "price": {"type": float, "required": True, "min": 0},
        "comparePrice": {"type": float, "min": 0},
        "cost": {"type": float, "min": 0},
        # Inventory
        "inventory": {
            "quantity": {"type": int, "default": 0},
            "trackQuantity": {"type": bool, "default": True},
            "allowOutOfStock": {"type": bool, "default": False},
        },
        # Status
        "isActive": "boolean+",
        "isFeatured": "boolean+",
        "isDigital": "boolean+",
        # Media
        "images": ["url"],
        "thumbnail": "url",
        # SEO
        "seo": {
            "title": "string?",
            "description": "string?",
            "slug": "string?",
        },
        # Analytics
        "viewCount": {"type": int, "default": 0},
        "purchaseCount": {"type": int, "default": 0},
    },
    "post": {
        "title": "string!",
        "content": "string!",
        "excerpt": "string?",
        # Authorship
        "author": "userRef",
        "coAuthors": ["userRef"],
        # Metadata
        "status": {"type": str, "enum": ["draft", "published", "archived"], "default": "draft"},
        "visibility": {"type": str, "enum": ["public", "private", "members"], "default": "public"},
        # Categorization
        "categories": ["string"],
        "tags": ["string"],
        # Media
        "featuredImage": "url",
        "gallery": ["url"],
        # Engagement
        "viewCount": {"type": int, "default": 0},
        "likeCount": {"type": int, "default": 0},
        "commentCount": {"type": int, "default": 0},
        # SEO
        "meta": {
            "title": "string?",
            "description": "string?",
            "keywords": ["string"],
        },
    },
    "order": {
        "orderNumber": "string!!",
        "status": {
            "type": str,
            "enum": [
                "pending",
                "confirmed",
                "processing",
                "shipped",
                "delivered",
                "cancelled",
                "refunded",
            ],
            "default": "pending",
        },
        # Customer
        "customer": "userRef",
        "email": "email",
        "shippingAddress": {
            "name": "string!",
            "street": "string!",
            "city": "string!",
            "state": "string!",
            "country": "string!",
            "zipCode": "string!",
            "phone": "string?",
        },
        # Items
        "items": [
            {
                "product": "productRef",
                "name": "string!",
                "price": "number!",
                "quantity": {"type": int, "min": 1},
                "total": "number!",
            }
        ],
        # Financials
        "subtotal": "number!",
        "tax": {"type": float, "default": 0},
        "shipping": {"type": float, "default": 0},
        "discount": {"type": float, "default": 0},
        "total": "number!",
        # Payment
        "paymentStatus": {
            "type": str,
            "enum": ["pending", "paid", "failed", "refunded"],
            "default": "pending",
        },
        "paymentMethod": "string?",
        "transactionId": "string?",
    },
}


def template_names() -> list[str]:
    return sorted(TEMPLATES)


def get_template(name: str) -> Dict[str, Any]:
    """Get a copy of a template descriptor.

    Raises:
        KeyError: If no template has this name
    """
    if name not in TEMPLATES:
        raise KeyError(f"Unknown template '{name}'. Valid templates: {template_names()}")
    return copy.deepcopy(TEMPLATES[name])
