"""
Shorthand token table for docshape.

Maps shorthand strings such as "string!" or "email!!" to canonical field
descriptors. Tokens have the form base[marker]:

    base    string, number, boolean, date, array, object, buffer,
            decimal, map, mixed, or a named relation alias
    marker  ""   plain
            "!"  required
            "+"  has a sensible default
            "!!" required and unique
            "?"  explicitly optional (documentation only)

Named convenience tokens (email, email!!, password, url, phone, color and
the relation aliases) are entries of their own, not compositions.

Invariants:
    - resolve() is pure and total: unknown tokens fall back to a plain,
      not-required string descriptor and never raise
    - Every fallback is logged at WARNING level
    - Composite tokens are explicit entries; nothing is parsed at call time

How to change safely:
    - Add new tokens as new entries, never change the meaning of an existing one
    - Keep the base x marker enumeration complete when adding a base type
"""

from __future__ import annotations

import logging
from decimal import Decimal

from .types import (
    EMPTY_DICT,
    EMPTY_LIST,
    NOW,
    BaseType,
    FieldDescriptor,
    RelationMarker,
    Validator,
    ValidatorKind,
)

logger = logging.getLogger(__name__)

REQUIRED_MESSAGE = "{PATH} is required"

EMAIL_PATTERN = r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$"
URL_PATTERN = (
    r"https?:\/\/(www\.)?[-a-zA-Z0-9@:%._\+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"([-a-zA-Z0-9()@:%_\+.~#?&//=]*)"
)
PHONE_PATTERN = r"^\+?[0-9][0-9\s().-]{5,18}[0-9]$"
COLOR_PATTERN = r"^#(?:[0-9a-fA-F]{3}){1,2}$"

EMAIL_VALIDATOR = Validator(ValidatorKind.PATTERN, "Please enter a valid email", EMAIL_PATTERN)
URL_VALIDATOR = Validator(ValidatorKind.PATTERN, "Please enter a valid URL", URL_PATTERN)
PHONE_VALIDATOR = Validator(ValidatorKind.PATTERN, "Please enter a valid phone number", PHONE_PATTERN)
COLOR_VALIDATOR = Validator(ValidatorKind.PATTERN, "Please enter a valid hex color", COLOR_PATTERN)

PASSWORD_MIN_LENGTH = 6

FALLBACK = FieldDescriptor(base_type=BaseType.STRING)


def _plain(base: BaseType) -> FieldDescriptor:
    return FieldDescriptor(base_type=base)


def _required(base: BaseType) -> FieldDescriptor:
    return FieldDescriptor(base_type=base, required=True, required_message=REQUIRED_MESSAGE)


def _with_default(base: BaseType, default: object) -> FieldDescriptor:
    return FieldDescriptor(base_type=base, default=default)


def _required_unique(base: BaseType) -> FieldDescriptor:
    return FieldDescriptor(
        base_type=base, required=True, unique=True, required_message=REQUIRED_MESSAGE
    )


def _ref(model: str, required: bool = False) -> FieldDescriptor:
    return FieldDescriptor(
        base_type=BaseType.OBJECTID,
        relation=RelationMarker(model),
        required=required,
        required_message=REQUIRED_MESSAGE if required else None,
    )


_S = BaseType.STRING
_N = BaseType.NUMBER
_B = BaseType.BOOLEAN
_D = BaseType.DATE
_A = BaseType.ARRAY
_O = BaseType.OBJECT
_BUF = BaseType.BUFFER
_DEC = BaseType.DECIMAL
_MAP = BaseType.MAP
_MIX = BaseType.MIXED

TOKEN_TABLE: dict[str, FieldDescriptor] = {
    # ========== string ==========
    "string": _plain(_S),
    "string!": _required(_S),
    "string+": _with_default(_S, ""),
    "string!!": _required_unique(_S),
    "string?": _plain(_S),
    # ========== number ==========
    "number": _plain(_N),
    "number!": _required(_N),
    "number+": _with_default(_N, 0),
    "number!!": _required_unique(_N),
    "number?": _plain(_N),
    # ========== boolean ==========
    "boolean": _plain(_B),
    "boolean!": _required(_B),
    "boolean+": _with_default(_B, False),
    "boolean!!": _required_unique(_B),
    "boolean?": _plain(_B),
    # ========== date ==========
    "date": _plain(_D),
    "date!": _required(_D),
    "date+": _with_default(_D, NOW),
    "date!!": _required_unique(_D),
    "date?": _plain(_D),
    # ========== array ==========
    "array": _plain(_A),
    "array!": _required(_A),
    "array+": _with_default(_A, EMPTY_LIST),
    "array!!": _required_unique(_A),
    "array?": _plain(_A),
    # ========== object ==========
    "object": _plain(_O),
    "object!": _required(_O),
    "object+": _with_default(_O, EMPTY_DICT),
    "object!!": _required_unique(_O),
    "object?": _plain(_O),
    # ========== buffer ==========
    "buffer": _plain(_BUF),
    "buffer!": _required(_BUF),
    "buffer+": _with_default(_BUF, b""),
    "buffer!!": _required_unique(_BUF),
    "buffer?": _plain(_BUF),
    # ========== decimal ==========
    "decimal": _plain(_DEC),
    "decimal!": _required(_DEC),
    "decimal+": _with_default(_DEC, Decimal("0")),
    "decimal!!": _required_unique(_DEC),
    "decimal?": _plain(_DEC),
    # ========== map ==========
    "map": _plain(_MAP),
    "map!": _required(_MAP),
    "map+": _with_default(_MAP, EMPTY_DICT),
    "map!!": _required_unique(_MAP),
    "map?": _plain(_MAP),
    # ========== mixed ==========
    "mixed": _plain(_MIX),
    "mixed!": _required(_MIX),
    "mixed+": _with_default(_MIX, EMPTY_DICT),
    "mixed!!": _required_unique(_MIX),
    "mixed?": _plain(_MIX),
    # ========== email & url shortcuts ==========
    "email": FieldDescriptor(
        base_type=_S,
        required=True,
        required_message=REQUIRED_MESSAGE,
        lowercase=True,
        validators=(EMAIL_VALIDATOR,),
    ),
    "email!!": FieldDescriptor(
        base_type=_S,
        required=True,
        unique=True,
        required_message=REQUIRED_MESSAGE,
        lowercase=True,
        validators=(EMAIL_VALIDATOR,),
    ),
    "password": FieldDescriptor(
        base_type=_S,
        required=True,
        required_message=REQUIRED_MESSAGE,
        min_length=PASSWORD_MIN_LENGTH,
        validators=(
            Validator(
                ValidatorKind.MIN_LENGTH,
                "{PATH} must be at least {MIN} characters",
                PASSWORD_MIN_LENGTH,
            ),
        ),
    ),
    "url": FieldDescriptor(base_type=_S, validators=(URL_VALIDATOR,)),
    "phone": FieldDescriptor(base_type=_S, validators=(PHONE_VALIDATOR,)),
    "color": FieldDescriptor(base_type=_S, validators=(COLOR_VALIDATOR,)),
    # ========== relation aliases ==========
    "userRef": _ref("User"),
    "userRef!": _ref("User", required=True),
    "userRef?": _ref("User"),
    "postRef": _ref("Post"),
    "postRef!": _ref("Post", required=True),
    "postRef?": _ref("Post"),
    "productRef": _ref("Product"),
    "productRef!": _ref("Product", required=True),
    "productRef?": _ref("Product"),
    "categoryRef": _ref("Category"),
    "categoryRef!": _ref("Category", required=True),
    "categoryRef?": _ref("Category"),
    "commentRef": _ref("Comment"),
    "commentRef!": _ref("Comment", required=True),
    "commentRef?": _ref("Comment"),
    "orderRef": _ref("Order"),
    "orderRef!": _ref("Order", required=True),
    "orderRef?": _ref("Order"),
}


def resolve(token: str) -> FieldDescriptor:
    """Resolve a shorthand token to its canonical descriptor.

    Args:
        token: Shorthand token, e.g. "string!" or "email!!"

    Returns:
        The table entry, or FALLBACK for unknown tokens

    Example:
        >>> resolve("number+").default
        0
        >>> resolve("strnig!") == FALLBACK
        True
    """
    descriptor = TOKEN_TABLE.get(token)
    if descriptor is None:
        logger.warning(f"Unknown shorthand token '{token}', falling back to plain string")
        return FALLBACK
    return descriptor


def is_known_token(token: str) -> bool:
    """Whether the token is an entry of the table."""
    return token in TOKEN_TABLE


def known_tokens() -> list[str]:
    """All recognized tokens in table order."""
    return list(TOKEN_TABLE)
