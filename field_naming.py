"""Standardised field naming convention used to bind SVG layers to user data.

A field name has the shape ``{type}_{format...}_{capitalization}``::

    fullName_Last_Comma_First_MiddleInitial_AllCaps  ->  "SMITH, JOHN A."
    fullName_First_MiddleInitial_Last_TitleCase      ->  "John A. Smith"
    firstName_AllCaps                                ->  "JOHN"
    studentId                                        ->  "12345"
    photo                                            ->  ImageValue(src=<photo path>)

Unknown format tokens and capitalization keywords are skipped so that
names stored by older versions of the mapping tool keep resolving. Pass
``strict=True`` to :func:`resolve_field` to have them reported instead.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Sequence, Union

from card_models import CUSTOM_STATIC_SENTINEL, ImageValue, UserData

logger = logging.getLogger(__name__)


class NamingError(ValueError):
    """Raised in strict mode when a field name uses an unknown part."""


class Capitalization(Enum):
    UPPER = "upper"
    TITLE = "title"
    LOWER = "lower"


class NameToken(Enum):
    FIRST = "first"
    LAST = "last"
    MIDDLE_NAME = "middlename"
    MIDDLE_INITIAL = "middleinitial"
    COMMA = "comma"


class ImageKind(Enum):
    PHOTO = "photo"
    SIGNATURE = "signature"
    LOGO = "logo"


_CAPITALIZATION_KEYWORDS: Dict[str, Capitalization] = {
    "allcaps": Capitalization.UPPER,
    "upper": Capitalization.UPPER,
    "titlecase": Capitalization.TITLE,
    "title": Capitalization.TITLE,
    "lowercase": Capitalization.LOWER,
    "lower": Capitalization.LOWER,
}

_NAME_TOKENS: Dict[str, NameToken] = {token.value: token for token in NameToken}

_IMAGE_TYPES: Dict[str, ImageKind] = {
    "photo": ImageKind.PHOTO,
    "profilephoto": ImageKind.PHOTO,
    "signature": ImageKind.SIGNATURE,
    "logo": ImageKind.LOGO,
}

# Field type -> UserData attribute. Matching is case-sensitive.
SIMPLE_FIELDS: Dict[str, str] = {
    "firstName": "first_name",
    "lastName": "last_name",
    "middleName": "middle_name",
    "studentId": "student_id",
    "department": "department",
    "position": "position",
    "grade": "grade",
    "email": "email",
    "phoneNumber": "phone_number",
    "address": "address",
    "emergencyContact": "emergency_contact",
    "issueDate": "issue_date",
    "expiryDate": "expiry_date",
    "birthDate": "birth_date",
}

FULL_NAME_TYPE = "fullName"

CUSTOM_STATIC_LABEL = "custom static text"

STANDARD_FIELDS: Sequence[str] = (
    "firstName", "firstName_AllCaps", "firstName_TitleCase",
    "lastName", "lastName_AllCaps", "lastName_TitleCase",
    "middleName", "middleName_AllCaps", "middleName_TitleCase",
    "middleInitial", "middleInitial_AllCaps",
    "fullName_First_Last", "fullName_First_Last_AllCaps",
    "fullName_First_MiddleInitial_Last", "fullName_First_MiddleInitial_Last_AllCaps",
    "fullName_First_Middle_Last", "fullName_First_Middle_Last_AllCaps",
    "fullName_Last_Comma_First", "fullName_Last_Comma_First_AllCaps",
    "fullName_Last_Comma_First_MiddleInitial", "fullName_Last_Comma_First_MiddleInitial_AllCaps",
    "fullName_Last_Comma_First_Middle", "fullName_Last_Comma_First_Middle_AllCaps",
    "studentId", "department", "position", "grade", "email", "phoneNumber",
    "address", "emergencyContact", "issueDate", "expiryDate", "birthDate",
    "photo", "signature", "logo",
)

KNOWN_FIELD_IDS = frozenset(
    [
        "firstName", "lastName", "middleName", "fullName",
        "studentId", "department", "position", "grade",
        "email", "phoneNumber", "address", "emergencyContact",
        "issueDate", "expiryDate", "birthDate",
        "photo", "signature", "logo", "profilephoto", "ProfilePhoto",
    ]
)

_HEADER_SUGGESTIONS: Dict[str, str] = {
    "first name": "firstName",
    "firstname": "firstName",
    "given name": "firstName",
    "last name": "lastName",
    "lastname": "lastName",
    "surname": "lastName",
    "family name": "lastName",
    "middle name": "middleName",
    "middlename": "middleName",
    "student id": "studentId",
    "studentid": "studentId",
    "id": "studentId",
    "dept": "department",
    "department": "department",
    "position": "position",
    "title": "position",
    "role": "position",
    "grade": "grade",
    "class": "grade",
    "email": "email",
    "e-mail": "email",
    "phone": "phoneNumber",
    "phone number": "phoneNumber",
    "telephone": "phoneNumber",
    "address": "address",
    "emergency contact": "emergencyContact",
    "emergency": "emergencyContact",
    "photo": "photoPath",
    "photo path": "photoPath",
    "signature": "signaturePath",
    "signature path": "signaturePath",
    "issue date": "issueDate",
    "issued": "issueDate",
    "expiry date": "expiryDate",
    "expiry": "expiryDate",
    "expires": "expiryDate",
    "birth date": "birthDate",
    "birthday": "birthDate",
    "dob": "birthDate",
}

_FIELD_ID_ATTRIBUTE_RE = re.compile(r'id="([^"]+)"')


class ParsedFieldName(NamedTuple):
    field_type: str
    format_parts: Sequence[str]
    capitalization: Optional[Capitalization]


def is_custom_static(field_name: Optional[str]) -> bool:
    if not field_name:
        return False
    normalized = field_name.strip().lower()
    return normalized in {CUSTOM_STATIC_SENTINEL, CUSTOM_STATIC_LABEL}


def is_image_field(field_name: str) -> bool:
    return field_name.split("_", 1)[0].lower() in _IMAGE_TYPES


def parse_field_name(field_name: str) -> ParsedFieldName:
    """Split a field name into type, format parts and capitalization keyword.

    The last segment is only treated as capitalization when it is one of the
    known keywords, so ``fullName_First_Last`` keeps ``Last`` as a format part.
    """
    parts = field_name.split("_")
    field_type = parts[0]
    capitalization: Optional[Capitalization] = None
    format_parts: List[str] = parts[1:]
    if len(parts) > 1:
        capitalization = _CAPITALIZATION_KEYWORDS.get(parts[-1].lower())
        if capitalization is not None:
            format_parts = parts[1:-1]
    return ParsedFieldName(field_type, tuple(format_parts), capitalization)


def apply_capitalization(text: str, capitalization: Optional[Capitalization]) -> str:
    if capitalization is Capitalization.UPPER:
        return text.upper()
    if capitalization is Capitalization.LOWER:
        return text.lower()
    if capitalization is Capitalization.TITLE:
        return " ".join(word[:1].upper() + word[1:].lower() for word in text.split(" "))
    return text


def _resolve_image(field_type: str, user: UserData) -> Union[str, ImageValue]:
    kind = _IMAGE_TYPES[field_type.lower()]
    if kind is ImageKind.PHOTO:
        path = user.photo_path
    elif kind is ImageKind.SIGNATURE:
        path = user.signature_path
    else:
        # Logos are template-level artwork, not per-user data.
        path = None
    if not path:
        return ""
    return ImageValue(src=path, scale=1.0, offset_x=0.0, offset_y=0.0)


def _resolve_simple(field_type: str, user: UserData, *, strict: bool) -> str:
    attribute = SIMPLE_FIELDS.get(field_type)
    if attribute is None:
        if strict:
            raise NamingError(f"Unknown field type: {field_type!r}")
        logger.debug("Unknown field type %r resolves to an empty value", field_type)
        return ""
    return getattr(user, attribute) or ""


def format_full_name(format_parts: Sequence[str], user: UserData, *, strict: bool = False) -> str:
    """Join name tokens in order.

    A space follows every token except the last one, unless the next token
    is a comma; a comma is always followed by a single space. Unknown tokens
    contribute nothing but still take part in the spacing rule.
    """
    first_name = user.first_name or ""
    last_name = user.last_name or ""
    middle_name = user.middle_name or ""
    middle_initial = f"{middle_name[0]}." if middle_name else ""

    values = {
        NameToken.FIRST: first_name,
        NameToken.LAST: last_name,
        NameToken.MIDDLE_NAME: middle_name,
        NameToken.MIDDLE_INITIAL: middle_initial,
        NameToken.COMMA: ",",
    }

    pieces: List[str] = []
    lowered = [part.lower() for part in format_parts]
    for index, part in enumerate(lowered):
        token = _NAME_TOKENS.get(part)
        if token is None:
            if strict:
                raise NamingError(f"Unknown name token: {format_parts[index]!r}")
            logger.debug("Skipping unknown name token %r", format_parts[index])
        else:
            pieces.append(values[token])

        if index < len(lowered) - 1:
            next_part = lowered[index + 1]
            if part != NameToken.COMMA.value and next_part != NameToken.COMMA.value:
                pieces.append(" ")
            elif part == NameToken.COMMA.value:
                pieces.append(" ")

    return "".join(pieces).strip()


def resolve_field(
    field_name: str,
    user: UserData,
    literal_override: Optional[str] = None,
    *,
    strict: bool = False,
) -> Union[str, ImageValue]:
    """Resolve a standard field name against ``user``.

    Image types return an :class:`ImageValue` (or ``""`` when the user has no
    image). The custom static sentinel returns ``literal_override`` verbatim.
    """
    if is_custom_static(field_name):
        return literal_override if literal_override is not None else ""

    parsed = parse_field_name(field_name)

    if parsed.field_type.lower() in _IMAGE_TYPES:
        return _resolve_image(parsed.field_type, user)

    if parsed.field_type == FULL_NAME_TYPE and parsed.format_parts:
        value = format_full_name(parsed.format_parts, user, strict=strict)
        return apply_capitalization(value, parsed.capitalization)

    if parsed.format_parts and strict:
        raise NamingError(
            f"Field type {parsed.field_type!r} does not accept format parts: "
            + "_".join(parsed.format_parts)
        )

    value = _resolve_simple(parsed.field_type, user, strict=strict)
    return apply_capitalization(value, parsed.capitalization)


def suggest_user_field(header: str) -> Optional[str]:
    """Suggest the user attribute (camelCase) a spreadsheet column header refers to."""
    return _HEADER_SUGGESTIONS.get(header.strip().lower())


def extract_field_references(svg_content: str) -> List[str]:
    """List id values in ``svg_content`` that look like standard field names."""
    found: Dict[str, None] = {}
    for match in _FIELD_ID_ATTRIBUTE_RE.finditer(svg_content):
        identifier = match.group(1)
        if "_" in identifier or identifier in KNOWN_FIELD_IDS:
            found.setdefault(identifier, None)
    return list(found)


__all__ = [
    "Capitalization",
    "NameToken",
    "NamingError",
    "STANDARD_FIELDS",
    "apply_capitalization",
    "extract_field_references",
    "format_full_name",
    "is_custom_static",
    "parse_field_name",
    "resolve_field",
    "suggest_user_field",
]
