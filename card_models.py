"""Data model shared by template extraction, card data resolution and rendering."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union


DEFAULT_CARD_WIDTH_MM = 86.0
DEFAULT_CARD_HEIGHT_MM = 54.0
DEFAULT_FONT_SIZE = 16.0
DEFAULT_FIELD_COLOR = "#000000"


class FieldType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    BARCODE = "barcode"
    DATE = "date"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "FieldType":
        """Map a placeholder kind or stored type to a field type, defaulting to text."""
        normalized = (value or "").strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        return cls.TEXT


class Alignment(str, Enum):
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"

    @classmethod
    def from_text_anchor(cls, anchor: Optional[str]) -> "Alignment":
        normalized = (anchor or "").strip().lower()
        if normalized == "middle":
            return cls.CENTER
        if normalized == "end":
            return cls.RIGHT
        return cls.LEFT

    def to_text_anchor(self) -> str:
        if self is Alignment.CENTER:
            return "middle"
        if self is Alignment.RIGHT:
            return "end"
        return "start"


def is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    return False


def _optional_string(value: object) -> Optional[str]:
    if is_missing(value):
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: object) -> Optional[float]:
    if is_missing(value):
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


@dataclass(frozen=True)
class ViewBox:
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class TemplateMeta:
    name: str
    width: float
    height: float
    unit: str
    raw_svg: str
    view_box: Optional[ViewBox] = None
    fonts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "name": self.name,
                "width": self.width,
                "height": self.height,
                "unit": self.unit,
                "rawSvg": self.raw_svg,
                "viewBox": self.view_box.to_dict() if self.view_box else None,
                "fonts": list(self.fonts),
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TemplateMeta":
        view_box_data = data.get("viewBox")
        view_box = None
        if view_box_data:
            view_box = ViewBox(
                float(view_box_data["x"]),
                float(view_box_data["y"]),
                float(view_box_data["width"]),
                float(view_box_data["height"]),
            )
        return cls(
            name=str(data.get("name", "template.svg")),
            width=float(data.get("width", DEFAULT_CARD_WIDTH_MM)),
            height=float(data.get("height", DEFAULT_CARD_HEIGHT_MM)),
            unit=str(data.get("unit", "mm")),
            raw_svg=str(data["rawSvg"]),
            view_box=view_box,
            fonts=list(data.get("fonts") or []),
        )


@dataclass
class FieldDefinition:
    id: str
    label: str
    type: FieldType = FieldType.TEXT
    x: float = 0.0
    y: float = 0.0
    width: Optional[float] = None
    height: Optional[float] = None
    font_size: Optional[float] = None
    color: Optional[str] = None
    align: Alignment = Alignment.LEFT
    font_family: Optional[str] = None
    font_weight: Optional[int] = None
    auto: bool = False
    source_id: Optional[str] = None
    wrap_width: Optional[float] = None

    @property
    def layer_id(self) -> str:
        """Key used by field mappings: the bound SVG id, or the field id for manual fields."""
        return self.source_id or self.id

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "label": self.label,
                "type": self.type.value,
                "x": self.x,
                "y": self.y,
                "width": self.width,
                "height": self.height,
                "fontSize": self.font_size,
                "color": self.color,
                "align": self.align.value,
                "fontFamily": self.font_family,
                "fontWeight": self.font_weight,
                "auto": self.auto,
                "sourceId": self.source_id,
                "wrapWidth": self.wrap_width,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldDefinition":
        align_value = str(data.get("align") or Alignment.LEFT.value).lower()
        try:
            align = Alignment(align_value)
        except ValueError:
            align = Alignment.LEFT
        font_weight = data.get("fontWeight")
        return cls(
            id=str(data["id"]),
            label=str(data.get("label") or data["id"]),
            type=FieldType.from_wire(data.get("type")),
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            width=_optional_float(data.get("width")),
            height=_optional_float(data.get("height")),
            font_size=_optional_float(data.get("fontSize")),
            color=_optional_string(data.get("color")),
            align=align,
            font_family=_optional_string(data.get("fontFamily")),
            font_weight=int(font_weight) if font_weight is not None else None,
            auto=bool(data.get("auto", False)),
            source_id=_optional_string(data.get("sourceId")),
            wrap_width=_optional_float(data.get("wrapWidth")),
        )


@dataclass(frozen=True)
class ImageValue:
    src: str
    scale: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "src": self.src,
            "scale": self.scale,
            "offsetX": self.offset_x,
            "offsetY": self.offset_y,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImageValue":
        return cls(
            src=str(data["src"]),
            scale=float(data.get("scale", 1.0)),
            offset_x=float(data.get("offsetX", 0.0)),
            offset_y=float(data.get("offsetY", 0.0)),
        )


CardDataValue = Union[str, ImageValue]
CardData = Dict[str, CardDataValue]


# Attribute name -> persisted camelCase key.
USER_FIELD_KEYS: Dict[str, str] = {
    "first_name": "firstName",
    "last_name": "lastName",
    "middle_name": "middleName",
    "student_id": "studentId",
    "department": "department",
    "position": "position",
    "grade": "grade",
    "email": "email",
    "phone_number": "phoneNumber",
    "address": "address",
    "emergency_contact": "emergencyContact",
    "photo_path": "photoPath",
    "signature_path": "signaturePath",
    "issue_date": "issueDate",
    "expiry_date": "expiryDate",
    "birth_date": "birthDate",
}


@dataclass(frozen=True)
class UserData:
    first_name: str
    last_name: str
    middle_name: Optional[str] = None
    student_id: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    grade: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None
    photo_path: Optional[str] = None
    signature_path: Optional[str] = None
    issue_date: Optional[str] = None
    expiry_date: Optional[str] = None
    birth_date: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        values = {key: getattr(self, attribute) for attribute, key in USER_FIELD_KEYS.items()}
        values["id"] = self.id
        return _drop_none(values)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "UserData":
        """Build a user from a spreadsheet row or a persisted record.

        Keys may be camelCase (``firstName``), snake_case (``first_name``)
        or common spreadsheet headers such as ``Surname`` or ``DOB``.
        Blank and NaN cells are treated as absent.
        """
        from field_naming import suggest_user_field

        key_lookup = {key.lower(): attribute for attribute, key in USER_FIELD_KEYS.items()}
        values: Dict[str, Optional[str]] = {}
        suggestions: List[tuple] = []
        for raw_key, raw_value in record.items():
            key = str(raw_key).strip()
            if key in USER_FIELD_KEYS:
                attribute = key
            elif key.lower() in key_lookup:
                attribute = key_lookup[key.lower()]
            else:
                suggestions.append((key, raw_value))
                continue
            if attribute not in values:
                values[attribute] = _optional_string(raw_value)

        # Explicit keys win over header guesses ("id" would otherwise shadow studentId).
        for key, raw_value in suggestions:
            suggested = suggest_user_field(key)
            if suggested is None:
                continue
            attribute = key_lookup.get(suggested.lower())
            if attribute is not None and attribute not in values:
                values[attribute] = _optional_string(raw_value)

        user_id = _optional_string(record.get("id"))
        return cls(
            first_name=values.pop("first_name", None) or "",
            last_name=values.pop("last_name", None) or "",
            id=user_id,
            **values,
        )


CUSTOM_STATIC_SENTINEL = "__custom__"


@dataclass(frozen=True)
class FieldMapping:
    svg_layer_id: str
    standard_field_name: str
    custom_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "svgLayerId": self.svg_layer_id,
                "standardFieldName": self.standard_field_name,
                "customValue": self.custom_value,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldMapping":
        return cls(
            svg_layer_id=str(data["svgLayerId"]),
            standard_field_name=str(data["standardFieldName"]),
            custom_value=None if data.get("customValue") is None else str(data["customValue"]),
        )
