"""Turn a user record and the operator's field mappings into renderable card data."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from card_models import CUSTOM_STATIC_SENTINEL, CardData, FieldDefinition, FieldMapping, UserData
from field_naming import STANDARD_FIELDS, is_custom_static, resolve_field

logger = logging.getLogger(__name__)

AUTO_NAME_FIELD = "fullName_Last_Comma_First_MiddleInitial_AllCaps"

_PHOTO_ALIASES = {"profilephoto", "profile", "userphoto"}
_STUDENT_ID_ALIASES = {"studentid", "student_id", "id"}
_FULL_NAME_ALIASES = {"fullname", "name"}
_STANDARD_BY_LOWER = {name.lower(): name for name in STANDARD_FIELDS}


def split_mappings(mappings: Iterable[FieldMapping]) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Split persisted mappings into ``{layer: field name}`` and ``{layer: literal}``."""
    names: Dict[str, str] = {}
    custom_values: Dict[str, str] = {}
    for mapping in mappings:
        names[mapping.svg_layer_id] = mapping.standard_field_name
        if is_custom_static(mapping.standard_field_name) and mapping.custom_value is not None:
            custom_values[mapping.svg_layer_id] = mapping.custom_value
    return names, custom_values


def build_card_data(
    user: UserData,
    fields: Sequence[FieldDefinition],
    mappings: Mapping[str, str],
    custom_values: Optional[Mapping[str, str]] = None,
    *,
    strict: bool = False,
) -> CardData:
    """Resolve every mapped field for ``user``.

    Mappings are looked up by ``source_id`` (``id`` for hand-authored fields)
    and results are keyed by field ``id``. Unmapped fields are left out so the
    template's own content shows through.
    """
    custom_values = custom_values or {}
    card_data: CardData = {}
    for definition in fields:
        layer_id = definition.layer_id
        field_name = mappings.get(layer_id)
        if not field_name:
            continue
        literal = custom_values.get(layer_id) if is_custom_static(field_name) else None
        card_data[definition.id] = resolve_field(field_name, user, literal, strict=strict)
    return card_data


def build_card_data_from_mappings(
    user: UserData,
    fields: Sequence[FieldDefinition],
    mappings: Iterable[FieldMapping],
    *,
    strict: bool = False,
) -> CardData:
    names, custom_values = split_mappings(mappings)
    return build_card_data(user, fields, names, custom_values, strict=strict)


def _auto_mapping_for(definition: FieldDefinition) -> Optional[FieldMapping]:
    layer_id = definition.layer_id
    normalized = layer_id.lower()

    if layer_id in STANDARD_FIELDS:
        return FieldMapping(layer_id, layer_id)
    if normalized in _STANDARD_BY_LOWER:
        return FieldMapping(layer_id, _STANDARD_BY_LOWER[normalized])
    if normalized in _PHOTO_ALIASES:
        return FieldMapping(layer_id, "photo")
    if normalized in _STUDENT_ID_ALIASES:
        return FieldMapping(layer_id, "studentId")
    if normalized in _FULL_NAME_ALIASES:
        return FieldMapping(layer_id, AUTO_NAME_FIELD)
    if normalized.startswith("custom"):
        return FieldMapping(layer_id, CUSTOM_STATIC_SENTINEL, definition.label or "")
    return None


def generate_auto_mappings(fields: Sequence[FieldDefinition]) -> List[FieldMapping]:
    """Guess mappings for layers whose ids already follow the naming convention."""
    mappings: List[FieldMapping] = []
    for definition in fields:
        mapping = _auto_mapping_for(definition)
        if mapping is not None:
            mappings.append(mapping)
    logger.debug("Auto-mapped %d of %d field(s)", len(mappings), len(fields))
    return mappings


def is_auto_mappable(definition: FieldDefinition) -> bool:
    return _auto_mapping_for(definition) is not None


__all__ = [
    "build_card_data",
    "build_card_data_from_mappings",
    "generate_auto_mappings",
    "is_auto_mappable",
    "split_mappings",
]
