"""Parse SVG ID card templates and discover the fields that can be bound to user data."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple
from xml.dom.minidom import Document, Element, Node, parseString
from xml.parsers.expat import ExpatError

from card_models import (
    DEFAULT_CARD_HEIGHT_MM,
    DEFAULT_CARD_WIDTH_MM,
    DEFAULT_FIELD_COLOR,
    DEFAULT_FONT_SIZE,
    Alignment,
    FieldDefinition,
    FieldType,
    TemplateMeta,
    ViewBox,
)
from text_metrics import measure_widest_line

logger = logging.getLogger(__name__)

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"

PLACEHOLDER_PATTERN = re.compile(r"\{\{(field|image|barcode|date):([a-zA-Z0-9_-]+)\}\}")
IMAGE_GROUP_PATTERN = re.compile(r"photo|image", re.IGNORECASE)

_UNIT_RE = re.compile(r"([0-9.]+)\s*(mm|px)?", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_TRANSLATE_RE = re.compile(r"translate\(([^)]+)\)", re.IGNORECASE)
_COORDINATE_SPLIT_RE = re.compile(r"[\s,]+")
_CSS_RULE_RE = re.compile(r"([^{]+)\{([^}]+)\}")
_CSS_CLASS_RE = re.compile(r"\.([a-zA-Z0-9_-]+)")
_CSS_FONT_FAMILY_RE = re.compile(r"font-family\s*:\s*([^;}\n]+)", re.IGNORECASE)
FONT_SIZE_PATTERN = re.compile(r"font-size\s*:\s*([0-9.]+)(?:px)?", re.IGNORECASE)
FONT_FAMILY_PATTERN = re.compile(r"font-family\s*:\s*([^;]+)", re.IGNORECASE)
FONT_WEIGHT_PATTERN = re.compile(r"font-weight\s*:\s*([^;]+)", re.IGNORECASE)
FILL_PATTERN = re.compile(r"fill\s*:\s*([^;]+)", re.IGNORECASE)

PLACEHOLDER_FALLBACK_START = 10.0
PLACEHOLDER_FALLBACK_STEP = 8.0


class TemplateParseError(ValueError):
    """Raised when a template is not well-formed XML or has no <svg> element."""


class TemplateExtraction(NamedTuple):
    metadata: TemplateMeta
    fields: List[FieldDefinition]


# ---------------------------------------------------------------------------
# DOM helpers shared with the renderer


def local_name(node: Node) -> str:
    name = getattr(node, "localName", None) or getattr(node, "tagName", "") or ""
    return name.split(":")[-1].lower()


def iter_elements(root: Node, name: Optional[str] = None) -> Iterator[Element]:
    """Yield descendant elements of ``root`` in document order (``root`` excluded)."""
    for child in root.childNodes:
        if child.nodeType != Node.ELEMENT_NODE:
            continue
        if name is None or local_name(child) == name:
            yield child  # type: ignore[misc]
        yield from iter_elements(child, name)


def first_element(root: Node, name: str) -> Optional[Element]:
    return next(iter_elements(root, name), None)


def text_content(node: Node) -> str:
    if node.nodeType in (Node.TEXT_NODE, Node.CDATA_SECTION_NODE):
        return node.data
    return "".join(text_content(child) for child in node.childNodes)


def get_attribute(element: Element, name: str) -> Optional[str]:
    if element.hasAttribute(name):
        return element.getAttribute(name)
    return None


def has_ancestor(element: Element, name: str) -> bool:
    parent = element.parentNode
    while parent is not None and parent.nodeType == Node.ELEMENT_NODE:
        if local_name(parent) == name:
            return True
        parent = parent.parentNode
    return False


def index_element_ids(root: Element) -> Dict[str, Element]:
    """Map id -> first element carrying it, like ``document.getElementById``."""
    ids: Dict[str, Element] = {}
    for element in _iter_self_and_descendants(root):
        element_id = element.getAttribute("id")
        if element_id and element_id not in ids:
            ids[element_id] = element
    return ids


def _iter_self_and_descendants(root: Element) -> Iterator[Element]:
    yield root
    yield from iter_elements(root)


def format_float(value: float) -> str:
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def read_numeric(value: Optional[str]) -> Optional[float]:
    """Leading number of an attribute value (``"12.5px"`` -> 12.5)."""
    if value is None:
        return None
    match = _NUMBER_RE.match(value.strip())
    if not match:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def parse_svg_document(raw_svg: str) -> Tuple[Document, Element]:
    try:
        doc = parseString(raw_svg)
    except ExpatError as exc:
        raise TemplateParseError(f"Template is not well-formed XML: {exc}") from exc

    root = doc.documentElement
    if root is not None and local_name(root) == "svg":
        return doc, root
    svg_node = first_element(doc, "svg")
    if svg_node is None:
        raise TemplateParseError("Uploaded file does not contain a valid <svg> root element.")
    return doc, svg_node


# ---------------------------------------------------------------------------
# Style lookups


def parse_css_font_sizes(root: Node) -> Dict[str, float]:
    """Class name -> font size declared in any <style> block."""
    sizes: Dict[str, float] = {}
    for style in iter_elements(root, "style"):
        css = text_content(style)
        for selectors, declarations in _CSS_RULE_RE.findall(css):
            size_match = FONT_SIZE_PATTERN.search(declarations)
            if not size_match:
                continue
            try:
                size = float(size_match.group(1))
            except ValueError:
                continue
            for class_name in _CSS_CLASS_RE.findall(selectors):
                sizes[class_name] = size
    return sizes


def css_font_size_for(element: Element, css_font_sizes: Mapping[str, float]) -> Optional[float]:
    """Font size from the element's own classes only."""
    for class_name in (element.getAttribute("class") or "").split():
        if class_name in css_font_sizes:
            return css_font_sizes[class_name]
    return None


def get_font_size(element: Element, css_font_sizes: Mapping[str, float]) -> Optional[float]:
    attribute_size = read_numeric(get_attribute(element, "font-size"))
    if attribute_size is not None:
        return attribute_size

    style_match = FONT_SIZE_PATTERN.search(element.getAttribute("style") or "")
    if style_match:
        try:
            return float(style_match.group(1))
        except ValueError:
            pass

    class_size = css_font_size_for(element, css_font_sizes)
    if class_size is not None:
        return class_size

    tspan = first_element(element, "tspan")
    if tspan is not None:
        return css_font_size_for(tspan, css_font_sizes)
    return None


def _parse_font_family(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    for entry in value.split(","):
        cleaned = re.sub(r"['\";]", "", entry).strip()
        if cleaned:
            return cleaned
    return None


def get_font_family(element: Element) -> Optional[str]:
    direct = _parse_font_family(get_attribute(element, "font-family"))
    if direct:
        return direct
    match = FONT_FAMILY_PATTERN.search(element.getAttribute("style") or "")
    return _parse_font_family(match.group(1)) if match else None


def _parse_int_prefix(value: str) -> Optional[int]:
    match = re.match(r"\s*([+-]?\d+)", value)
    return int(match.group(1)) if match else None


def get_font_weight(element: Element) -> Optional[int]:
    attribute = get_attribute(element, "font-weight")
    if attribute:
        weight = _parse_int_prefix(attribute)
        if weight is not None:
            return weight
    match = FONT_WEIGHT_PATTERN.search(element.getAttribute("style") or "")
    return _parse_int_prefix(match.group(1)) if match else None


def get_fill_color(element: Element) -> Optional[str]:
    attribute = get_attribute(element, "fill")
    if attribute and attribute.lower() != "none":
        return attribute
    match = FILL_PATTERN.search(element.getAttribute("style") or "")
    color = match.group(1).strip() if match else None
    if color and color.lower() != "none":
        return color
    return None


def extract_font_families(root: Element) -> List[str]:
    """Font families referenced by elements, inline styles and <style> blocks."""
    fonts: Dict[str, None] = {}
    for element in _iter_self_and_descendants(root):
        if not (element.hasAttribute("font-family") or local_name(element) == "text"):
            continue
        if has_ancestor(element, "defs"):
            continue
        family = get_font_family(element)
        if family:
            fonts.setdefault(family, None)

    for style in iter_elements(root, "style"):
        for declaration in _CSS_FONT_FAMILY_RE.findall(text_content(style)):
            family = _parse_font_family(declaration)
            if family:
                fonts.setdefault(family, None)
    return list(fonts)


# ---------------------------------------------------------------------------
# Geometry and naming helpers


def clamp(value: float, minimum: float, maximum: float) -> float:
    return min(max(value, minimum), maximum)


def to_percent(value: Optional[float], total: Optional[float], fallback: float) -> float:
    if value is None or not total:
        return clamp(fallback, 0.0, 100.0)
    return clamp(value / total * 100.0, 0.0, 100.0)


def parse_unit(value: Optional[str]) -> Tuple[Optional[float], Optional[str]]:
    if not value or value.strip().endswith("%"):
        return None, None
    match = _UNIT_RE.search(value)
    if not match:
        return None, None
    try:
        numeric = float(match.group(1))
    except ValueError:
        return None, None
    unit = match.group(2).lower() if match.group(2) else None
    return numeric, unit


def parse_view_box(value: Optional[str]) -> Optional[ViewBox]:
    if not value:
        return None
    numbers = [read_numeric(part) for part in _COORDINATE_SPLIT_RE.split(value.strip()) if part]
    if len(numbers) != 4 or any(number is None for number in numbers):
        return None
    return ViewBox(*numbers)  # type: ignore[arg-type]


def parse_translate(value: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    if not value:
        return None, None
    match = _TRANSLATE_RE.search(value)
    if not match:
        return None, None
    parts = [part for part in _COORDINATE_SPLIT_RE.split(match.group(1).strip()) if part]
    x = read_numeric(parts[0]) if parts else None
    y = read_numeric(parts[1]) if len(parts) > 1 else None
    return x, y


def get_text_position(element: Element) -> Tuple[float, float]:
    """Absolute baseline of a <text>: translate() plus x/y, refined by the first tspan."""
    translate_x, translate_y = parse_translate(get_attribute(element, "transform"))
    x = translate_x or 0.0
    y = translate_y or 0.0

    x_attribute = read_numeric(get_attribute(element, "x"))
    y_attribute = read_numeric(get_attribute(element, "y"))
    if x_attribute is not None:
        x += x_attribute
    if y_attribute is not None:
        y += y_attribute

    tspan = first_element(element, "tspan")
    if tspan is not None:
        tspan_x = read_numeric(get_attribute(tspan, "x"))
        tspan_y = read_numeric(get_attribute(tspan, "y"))
        if tspan_x is not None:
            x = (translate_x or 0.0) + tspan_x
        if tspan_y is not None:
            y = (translate_y or 0.0) + tspan_y
    return x, y


def group_tspans_by_line(element: Element) -> List[str]:
    """Text of each visual line, grouping tspans by their cumulative y position."""
    tspans = list(iter_elements(element, "tspan"))
    if not tspans:
        content = text_content(element).strip()
        return [content] if content else []

    line_groups: Dict[float, List[str]] = {}
    current_y = 0.0
    for tspan in tspans:
        y_attribute = read_numeric(get_attribute(tspan, "y"))
        dy_attribute = read_numeric(get_attribute(tspan, "dy"))
        if y_attribute is not None:
            current_y = y_attribute
        elif dy_attribute is not None:
            current_y += dy_attribute
        line_groups.setdefault(round(current_y, 2), []).append(text_content(tspan))

    lines = ("".join(texts).strip() for _, texts in sorted(line_groups.items()))
    return [line for line in lines if line]


def sanitize_identifier(value: Optional[str]) -> str:
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


def slugify(value: str, fallback: str = "text") -> str:
    return sanitize_identifier(value) or fallback


def label_from_id(value: str) -> str:
    spaced = re.sub(r"[-_]+", " ", value)
    return re.sub(r"\b\w", lambda match: match.group(0).upper(), spaced)


def ensure_node_id(element: Element, prefix: str, index: int) -> str:
    """Return the element id, assigning ``{prefix}-{index}`` when it has none."""
    existing = (element.getAttribute("id") or "").strip()
    if existing:
        return existing
    generated = f"{prefix}-{index}"
    element.setAttribute("id", generated)
    return generated


def _alignment_of(element: Element) -> Alignment:
    return Alignment.from_text_anchor(get_attribute(element, "text-anchor"))


def dedupe_fields(fields: Sequence[FieldDefinition]) -> List[FieldDefinition]:
    """Suffix repeated ``sourceId``/``id`` keys with ``-2``, ``-3``, ..."""
    seen: Dict[str, int] = {}
    result: List[FieldDefinition] = []
    for definition in fields:
        key = definition.layer_id
        count = seen.get(key)
        if count is None:
            seen[key] = 1
            result.append(definition)
            continue
        count += 1
        seen[key] = count
        logger.debug(
            "Layer id %r is used by %d elements; only the first is bound at render time", key, count
        )
        definition.id = f"{definition.id}-{count}"
        definition.label = f"{definition.label} ({count})"
        result.append(definition)
    return result


# ---------------------------------------------------------------------------
# Field extraction


def _extract_placeholders(
    root: Element, dimensions: Tuple[float, float], css_font_sizes: Dict[str, float]
) -> List[FieldDefinition]:
    width, height = dimensions
    fields: List[FieldDefinition] = []
    fallback_offset = PLACEHOLDER_FALLBACK_START
    index = 0

    for element in _iter_self_and_descendants(root):
        raw_id = element.getAttribute("id")
        if not raw_id:
            continue
        match = PLACEHOLDER_PATTERN.search(raw_id)
        if not match:
            continue
        kind, name = match.groups()

        element_width = read_numeric(get_attribute(element, "width"))
        element_height = read_numeric(get_attribute(element, "height"))
        source_id = ensure_node_id(element, "placeholder-field", index)

        fields.append(
            FieldDefinition(
                id=name,
                label=label_from_id(name),
                type=FieldType.from_wire(kind),
                x=to_percent(read_numeric(get_attribute(element, "x")), width, fallback_offset),
                y=to_percent(read_numeric(get_attribute(element, "y")), height, fallback_offset),
                width=to_percent(element_width, width, 20.0) if element_width is not None else None,
                height=to_percent(element_height, height, 10.0) if element_height is not None else None,
                font_size=get_font_size(element, css_font_sizes) or DEFAULT_FONT_SIZE,
                color=get_fill_color(element) or DEFAULT_FIELD_COLOR,
                align=_alignment_of(element),
                font_family=get_font_family(element),
                font_weight=get_font_weight(element),
                auto=True,
                source_id=source_id,
            )
        )
        fallback_offset += PLACEHOLDER_FALLBACK_STEP
        index += 1

    return dedupe_fields(fields)


def _extract_text_fields(
    root: Element,
    dimensions: Tuple[float, float],
    css_font_sizes: Dict[str, float],
    font_dirs: Optional[Iterable[Path]],
) -> List[FieldDefinition]:
    width, height = dimensions
    fields: List[FieldDefinition] = []
    index = 1

    for element in iter_elements(root, "text"):
        if has_ancestor(element, "defs"):
            continue
        content = re.sub(r"\s+", " ", text_content(element)).strip()
        if not content:
            continue

        x, y = get_text_position(element)
        font_family = get_font_family(element)
        font_size = get_font_size(element, css_font_sizes) or DEFAULT_FONT_SIZE
        font_weight = get_font_weight(element)

        wrap_width: Optional[float] = None
        lines = group_tspans_by_line(element)
        if len(lines) > 1:
            wrap_width = measure_widest_line(lines, font_family, font_size, font_weight, font_dirs)

        source_id = ensure_node_id(element, "text-field", index)
        id_base = sanitize_identifier(source_id) or slugify(content)

        fields.append(
            FieldDefinition(
                id=f"{id_base}_{index}",
                label=content,
                type=FieldType.TEXT,
                x=to_percent(x, width, 10.0 + index * 5),
                y=to_percent(y, height, 10.0 + index * 5),
                font_size=font_size,
                color=get_fill_color(element) or DEFAULT_FIELD_COLOR,
                align=_alignment_of(element),
                font_family=font_family,
                font_weight=font_weight,
                auto=True,
                source_id=source_id,
                wrap_width=wrap_width,
            )
        )
        index += 1

    return dedupe_fields(fields)


def _extract_image_placeholders(root: Element, dimensions: Tuple[float, float]) -> List[FieldDefinition]:
    width, height = dimensions
    fields: List[FieldDefinition] = []
    index = 1

    for group in iter_elements(root, "g"):
        group_id = group.getAttribute("id")
        if not group_id:
            continue
        if PLACEHOLDER_PATTERN.search(group_id) or not IMAGE_GROUP_PATTERN.search(group_id):
            continue

        rect = first_element(group, "rect")
        if rect is None:
            continue
        rect_width = read_numeric(get_attribute(rect, "width"))
        rect_height = read_numeric(get_attribute(rect, "height"))
        if rect_width is None or rect_height is None:
            continue

        source_id = ensure_node_id(group, "image-field", index)
        fields.append(
            FieldDefinition(
                id=slugify(group_id, fallback=f"image_{index}"),
                label=label_from_id(group_id),
                type=FieldType.IMAGE,
                x=to_percent(read_numeric(get_attribute(rect, "x")), width, 10.0 + index * 5),
                y=to_percent(read_numeric(get_attribute(rect, "y")), height, 10.0 + index * 5),
                width=to_percent(rect_width, width, 20.0),
                height=to_percent(rect_height, height, 20.0),
                auto=True,
                source_id=source_id,
            )
        )
        index += 1

    return dedupe_fields(fields)


def _template_dimensions(svg_node: Element) -> Tuple[float, float, str, Optional[ViewBox]]:
    width, width_unit = parse_unit(get_attribute(svg_node, "width"))
    height, height_unit = parse_unit(get_attribute(svg_node, "height"))
    unit = width_unit or height_unit or "px"
    view_box = parse_view_box(get_attribute(svg_node, "viewBox"))

    if (not width or not height) and view_box is not None:
        if not width:
            width = view_box.width
        if not height:
            height = view_box.height
        unit = "px"

    if not width or not height:
        width, height, unit = DEFAULT_CARD_WIDTH_MM, DEFAULT_CARD_HEIGHT_MM, "mm"

    return width, height, unit, view_box


def extract_template(
    raw_svg: str,
    display_name: str = "template.svg",
    *,
    font_dirs: Optional[Iterable[Path]] = None,
) -> TemplateExtraction:
    """Parse ``raw_svg`` and detect its bindable fields.

    Explicit ``{{kind:name}}`` placeholder ids take precedence; only when the
    template has none are text nodes and photo/image groups detected. Elements
    referenced by a field get an id assigned if they lack one, and the
    returned ``raw_svg`` is the re-serialised document carrying those ids.
    """
    _doc, svg_node = parse_svg_document(raw_svg)
    width, height, unit, view_box = _template_dimensions(svg_node)
    dimensions = (width, height)

    fonts = extract_font_families(svg_node)
    css_font_sizes = parse_css_font_sizes(svg_node)

    fields = _extract_placeholders(svg_node, dimensions, css_font_sizes)
    if fields:
        logger.debug("%s: %d explicit placeholder field(s)", display_name, len(fields))
    else:
        fields = _extract_text_fields(svg_node, dimensions, css_font_sizes, font_dirs)
        fields += _extract_image_placeholders(svg_node, dimensions)
        logger.debug("%s: auto-detected %d field(s)", display_name, len(fields))

    metadata = TemplateMeta(
        name=display_name,
        width=width,
        height=height,
        unit=unit,
        raw_svg=svg_node.toxml(),
        view_box=view_box,
        fonts=fonts,
    )
    return TemplateExtraction(metadata, fields)


def load_template(path: Path, *, font_dirs: Optional[Iterable[Path]] = None) -> TemplateExtraction:
    raw_svg = Path(path).read_text(encoding="utf-8-sig")
    return extract_template(raw_svg, Path(path).name, font_dirs=font_dirs)


def default_field(field_id: str) -> FieldDefinition:
    """A manually authored text field with the designer's defaults."""
    return FieldDefinition(
        id=field_id,
        label=label_from_id(field_id),
        type=FieldType.TEXT,
        x=10.0,
        y=10.0,
        width=20.0,
        height=6.0,
        font_size=DEFAULT_FONT_SIZE,
        color=DEFAULT_FIELD_COLOR,
        align=Alignment.LEFT,
        font_family="Inter",
        font_weight=400,
        auto=False,
    )


def next_field_id(existing: Sequence[FieldDefinition]) -> str:
    taken = {definition.id for definition in existing}
    index = len(existing) + 1
    while f"field_{index}" in taken:
        index += 1
    return f"field_{index}"


__all__ = [
    "PLACEHOLDER_PATTERN",
    "TemplateExtraction",
    "TemplateParseError",
    "default_field",
    "extract_font_families",
    "extract_template",
    "load_template",
    "next_field_id",
]
