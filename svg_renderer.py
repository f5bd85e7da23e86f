"""Bind resolved card data into a template and serialise the personalised SVG."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from xml.dom.minidom import Element, Node

from card_models import (
    DEFAULT_FONT_SIZE,
    Alignment,
    CardDataValue,
    FieldDefinition,
    FieldType,
    ImageValue,
    TemplateMeta,
)
from svg_template import (
    XLINK_NS,
    css_font_size_for,
    first_element,
    format_float,
    get_attribute,
    get_font_size,
    index_element_ids,
    iter_elements,
    local_name,
    parse_css_font_sizes,
    parse_svg_document,
    read_numeric,
)
from text_metrics import wrap_text_to_lines

logger = logging.getLogger(__name__)

GENERATED_ATTRIBUTE = "data-idcard-generated"
GENERATED_FOR_ATTRIBUTE = "data-idcard-for"
LINE_HEIGHT_SCALE = 1.2
MIN_IMAGE_SCALE = 0.1

_LINE_SPLIT_RE = re.compile(r"\r?\n")

# Field types rendered as text content.
_TEXT_TYPES = {FieldType.TEXT, FieldType.DATE}


def bake_css_font_sizes(root: Element, css_font_sizes: Mapping[str, float]) -> None:
    """Copy class-derived font sizes onto <text>/<tspan> as ``font-size`` attributes.

    Must run before any tspan is replaced, otherwise sizes that only came
    from a CSS class on a removed tspan are lost.
    """
    for text_element in iter_elements(root, "text"):
        for element in [text_element, *iter_elements(text_element, "tspan")]:
            if element.hasAttribute("font-size"):
                continue
            size = css_font_size_for(element, css_font_sizes)
            if size is not None:
                element.setAttribute("font-size", format_float(size))


def _clear_children(element: Element) -> None:
    while element.firstChild is not None:
        element.removeChild(element.firstChild)


def _set_or_remove_attribute(element: Element, name: str, value: Optional[str]) -> None:
    if value is None or not value.strip():
        if element.hasAttribute(name):
            element.removeAttribute(name)
    else:
        element.setAttribute(name, value)


def _split_lines(
    value: str,
    definition: FieldDefinition,
    font_size: float,
    font_dirs: Optional[Iterable[Path]],
) -> List[str]:
    if definition.wrap_width is not None and definition.wrap_width > 0:
        return wrap_text_to_lines(
            value,
            definition.wrap_width,
            definition.font_family,
            definition.font_weight,
            font_size,
            font_dirs,
        )
    return _LINE_SPLIT_RE.split(value)


def apply_text_field(
    element: Element,
    definition: FieldDefinition,
    raw_value: Optional[str],
    css_font_sizes: Mapping[str, float],
    *,
    font_dirs: Optional[Iterable[Path]] = None,
) -> None:
    """Replace the text of ``element`` with ``raw_value``.

    Blank values leave the template's own text in place.
    """
    if not raw_value or not raw_value.strip():
        return

    value = raw_value.strip()
    document = element.ownerDocument
    original_font_size = get_font_size(element, css_font_sizes)

    first_tspan = first_element(element, "tspan")
    base_x = get_attribute(element, "x")
    if base_x is None and first_tspan is not None:
        base_x = get_attribute(first_tspan, "x")
    base_y = get_attribute(element, "y")
    if base_y is None and first_tspan is not None:
        base_y = get_attribute(first_tspan, "y")
    base_x = base_x if base_x is not None else "0"
    base_y = base_y if base_y is not None else "0"

    _clear_children(element)

    if original_font_size is not None:
        font_size = original_font_size
    elif definition.font_size is not None:
        font_size = definition.font_size
    else:
        font_size = DEFAULT_FONT_SIZE

    lines = _split_lines(value, definition, font_size, font_dirs)

    if len(lines) <= 1:
        element.appendChild(document.createTextNode(lines[0] if lines else ""))
    else:
        line_height = font_size * LINE_HEIGHT_SCALE
        for index, line in enumerate(lines):
            tspan = document.createElementNS(element.namespaceURI, "tspan")
            tspan.setAttribute("x", base_x)
            if index == 0:
                tspan.setAttribute("y", base_y)
            else:
                tspan.setAttribute("dy", format_float(line_height))
            tspan.appendChild(document.createTextNode(line or " "))
            element.appendChild(tspan)

    if definition.font_family is not None:
        _set_or_remove_attribute(element, "font-family", definition.font_family)
    element.setAttribute("font-size", format_float(font_size))
    _set_or_remove_attribute(
        element, "font-weight", str(definition.font_weight) if definition.font_weight else None
    )
    if definition.color is not None:
        _set_or_remove_attribute(element, "fill", definition.color)

    anchor = definition.align.to_text_anchor()
    if definition.align is Alignment.LEFT:
        if element.hasAttribute("text-anchor"):
            element.removeAttribute("text-anchor")
    else:
        element.setAttribute("text-anchor", anchor)

    if element.hasAttribute("aria-hidden"):
        element.removeAttribute("aria-hidden")


def _remove_generated_images(container: Element, source_id: Optional[str] = None) -> None:
    stale = [
        image
        for image in iter_elements(container, "image")
        if image.getAttribute(GENERATED_ATTRIBUTE) == "true"
        and (source_id is None or image.getAttribute(GENERATED_FOR_ATTRIBUTE) == source_id)
    ]
    for image in stale:
        image.parentNode.removeChild(image)


def _ensure_xlink_namespace(element: Element) -> None:
    """Declare the xlink prefix on the outermost <svg> enclosing ``element``."""
    root = element
    node = element.parentNode
    while node is not None and node.nodeType == Node.ELEMENT_NODE:
        if local_name(node) == "svg":
            root = node
        node = node.parentNode
    if not root.hasAttribute("xmlns:xlink"):
        root.setAttribute("xmlns:xlink", XLINK_NS)


def apply_image_field(element: Element, value: Optional[ImageValue]) -> None:
    """Place ``value`` over the placeholder rect of ``element`` with cover fit.

    Without a value the placeholder rect is left as it is.
    """
    if local_name(element) == "rect":
        rect: Optional[Element] = element
        container = element.parentNode
        source_id = element.getAttribute("id")
        if container is not None and container.nodeType == Node.ELEMENT_NODE:
            _remove_generated_images(container, source_id)  # type: ignore[arg-type]
    else:
        rect = first_element(element, "rect")
        container = element
        source_id = None
        _remove_generated_images(element)

    if value is None:
        return

    x = read_numeric(get_attribute(rect, "x")) if rect is not None else None
    y = read_numeric(get_attribute(rect, "y")) if rect is not None else None
    width = read_numeric(get_attribute(rect, "width")) if rect is not None else None
    height = read_numeric(get_attribute(rect, "height")) if rect is not None else None
    x = x or 0.0
    y = y or 0.0
    width = width or 0.0
    height = height or 0.0
    if width <= 0 or height <= 0:
        return

    if rect is not None:
        rect.setAttribute("fill", "none")

    scale = max(MIN_IMAGE_SCALE, value.scale)
    draw_width = width * scale
    draw_height = height * scale
    draw_x = x + value.offset_x * width - (draw_width - width) / 2
    draw_y = y + value.offset_y * height - (draw_height - height) / 2

    document = element.ownerDocument
    _ensure_xlink_namespace(element)
    image = document.createElementNS(element.namespaceURI, "image")
    image.setAttribute("x", format_float(draw_x))
    image.setAttribute("y", format_float(draw_y))
    image.setAttribute("width", format_float(draw_width))
    image.setAttribute("height", format_float(draw_height))
    image.setAttribute("preserveAspectRatio", "xMidYMid slice")
    image.setAttributeNS(XLINK_NS, "xlink:href", value.src)
    image.setAttribute("href", value.src)
    image.setAttribute(GENERATED_ATTRIBUTE, "true")

    if source_id is not None:
        image.setAttribute(GENERATED_FOR_ATTRIBUTE, source_id)
        container.insertBefore(image, element.nextSibling)
    else:
        container.appendChild(image)


def render_svg_with_data(
    template: TemplateMeta,
    fields: Sequence[FieldDefinition],
    card_data: Mapping[str, CardDataValue],
    *,
    font_dirs: Optional[Iterable[Path]] = None,
) -> str:
    """Render ``card_data`` into a fresh parse of ``template.raw_svg``.

    ``card_data`` is keyed by field id. Fields whose ``source_id`` no longer
    exists in the template are skipped. Each call owns its own DOM, so
    renders for different users can run concurrently.
    """
    _doc, svg_root = parse_svg_document(template.raw_svg)

    css_font_sizes: Dict[str, float] = parse_css_font_sizes(svg_root)
    bake_css_font_sizes(svg_root, css_font_sizes)
    elements_by_id = index_element_ids(svg_root)

    for definition in fields:
        if not definition.source_id:
            continue
        target = elements_by_id.get(definition.source_id)
        if target is None:
            logger.debug("Layer %r not found in %s; skipping", definition.source_id, template.name)
            continue

        value = card_data.get(definition.id)
        if definition.type is FieldType.IMAGE:
            apply_image_field(target, value if isinstance(value, ImageValue) else None)
        elif definition.type in _TEXT_TYPES:
            text_value = value if isinstance(value, str) else None
            apply_text_field(target, definition, text_value, css_font_sizes, font_dirs=font_dirs)
        else:
            logger.debug("Field %r of type %s is not rendered", definition.id, definition.type.value)

    return svg_root.toxml()


__all__ = [
    "apply_image_field",
    "apply_text_field",
    "bake_css_font_sizes",
    "render_svg_with_data",
]
