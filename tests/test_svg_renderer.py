import dataclasses
import sys
import unittest
from pathlib import Path
from xml.dom.minidom import parseString

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from card_models import Alignment, FieldDefinition, FieldType, ImageValue, TemplateMeta
from svg_renderer import GENERATED_ATTRIBUTE, render_svg_with_data
from svg_template import extract_template, index_element_ids, iter_elements, parse_svg_document, text_content
from text_metrics import wrap_text_to_lines

TEMPLATE_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="400" height="250">'
    "<style>.big{font-size:24px}</style>"
    '<text id="name" x="40" y="100" class="big">Jane Doe</text>'
    '<text id="motto" x="40" y="200" font-size="10" aria-hidden="true">Keep me</text>'
    '<g id="photo"><rect x="10" y="20" width="100" height="50" fill="#cccccc"/></g>'
    "</svg>"
)


def _elements(markup):
    _doc, svg = parse_svg_document(markup)
    return index_element_ids(svg)


class RendererTestCase(unittest.TestCase):
    def setUp(self):
        self.metadata, fields = extract_template(TEMPLATE_SVG)
        self.fields = {field.source_id: field for field in fields}

    def render(self, card_data, fields=None):
        if fields is None:
            fields = list(self.fields.values())
        return render_svg_with_data(self.metadata, fields, card_data)


class TextRenderingTests(RendererTestCase):
    def test_single_line_value_replaces_text(self):
        output = self.render({self.fields["name"].id: "John Smith"})
        name = _elements(output)["name"]
        self.assertEqual(text_content(name), "John Smith")
        self.assertEqual(list(iter_elements(name, "tspan")), [])
        self.assertEqual(name.getAttribute("font-size"), "24")
        self.assertEqual(name.getAttribute("class"), "big")

    def test_newlines_become_tspans(self):
        output = self.render({self.fields["motto"].id: "Line A\nLine B"})
        tspans = list(iter_elements(_elements(output)["motto"], "tspan"))
        self.assertEqual([text_content(tspan) for tspan in tspans], ["Line A", "Line B"])
        self.assertEqual(tspans[0].getAttribute("x"), "40")
        self.assertEqual(tspans[0].getAttribute("y"), "200")
        self.assertFalse(tspans[1].hasAttribute("y"))
        self.assertEqual(tspans[1].getAttribute("dy"), "12")

    def test_value_clears_aria_hidden(self):
        output = self.render({self.fields["motto"].id: "Shown"})
        self.assertFalse(_elements(output)["motto"].hasAttribute("aria-hidden"))

    def test_blank_value_keeps_template_text(self):
        output = self.render({self.fields["name"].id: "   "})
        self.assertEqual(text_content(_elements(output)["name"]), "Jane Doe")

    def test_alignment_sets_text_anchor(self):
        centred = dataclasses.replace(self.fields["name"], align=Alignment.CENTER)
        output = self.render({centred.id: "John"}, [centred])
        self.assertEqual(_elements(output)["name"].getAttribute("text-anchor"), "middle")

        left = dataclasses.replace(self.fields["name"], align=Alignment.LEFT)
        output = self.render({left.id: "John"}, [left])
        self.assertFalse(_elements(output)["name"].hasAttribute("text-anchor"))

    def test_wrapping_is_deterministic(self):
        wrapped = dataclasses.replace(self.fields["name"], wrap_width=100.0)
        value = "A very long line of text"
        first = self.render({wrapped.id: value}, [wrapped])
        second = self.render({wrapped.id: value}, [wrapped])
        self.assertEqual(first, second)
        tspans = list(iter_elements(_elements(first)["name"], "tspan"))
        self.assertGreater(len(tspans), 1)
        self.assertEqual(" ".join(text_content(tspan) for tspan in tspans), value)
        self.assertEqual(tspans[1].getAttribute("dy"), "28.8")


class UntouchedContentTests(RendererTestCase):
    def test_unmapped_subtrees_are_unchanged(self):
        original = _elements(self.metadata.raw_svg)
        output = self.render({self.fields["name"].id: "John"})
        rendered = _elements(output)
        self.assertEqual(rendered["motto"].toxml(), original["motto"].toxml())
        self.assertEqual(rendered["photo"].toxml(), original["photo"].toxml())

    def test_missing_source_layer_is_skipped(self):
        ghost = FieldDefinition(id="ghost", label="Ghost", source_id="not-there")
        manual = FieldDefinition(id="field_9", label="Manual")
        baseline = self.render({})
        output = self.render({"ghost": "Boo", "field_9": "Hi"}, list(self.fields.values()) + [ghost, manual])
        self.assertEqual(output, baseline)

    def test_barcode_fields_are_not_rendered(self):
        barcode = dataclasses.replace(self.fields["motto"], type=FieldType.BARCODE)
        output = self.render({barcode.id: "12345"}, [barcode])
        self.assertEqual(text_content(_elements(output)["motto"]), "Keep me")


class ImageRenderingTests(RendererTestCase):
    def _generated_images(self, markup):
        photo = _elements(markup)["photo"]
        return [image for image in iter_elements(photo, "image") if image.getAttribute(GENERATED_ATTRIBUTE) == "true"]

    def test_without_data_the_placeholder_is_untouched(self):
        output = self.render({})
        photo = _elements(output)["photo"]
        self.assertEqual(self._generated_images(output), [])
        self.assertEqual(next(iter_elements(photo, "rect")).getAttribute("fill"), "#cccccc")

    def test_image_value_is_injected_with_cover_fit(self):
        output = self.render({self.fields["photo"].id: ImageValue(src="photos/john.png")})
        images = self._generated_images(output)
        self.assertEqual(len(images), 1)
        image = images[0]
        self.assertEqual(image.getAttribute("href"), "photos/john.png")
        self.assertEqual(image.getAttribute("xlink:href"), "photos/john.png")
        self.assertEqual(image.getAttribute("preserveAspectRatio"), "xMidYMid slice")
        self.assertEqual(
            [image.getAttribute(name) for name in ("x", "y", "width", "height")],
            ["10", "20", "100", "50"],
        )
        rect = next(iter_elements(_elements(output)["photo"], "rect"))
        self.assertEqual(rect.getAttribute("fill"), "none")

    def test_output_is_well_formed_with_xlink(self):
        output = self.render({self.fields["photo"].id: ImageValue(src="a.png")})
        self.assertIn('xmlns:xlink="http://www.w3.org/1999/xlink"', output)
        parseString(output)

    def test_scale_and_offset(self):
        value = ImageValue(src="a.png", scale=2.0, offset_x=0.1, offset_y=0.0)
        image = self._generated_images(self.render({self.fields["photo"].id: value}))[0]
        self.assertEqual(
            [image.getAttribute(name) for name in ("x", "y", "width", "height")],
            ["-30", "-5", "200", "100"],
        )

    def test_rerendering_keeps_a_single_image(self):
        field = self.fields["photo"]
        first = self.render({field.id: ImageValue(src="one.png")})
        rerendered_meta = dataclasses.replace(self.metadata, raw_svg=first)
        second = render_svg_with_data(rerendered_meta, [field], {field.id: ImageValue(src="two.png")})
        images = self._generated_images(second)
        self.assertEqual(len(images), 1)
        self.assertEqual(images[0].getAttribute("href"), "two.png")

    def test_rect_placeholder(self):
        svg = (
            '<svg xmlns="http://www.w3.org/2000/svg" width="200" height="100">'
            '<g id="card"><rect id="{{image:photo}}" x="0" y="0" width="40" height="40" fill="#eee"/></g>'
            "</svg>"
        )
        metadata, fields = extract_template(svg)
        output = render_svg_with_data(metadata, fields, {"photo": ImageValue(src="p.png")})
        card = _elements(output)["card"]
        images = list(iter_elements(card, "image"))
        self.assertEqual(len(images), 1)
        self.assertEqual(images[0].getAttribute("data-idcard-for"), "{{image:photo}}")
        again = render_svg_with_data(
            dataclasses.replace(metadata, raw_svg=output), fields, {"photo": ImageValue(src="q.png")}
        )
        self.assertEqual(len(list(iter_elements(_elements(again)["card"], "image"))), 1)


class WrapTextTests(unittest.TestCase):
    def test_explicit_newlines_and_blank_paragraphs(self):
        self.assertEqual(wrap_text_to_lines("a\n\nb", 1000, None, None, 16), ["a", "", "b"])

    def test_long_word_stays_on_its_own_line(self):
        self.assertEqual(
            wrap_text_to_lines("Supercalifragilistic", 5, None, None, 16), ["Supercalifragilistic"]
        )

    def test_empty_text(self):
        self.assertEqual(wrap_text_to_lines("", 100, None, None, 16), [""])


class NestedSvgTests(unittest.TestCase):
    def test_xlink_is_declared_on_the_rendered_svg(self):
        raw_svg = (
            "<wrapper>"
            '<svg xmlns="http://www.w3.org/2000/svg" width="200" height="100">'
            '<g id="photo"><rect x="0" y="0" width="40" height="40"/></g>'
            "</svg>"
            "</wrapper>"
        )
        metadata = TemplateMeta(name="wrapped.svg", width=200.0, height=100.0, unit="px", raw_svg=raw_svg)
        field = FieldDefinition(id="photo", label="Photo", type=FieldType.IMAGE, source_id="photo")
        output = render_svg_with_data(metadata, [field], {"photo": ImageValue(src="a.png")})
        self.assertTrue(output.startswith("<svg"))
        self.assertIn('xmlns:xlink="http://www.w3.org/1999/xlink"', output)
        parseString(output)


if __name__ == "__main__":
    unittest.main()
