import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from card_data import (
    AUTO_NAME_FIELD,
    build_card_data,
    build_card_data_from_mappings,
    generate_auto_mappings,
    is_auto_mappable,
    split_mappings,
)
from card_models import CUSTOM_STATIC_SENTINEL, FieldDefinition, FieldMapping, FieldType, ImageValue, UserData
from field_naming import NamingError


class BuildCardDataTests(unittest.TestCase):
    def setUp(self):
        self.user = UserData(
            first_name="John",
            last_name="Smith",
            middle_name="Allen",
            student_id="S-1",
            photo_path="photos/john.png",
        )
        self.fields = [
            FieldDefinition(id="name_1", label="Jane Doe", source_id="name"),
            FieldDefinition(id="motto_2", label="Motto", source_id="motto"),
            FieldDefinition(id="photo", label="Photo", type=FieldType.IMAGE, source_id="Photo"),
            FieldDefinition(id="field_4", label="Field 4"),
        ]
        self.mappings = {
            "name": "fullName_First_Last",
            "motto": CUSTOM_STATIC_SENTINEL,
            "Photo": "photo",
            "field_4": "studentId",
        }

    def test_results_are_keyed_by_field_id(self):
        data = build_card_data(self.user, self.fields, self.mappings, {"motto": "Learn"})
        self.assertEqual(
            data,
            {
                "name_1": "John Smith",
                "motto_2": "Learn",
                "photo": ImageValue(src="photos/john.png"),
                "field_4": "S-1",
            },
        )

    def test_unmapped_fields_are_omitted(self):
        del self.mappings["name"]
        data = build_card_data(self.user, self.fields, self.mappings)
        self.assertNotIn("name_1", data)
        self.assertEqual(data["motto_2"], "")

    def test_strict_mode_propagates(self):
        self.mappings["name"] = "fullName_First_Nickname_Last"
        self.assertEqual(build_card_data(self.user, self.fields, self.mappings)["name_1"], "John  Smith")
        with self.assertRaises(NamingError):
            build_card_data(self.user, self.fields, self.mappings, strict=True)

    def test_from_persisted_mappings(self):
        mappings = [
            FieldMapping("name", "firstName_AllCaps"),
            FieldMapping("motto", "Custom Static Text", "Be kind"),
        ]
        data = build_card_data_from_mappings(self.user, self.fields, mappings)
        self.assertEqual(data, {"name_1": "JOHN", "motto_2": "Be kind"})


class SplitMappingsTests(unittest.TestCase):
    def test_custom_values_only_for_custom_fields(self):
        names, custom = split_mappings(
            [
                FieldMapping("a", "firstName", "ignored"),
                FieldMapping("b", CUSTOM_STATIC_SENTINEL, "Hello"),
            ]
        )
        self.assertEqual(names, {"a": "firstName", "b": CUSTOM_STATIC_SENTINEL})
        self.assertEqual(custom, {"b": "Hello"})


class AutoMappingTests(unittest.TestCase):
    def _field(self, source_id, label="Label"):
        return FieldDefinition(id=source_id.lower(), label=label, source_id=source_id)

    def test_recognised_layer_ids(self):
        fields = [
            self._field("firstName_AllCaps"),
            self._field("EMAIL"),
            self._field("ProfilePhoto"),
            self._field("student_id"),
            self._field("Name"),
            self._field("custom-motto", "Learn and grow"),
            self._field("text-field-3"),
        ]
        mappings = generate_auto_mappings(fields)
        self.assertEqual(
            [(mapping.svg_layer_id, mapping.standard_field_name) for mapping in mappings],
            [
                ("firstName_AllCaps", "firstName_AllCaps"),
                ("EMAIL", "email"),
                ("ProfilePhoto", "photo"),
                ("student_id", "studentId"),
                ("Name", AUTO_NAME_FIELD),
                ("custom-motto", CUSTOM_STATIC_SENTINEL),
            ],
        )
        self.assertEqual(mappings[-1].custom_value, "Learn and grow")
        self.assertFalse(is_auto_mappable(fields[-1]))


if __name__ == "__main__":
    unittest.main()
