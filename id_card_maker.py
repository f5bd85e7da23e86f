"""Generate personalised ID card SVGs from a template and a sheet of user records."""
from __future__ import annotations

import argparse
import json
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

import pandas as pd

from card_data import build_card_data, generate_auto_mappings, split_mappings
from card_models import FieldDefinition, FieldMapping, TemplateMeta, UserData, is_missing
from svg_renderer import render_svg_with_data
from svg_template import TemplateExtraction, TemplateParseError, load_template

logger = logging.getLogger("id_card_maker")

DEFAULT_OUTPUT_ROOT = Path("ID Cards")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class TemplateNotFoundError(FileNotFoundError):
    """Raised when the SVG template (or its extracted field file) cannot be located."""


class UsersNotFoundError(FileNotFoundError):
    """Raised when the user records file cannot be located."""


def _normalise_string(value: object, default: str = "") -> str:
    if is_missing(value):
        return default
    value_str = str(value).strip()
    return value_str if value_str else default


def _sanitize_filename_component(value: str, fallback: str) -> str:
    value = _normalise_string(value)
    if not value:
        value = fallback
    sanitized = re.sub(r"[^A-Za-z0-9]+", "_", value)
    sanitized = re.sub(r"_+", "_", sanitized).strip("_")
    return sanitized or fallback


def _build_card_output_base(user: UserData, template_name: str) -> str:
    parts = [
        _sanitize_filename_component(user.first_name, "user"),
        _sanitize_filename_component(user.last_name, ""),
        _sanitize_filename_component(Path(template_name).stem, "card"),
    ]
    base = "_".join(part for part in parts if part)
    return base or "user_card"


def _unique_output_path(output_root: Path, base: str, used: Set[str]) -> Path:
    candidate = base
    counter = 2
    while candidate.lower() in used:
        candidate = f"{base}_{counter}"
        counter += 1
    used.add(candidate.lower())
    return output_root / f"{candidate}.svg"


def _load_tabular_file(path: Path) -> List[Dict[str, object]]:
    """Load user rows from a CSV or spreadsheet, keeping every cell as text."""
    if path.suffix.lower() == ".csv":
        frame = pd.read_csv(path, dtype=str, encoding="utf-8-sig")
    else:
        frame = pd.read_excel(path, dtype=str)
    return frame.to_dict(orient="records")


def load_users(path: Path) -> List[UserData]:
    """Read every user record up front so a bad file fails before any card is written."""
    if not path.exists():
        raise UsersNotFoundError(f"Users file not found: {path}")
    if path.suffix.lower() == ".json":
        with path.open(encoding="utf-8") as handle:
            records = json.load(handle)
        if not isinstance(records, list):
            raise ValueError(f"{path} must contain a JSON list of user records")
    else:
        records = _load_tabular_file(path)
    return [UserData.from_record(record) for record in records]


def load_extraction(path: Path, *, font_dirs: Optional[Sequence[Path]] = None) -> TemplateExtraction:
    """Load a template from an SVG file or from a previously saved extraction JSON."""
    if not path.exists():
        raise TemplateNotFoundError(f"Template not found: {path}")
    if path.suffix.lower() == ".json":
        with path.open(encoding="utf-8") as handle:
            payload = json.load(handle)
        try:
            metadata = TemplateMeta.from_dict(payload["metadata"])
            fields = [FieldDefinition.from_dict(item) for item in payload.get("fields", [])]
        except (KeyError, TypeError, AttributeError) as exc:
            raise TemplateParseError(f"{path} is not a saved template extraction: {exc!r}") from exc
        return TemplateExtraction(metadata, fields)
    return load_template(path, font_dirs=font_dirs)


def extraction_to_dict(extraction: TemplateExtraction) -> Dict[str, object]:
    return {
        "metadata": extraction.metadata.to_dict(),
        "fields": [definition.to_dict() for definition in extraction.fields],
    }


def save_extraction(extraction: TemplateExtraction, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(extraction_to_dict(extraction), handle, indent=2)


def load_mappings(path: Path) -> List[FieldMapping]:
    """Read mappings as the persisted list, or as a plain ``{layer: field name}`` object."""
    with path.open(encoding="utf-8") as handle:
        payload = json.load(handle)
    if isinstance(payload, dict):
        return [FieldMapping(str(layer), str(name)) for layer, name in payload.items()]
    return [FieldMapping.from_dict(item) for item in payload]


def generate_id_cards(
    extraction: TemplateExtraction,
    users: Iterable[UserData],
    mappings: Sequence[FieldMapping],
    *,
    output_root: Path = DEFAULT_OUTPUT_ROOT,
    font_dirs: Optional[Sequence[Path]] = None,
    strict: bool = False,
) -> int:
    """Render one SVG per user; a failing user is logged and skipped."""
    metadata, fields = extraction
    names, custom_values = split_mappings(mappings)
    output_root.mkdir(parents=True, exist_ok=True)
    used_names: Set[str] = set()

    count = 0
    for position, user in enumerate(users, start=1):
        try:
            card_data = build_card_data(user, fields, names, custom_values, strict=strict)
            svg_markup = render_svg_with_data(metadata, fields, card_data, font_dirs=font_dirs)
            base = _build_card_output_base(user, metadata.name)
            output_path = _unique_output_path(output_root, base, used_names)
            output_path.write_text(svg_markup, encoding="utf-8")
        except (ValueError, OSError):
            logger.exception("Skipping user #%d (%s %s)", position, user.first_name, user.last_name)
            continue
        logger.info("Wrote %s", output_path)
        count += 1
    return count


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bind user records into SVG ID card templates.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--font-dir",
        dest="font_dirs",
        type=Path,
        action="append",
        default=[],
        help="Extra directory searched for font files (repeatable)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract_parser = subparsers.add_parser("extract", help="Detect the bindable fields of a template")
    extract_parser.add_argument("template", type=Path, help="SVG template to inspect")
    extract_parser.add_argument(
        "--output",
        type=Path,
        help="Write the extraction (metadata and fields) as JSON here instead of stdout",
    )
    extract_parser.add_argument(
        "--auto-mappings",
        type=Path,
        help="Also write auto-generated field mappings as JSON to this path",
    )

    render_parser = subparsers.add_parser("render", help="Render one card per user record")
    render_parser.add_argument("template", type=Path, help="SVG template or saved extraction JSON")
    render_parser.add_argument("users", type=Path, help="CSV, Excel or JSON file with user records")
    render_parser.add_argument(
        "--mappings",
        type=Path,
        help="Field mappings JSON; auto-generated from layer ids when omitted",
    )
    render_parser.add_argument(
        "--output-root",
        type=Path,
        default=DEFAULT_OUTPUT_ROOT,
        help="Directory where rendered cards will be written",
    )
    render_parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail a user when a mapped field name contains unknown parts",
    )
    return parser.parse_args(argv)


def _run_extract(args: argparse.Namespace) -> int:
    if not args.template.exists():
        raise TemplateNotFoundError(f"Template not found: {args.template}")
    extraction = load_template(args.template, font_dirs=args.font_dirs)
    if args.output:
        save_extraction(extraction, args.output)
        print(f"Extracted {len(extraction.fields)} field(s) to {args.output}")
    else:
        print(json.dumps(extraction_to_dict(extraction), indent=2))
    if args.auto_mappings:
        mappings = generate_auto_mappings(extraction.fields)
        with args.auto_mappings.open("w", encoding="utf-8") as handle:
            json.dump([mapping.to_dict() for mapping in mappings], handle, indent=2)
    return 0


def _run_render(args: argparse.Namespace) -> int:
    extraction = load_extraction(args.template, font_dirs=args.font_dirs)
    if args.mappings:
        mappings = load_mappings(args.mappings)
    else:
        mappings = generate_auto_mappings(extraction.fields)
        logger.info("Using %d auto-generated mapping(s)", len(mappings))
    count = generate_id_cards(
        extraction,
        load_users(args.users),
        mappings,
        output_root=args.output_root,
        font_dirs=args.font_dirs,
        strict=args.strict,
    )
    print(f"Generated {count} ID card(s)")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)
    try:
        if args.command == "extract":
            return _run_extract(args)
        return _run_render(args)
    except (OSError, ValueError, KeyError, ImportError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
