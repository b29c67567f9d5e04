"""Batch loader: turns a CSV or YAML list of VM names into migration units.

CSV input needs a ``VMName`` column (``Name`` is accepted too, header
matching is case-insensitive). YAML input is either a plain list of names
or a mapping with a ``vms`` list whose items are names or ``{name: ...}``.

Rows keep their input order; later steps prompt in that order.
"""

from __future__ import annotations

import csv
from pathlib import Path

import yaml

from vmigrate.errors import ValidationError
from vmigrate.pipeline.models import MigrationUnit
from vmigrate.utils.logging import get_logger

logger = get_logger(__name__)

NAME_COLUMNS = ("vmname", "name")


def load_batch(path: str | Path) -> list[MigrationUnit]:
    """Read a batch file and return one MigrationUnit per VM, in file order.

    Raises:
        ValidationError: unreadable file, missing name column, blank names,
            duplicates, or an empty batch
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise ValidationError(f"Cannot read batch file '{path}': {e}") from e

    if path.suffix.lower() in (".yaml", ".yml"):
        names = _names_from_yaml(text, path)
    else:
        names = _names_from_csv(text, path)

    if not names:
        raise ValidationError(f"Batch file '{path}' contains no VMs")

    seen: set[str] = set()
    for name in names:
        if name.lower() in seen:
            raise ValidationError(f"Duplicate VM '{name}' in batch file '{path}'")
        seen.add(name.lower())

    logger.info(f"Loaded {len(names)} VM(s) from {path}")
    return [MigrationUnit(name=name) for name in names]


def _names_from_csv(text: str, path: Path) -> list[str]:
    lines = [line for line in text.splitlines() if line.strip() and not line.lstrip().startswith("#")]
    if not lines:
        return []

    reader = csv.DictReader(lines)
    headers = {(h or "").strip().lower(): h for h in (reader.fieldnames or [])}
    column = next((headers[c] for c in NAME_COLUMNS if c in headers), None)
    if column is None:
        raise ValidationError(
            f"Batch file '{path}' has no VM name column (expected one of: VMName, Name)"
        )

    names = []
    for row_no, row in enumerate(reader, start=2):
        value = (row.get(column) or "").strip()
        if not value:
            raise ValidationError(f"Batch file '{path}' row {row_no}: VM name is empty")
        names.append(value)
    return names


def _names_from_yaml(text: str, path: Path) -> list[str]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(f"Batch file '{path}' is not valid YAML: {e}") from e

    if isinstance(data, dict):
        data = data.get("vms")
    if not isinstance(data, list):
        raise ValidationError(f"Batch file '{path}' must contain a list of VMs (or a 'vms' list)")

    names = []
    for i, item in enumerate(data, start=1):
        if isinstance(item, dict):
            item = item.get("name")
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(f"Batch file '{path}' entry {i}: VM name is missing")
        names.append(item.strip())
    return names
