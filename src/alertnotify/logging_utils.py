from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from textwrap import wrap
from typing import Union

DEFAULT_WRAP_WIDTH = 110
DEFAULT_LABEL_WIDTH = 22
DEFAULT_INDENT = "    "
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

FieldMapping = Union[Mapping[str, object], Sequence[tuple[str, object]]]


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    # urllib3 logs full request lines, which include access tokens.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _stringify(value: object) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (list, tuple, set)):
        return ", ".join(_stringify(item) for item in value) or "-"
    return str(value).strip() or "-"


def render_fields_block(
    title: str,
    fields: FieldMapping,
    *,
    wrap_width: int = DEFAULT_WRAP_WIDTH,
    indent: str = DEFAULT_INDENT,
) -> str:
    """Render a titled block of aligned ``label: value`` lines."""
    items = list(fields.items()) if isinstance(fields, Mapping) else list(fields)
    lines = [title, "-" * len(title)]
    if not items:
        lines.append(f"{indent}(none)")
        return "\n".join(lines)

    label_width = max(min(max(len(str(key)) for key, _ in items), DEFAULT_LABEL_WIDTH), 8)
    value_width = max(wrap_width - len(indent) - label_width - 2, 32)
    for key, value in items:
        wrapped = wrap(_stringify(value), width=value_width) or ["-"]
        lines.append(f"{indent}{str(key):<{label_width}}: {wrapped[0]}")
        for continuation in wrapped[1:]:
            lines.append(f"{indent}{'':<{label_width}}  {continuation}")
    return "\n".join(lines)
