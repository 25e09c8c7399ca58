from collections.abc import Iterator
from pathlib import Path

from flashdeck.domain.constants import MARKDOWN_SUFFIXES


def is_markdown_file(path: Path) -> bool:
    return path.suffix.lower() in MARKDOWN_SUFFIXES


def iter_markdown_files(root: Path) -> Iterator[Path]:
    """Markdown files under `root` in sorted order, skipping hidden directories."""
    if root.is_file():
        if is_markdown_file(root):
            yield root
        return

    for path in sorted(root.rglob("*")):
        rel_parts = path.relative_to(root).parts
        if any(part.startswith(".") for part in rel_parts):
            continue
        if path.is_file() and is_markdown_file(path):
            yield path


def deck_name_from_path(path: str | Path) -> str:
    """File name without its markdown extension."""
    p = Path(path)
    return p.stem if is_markdown_file(p) else p.name
