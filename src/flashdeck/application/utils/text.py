import re
from typing import Any

import yaml  # type: ignore
import yaml.constructor

from flashdeck.domain.constants import CONTENT_KEY_SEPARATOR

# ---------- Normalization ----------


def normalize_text(text: str) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return " ".join(text.strip().lower().split())


def content_key(front: str, back: str) -> str:
    return f"{normalize_text(front)}{CONTENT_KEY_SEPARATOR}{normalize_text(back)}"


def word_jaccard(a: str, b: str) -> float:
    """|words(a) & words(b)| / |words(a) | words(b)| over normalized tokens."""
    na = normalize_text(a)
    nb = normalize_text(b)
    if na == nb:
        return 1.0

    words_a = set(na.split())
    words_b = set(nb.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


# ---------- Media references ----------

IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")
AUDIO_RE = re.compile(r"\[(?:audio|inline): ?([^\]]+)\]\(([^)]+)\)")
_TITLED_TARGET_RE = re.compile(r'^(\S+)\s+"[^"]*"$')


def _strip_link_title(target: str) -> str:
    target = target.strip()
    m = _TITLED_TARGET_RE.match(target)
    return m.group(1) if m else target


def extract_media_paths(*texts: str) -> tuple[str, ...]:
    """Image and audio targets across `texts`, de-duplicated in first-seen order."""
    seen: dict[str, None] = {}
    for text in texts:
        for m in IMAGE_RE.finditer(text):
            seen.setdefault(_strip_link_title(m.group(2)), None)
        for m in AUDIO_RE.finditer(text):
            seen.setdefault(_strip_link_title(m.group(2)), None)
    return tuple(seen)


# ---------- Frontmatter helpers ----------


class UniqueKeyLoader(yaml.SafeLoader):
    """Custom YAML loader that forbids duplicate keys."""

    def construct_mapping(self, node, deep=False):
        mapping = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in mapping:
                raise yaml.constructor.ConstructorError(
                    None, None, f"found duplicate key '{key}'", key_node.start_mark
                )
            mapping.add(key)
        return super().construct_mapping(node, deep)


def parse_frontmatter(md_text: str) -> tuple[dict[str, Any], str]:
    """Parse YAML frontmatter from markdown text.
    Uses line-by-line parsing instead of regex for reliability.
    """
    # Handle potential BOM (Byte Order Mark)
    md_text = md_text.lstrip("\ufeff")

    lines = md_text.split("\n")

    if not lines or lines[0].strip() != "---":
        return {}, md_text

    yaml_end_line = None
    for i, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            yaml_end_line = i
            break

    if yaml_end_line is None:
        return {}, md_text

    raw = "\n".join(lines[1:yaml_end_line])
    body = "\n".join(lines[yaml_end_line + 1 :])

    # Fix tabs (common user error)
    if "\t" in raw:
        raw = raw.replace("\t", "  ")

    try:
        meta = yaml.load(raw, Loader=UniqueKeyLoader) or {}
    except yaml.YAMLError as e:
        return {"__yaml_error__": str(e)}, md_text

    if not isinstance(meta, dict):
        return {}, body
    return meta, body
