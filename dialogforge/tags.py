"""Tag resolution and rendering.

The registry owns no tag lifecycle: it is loaded from the editor's tag store
and only answers lookups. ``TagResolver.format_tag_content`` renders the
"CHARACTER AND WORLD INFORMATION" block used by improve/custom prompts.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from dialogforge.cache import TagFormattingCache
from dialogforge.types import Tag, TagRef

logger = logging.getLogger(__name__)

PRIORITY_TAG_TYPES = ("character", "world", "location", "faction", "quest", "theme", "arc")
RENDERED_RELATION_TYPES = ("requires", "enhances")

CHARACTER_VOICE_NOTE = (
    "**CRITICAL**: Maintain this character's unique voice, speech patterns, and "
    "personality traits in ALL their dialogue. Their dialogue should be immediately "
    "recognizable as belonging to this character."
)


class TagRegistry:
    """Read-only lookup of tags by id."""

    def __init__(self, tags: Iterable[Tag] = ()) -> None:
        self._tags: Dict[str, Tag] = {}
        for tag in tags:
            self.add(tag)

    def add(self, tag: Tag) -> None:
        self._tags[tag.id] = tag

    def get(self, tag_id: str) -> Optional[Tag]:
        return self._tags.get(tag_id)

    def __contains__(self, tag_id: str) -> bool:
        return tag_id in self._tags

    def __len__(self) -> int:
        return len(self._tags)

    def all(self) -> List[Tag]:
        return list(self._tags.values())

    @classmethod
    def from_json_file(cls, path: Path) -> "TagRegistry":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("tags", [])
        return cls(Tag.from_dict(item) for item in data)


class TagResolver:
    """Maps tag references (ids or records) to full Tag records."""

    def __init__(
        self,
        registry: Optional[TagRegistry] = None,
        cache: Optional[TagFormattingCache] = None,
    ) -> None:
        self.registry = registry or TagRegistry()
        self.cache = cache or TagFormattingCache()

    def resolve(self, refs: Sequence[TagRef]) -> List[Tag]:
        tags: List[Tag] = []
        for ref in refs:
            if isinstance(ref, Tag):
                tags.append(ref)
                continue
            tag = self.registry.get(ref)
            if tag is None:
                logger.debug("Unknown tag id %r skipped", ref)
                continue
            tags.append(tag)
        return tags

    def tag_path(self, tag: Tag, known: Sequence[Tag]) -> str:
        """Hierarchical label path, e.g. ``World > Kingdom > Capital``."""
        by_id = {t.id: t for t in known}
        path = [tag.label]
        seen = {tag.id}
        current = tag
        while current.parent_id:
            parent = by_id.get(current.parent_id) or self.registry.get(current.parent_id)
            if parent is None or parent.id in seen:
                break
            path.insert(0, parent.label)
            seen.add(parent.id)
            current = parent
        return " > ".join(path)

    def format_tag_content(self, refs: Sequence[TagRef]) -> str:
        if not refs:
            return ""

        ids = [ref if isinstance(ref, str) else ref.id for ref in refs]
        cached = self.cache.get(ids)
        if cached is not None:
            return cached

        tags = self.resolve(refs)
        by_type: Dict[str, List[Tag]] = {}
        for tag in tags:
            by_type.setdefault(tag.type, []).append(tag)

        lines = ["CHARACTER AND WORLD INFORMATION:"]
        for tag_type in PRIORITY_TAG_TYPES:
            group = by_type.get(tag_type)
            if not group:
                continue
            lines.append("")
            lines.append(f"{tag_type.capitalize()} Information:")
            for tag in group:
                lines.extend(self._render_priority_tag(tag, tags))

        for tag_type, group in by_type.items():
            if tag_type in PRIORITY_TAG_TYPES:
                continue
            lines.append("")
            lines.append(f"{tag_type[:1].upper()}{tag_type[1:]} Information:")
            lines.extend(f"- {tag.label}: {tag.content}" for tag in group)

        rendered = "\n".join(lines) + "\n"
        self.cache.put(ids, rendered)
        return rendered

    def _render_priority_tag(self, tag: Tag, known: Sequence[Tag]) -> List[str]:
        path = self.tag_path(tag, known) if tag.parent_id else tag.label
        content = tag.content
        if tag.type == "character":
            content = f"{content}\n  {CHARACTER_VOICE_NOTE}"
        if tag.importance >= 4:
            content = f"[IMPORTANT] {content}"
        if tag.importance >= 5:
            content = f"[CRITICAL] {content}"

        lines = [f"- {path}: {content}"]
        related = [r for r in tag.relations if r.type in RENDERED_RELATION_TYPES]
        if related:
            by_id = {t.id: t for t in known}
            rendered = []
            for relation in related:
                target = by_id.get(relation.target_tag_id) or self.registry.get(relation.target_tag_id)
                if target is not None:
                    rendered.append(f"  - {target.label}: {target.content}")
            if rendered:
                lines.append("  Related information:")
                lines.extend(rendered)
        return lines
