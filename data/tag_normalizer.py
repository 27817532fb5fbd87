"""Tag Normalizer

- Coerce whatever the backend stored for tags (native list, JSON-encoded
  string from older schemas, null) into a list of strings
- Normalize individual tags (trim, lowercase)
- Deduplicate tag lists while preserving the first-seen order
"""
from __future__ import annotations

import json, logging
from typing import Any, Iterable, List, Optional

log = logging.getLogger(__name__)


class TagNormalizer:
    def coerce(self, raw: Any) -> List[str]:
        """Never raises. Non-string items are dropped."""
        if raw is None:
            return []
        if isinstance(raw, str):
            text = raw.strip()
            if not text:
                return []
            try:
                raw = json.loads(text)
            except ValueError as e:
                log.warning("Failed to parse tags JSON %r: %s", text[:80], e)
                return []
        if isinstance(raw, (list, tuple)):
            return [t for t in raw if isinstance(t, str)]
        log.warning("Ignoring tags of unsupported type %s", type(raw).__name__)
        return []

    def normalize_tag(self, tag: str) -> str:
        if tag is None:
            return ""
        return tag.strip().lower()

    def normalize_list(self, tags: Iterable[str]) -> List[str]:
        seen = set()
        result: List[str] = []
        for t in tags or []:
            final = self.normalize_tag(t)
            if final and final not in seen:
                seen.add(final)
                result.append(final)
        return result

    def suggest(self, known: Iterable[str], text: str, exclude: Iterable[str] = (),
                limit: Optional[int] = None) -> List[str]:
        """Known tags containing `text` that are not selected yet."""
        needle = (text or "").replace(",", "").strip().lower()
        if not needle:
            return []
        taken = set(exclude or ())
        out = [t for t in known if needle in t.lower() and t not in taken]
        return out if limit is None else out[:limit]
