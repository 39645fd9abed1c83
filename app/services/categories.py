"""Category label normalization and the category index."""
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set
from sqlalchemy.orm import Session
from app.constants import DEFAULT_CATEGORY
from app.db.queries import CategoryCount, get_category_counts

_WHITESPACE = re.compile(r"\s+")


def normalize_category(raw: Optional[str]) -> str:
    """Trim and collapse whitespace; empty or missing categories become 'General'."""
    if raw is None:
        return DEFAULT_CATEGORY
    cleaned = _WHITESPACE.sub(" ", raw.strip())
    return cleaned or DEFAULT_CATEGORY


@dataclass
class CategoryIndex:
    """Normalized category labels mapped to question totals and raw stored values.

    Several raw values can normalize to one label (``" Cardio"`` and
    ``"Cardio"``, or ``None`` and ``""`` under "General"); their counts are
    summed and all raw values are kept so filters hit every variant.
    """
    totals: Dict[str, int] = field(default_factory=dict)
    raw_values: Dict[str, Set[Optional[str]]] = field(default_factory=dict)

    @classmethod
    def from_counts(cls, counts: Iterable[CategoryCount]) -> "CategoryIndex":
        index = cls()
        for row in counts:
            label = normalize_category(row.cat_name)
            index.totals[label] = index.totals.get(label, 0) + int(row.q_count)
            index.raw_values.setdefault(label, set()).add(row.cat_name)
        return index

    @property
    def names(self) -> List[str]:
        return sorted(self.totals)

    def raw_for(self, labels: Iterable[str]) -> List[Optional[str]]:
        """Raw stored values for the given labels; unknown labels match nothing."""
        raw: Set[Optional[str]] = set()
        for label in labels:
            raw |= self.raw_values.get(normalize_category(label), set())
        # None sorts first so the order is stable for callers that compare lists
        return sorted(raw, key=lambda value: (value is not None, value or ""))


def load_category_index(db: Session) -> CategoryIndex:
    return CategoryIndex.from_counts(get_category_counts(db))
