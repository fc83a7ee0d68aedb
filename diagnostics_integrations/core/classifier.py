"""
Service classification by catalog name.

Services are matched against keyword sets in a fixed priority order:
diagnostic, then verification, then repair. Anything unmatched is treated
as a repair so no submitted service is lost.
"""

import re
from typing import List, Optional, Pattern, Sequence, Tuple

from ..config import Settings
from ..models import ServiceCategory


class ServiceClassifier:
    """Assigns exactly one category to a service name"""

    def __init__(self, rules: Sequence[Tuple[ServiceCategory, Sequence[str]]],
                 default: ServiceCategory = ServiceCategory.REPAIR):
        """
        Args:
            rules: Ordered (category, keywords) pairs; first match wins
            default: Category for names matching no rule
        """
        self.rules = [(category, [k.lower() for k in keywords if k]) for category, keywords in rules]
        self.default = default
        self._row_patterns = {
            category: _prefix_pattern(keywords) for category, keywords in self.rules
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceClassifier":
        return cls([
            (ServiceCategory.DIAGNOSTIC, settings.DIAGNOSTIC_KEYWORDS),
            (ServiceCategory.VERIFICATION, settings.VERIFICATION_KEYWORDS),
            (ServiceCategory.REPAIR, settings.REPAIR_KEYWORDS),
        ])

    def classify(self, name: Optional[str]) -> ServiceCategory:
        """Case-insensitive substring match of the name against each rule"""
        lowered = (name or "").lower()
        for category, keywords in self.rules:
            if any(k in lowered for k in keywords):
                return category
        return self.default

    def row_category(self, name: Optional[str], categories: Sequence[ServiceCategory]) -> Optional[ServiceCategory]:
        """
        Category of an existing deal row whose name starts with one of the
        category's keywords (leading whitespace ignored), or None
        """
        for category in categories:
            pattern = self._row_patterns.get(category)
            if pattern is not None and pattern.match(name or ""):
                return category
        return None


def _prefix_pattern(keywords: List[str]) -> Optional[Pattern]:
    if not keywords:
        return None
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"^\s*(?:{alternatives})", re.IGNORECASE)
