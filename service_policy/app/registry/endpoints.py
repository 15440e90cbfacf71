"""
Endpoint registry: resource patterns mapped to access classes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from shared.errors import ValidationError
from ..policy.patterns import matches, specificity


class AccessClass(str, Enum):
    """Sensitivity tier of an endpoint."""
    STANDARD = "standard"
    SENSITIVE = "sensitive"
    ADMINISTRATIVE = "administrative"
    PLATFORM = "platform"

    @classmethod
    def parse(cls, value) -> "AccessClass":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown access class: {value!r}") from None


@dataclass(frozen=True)
class EndpointEntry:
    pattern: str
    access_class: AccessClass
    description: Optional[str] = None


class EndpointRegistry:
    """Classifies concrete resources; the most specific matching pattern wins."""

    def __init__(self, entries: Iterable[EndpointEntry], default_class: AccessClass = AccessClass.STANDARD):
        ordered: List[EndpointEntry] = sorted(
            entries, key=lambda e: specificity(e.pattern), reverse=True
        )
        self._entries: Tuple[EndpointEntry, ...] = tuple(ordered)
        self.default_class = default_class

    @property
    def entries(self) -> Tuple[EndpointEntry, ...]:
        return self._entries

    def classify(self, resource: str) -> AccessClass:
        for entry in self._entries:
            if matches(entry.pattern, resource):
                return entry.access_class
        return self.default_class
