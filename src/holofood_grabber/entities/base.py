"""Descriptor for one record category served by the HoloFood API."""

import re
from dataclasses import dataclass, field
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class EntityType:
    name: str  # API path segment, e.g. "genome-catalogues"
    singular: str  # used for foreign-key columns, e.g. "genome_catalogue"
    accession_pattern: str
    filter_keys: FrozenSet[str] = field(default_factory=frozenset)
    member_path: Optional[str] = None  # paginated sub-collection of a catalogue
    has_detail: bool = True

    @property
    def foreign_key(self) -> str:
        return f"{self.singular}_accession"

    def is_valid_accession(self, accession: str) -> bool:
        return re.fullmatch(self.accession_pattern, accession) is not None
