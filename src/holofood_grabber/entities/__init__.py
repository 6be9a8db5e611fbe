"""Entity registry — add new HoloFood record categories here."""

from typing import Dict, Optional

from holofood_grabber.entities.base import EntityType
from holofood_grabber.errors import InvalidQueryError

_BIOSAMPLES = r"SAMEA\d+"
_SLUG = r"[a-z0-9][a-z0-9-]*"

ENTITY_TYPES: Dict[str, EntityType] = {
    et.name: et
    for et in (
        EntityType(
            name="animals",
            singular="animal",
            accession_pattern=_BIOSAMPLES,
            filter_keys=frozenset({"system", "accession", "require_sample_type"}),
        ),
        EntityType(
            name="samples",
            singular="sample",
            accession_pattern=_BIOSAMPLES,
            filter_keys=frozenset({
                "system", "accession", "title", "sample_type",
                "animal_accession", "require_metadata_marker",
            }),
        ),
        EntityType(
            name="genome-catalogues",
            singular="genome_catalogue",
            accession_pattern=_SLUG,
            filter_keys=frozenset({"system", "title"}),
            member_path="genomes",
        ),
        EntityType(
            name="viral-catalogues",
            singular="viral_catalogue",
            accession_pattern=_SLUG,
            filter_keys=frozenset({"system", "title"}),
            member_path="fragments",
        ),
        EntityType(
            name="analysis-summaries",
            singular="analysis_summary",
            accession_pattern=_SLUG,
            filter_keys=frozenset({"title", "sample_accession"}),
        ),
        EntityType(
            name="metabolights-studies",
            singular="metabolights_study",
            accession_pattern=r"MTBLS\d+",
        ),
    )
}

SAMPLE_TYPES = [
    "metagenomic_assembly",
    "metagenomic_amplicon",
    "metabolomic",
    "metabolomic_targeted",
    "histological",
    "host_genomic",
    "transcriptomic",
    "meta_transcriptomic",
    "iodine",
    "heavy_metal",
    "fatty_acids",
    "inflammatory_markers",
]

# Sample types whose measurements live in the metagenomics source, not HoloFood.
METAGENOMIC_SAMPLE_TYPES = {"metagenomic_assembly", "metagenomic_amplicon"}


def get_entity_type(name: str) -> EntityType:
    try:
        return ENTITY_TYPES[name]
    except KeyError:
        raise InvalidQueryError(
            f"Unknown entity type {name!r}; expected one of: "
            + ", ".join(ENTITY_TYPES),
            entity_type=name,
        ) from None


def lookup(name: str) -> Optional[EntityType]:
    return ENTITY_TYPES.get(name)


def singular_of(name: str) -> str:
    """Singular form for a table name; unregistered names are used as-is."""
    entity = ENTITY_TYPES.get(name)
    if entity is not None:
        return entity.singular
    return name.replace("-", "_")
