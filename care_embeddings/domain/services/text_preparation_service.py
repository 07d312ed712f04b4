"""Text preparation for entity embeddings.

Responsible for turning hospital and doctor records into descriptive prose.
Single Responsibility: decide which attributes reach the embedding and in
what order, most search-relevant first.
"""

import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from care_embeddings.domain.models import EntityRecord, IndexableEntity

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEXT_LENGTH = 8000
MAX_SPECIALTIES = 6
MAX_PROGRAMS = 4
MAX_DESCRIPTION_CHARS = 200
PRIORITY_PARTS = 6
MINIMAL_PARTS = 4


def _as_list(value: Any) -> list[str]:
    if isinstance(value, list | tuple):
        return [str(item) for item in value if item]
    return []


def _size_phrase(bed_count: Any) -> str | None:
    """Describe hospital size; bed counts stored as text (e.g. "400") are accepted."""
    try:
        beds = int(bed_count)
    except (TypeError, ValueError):
        if bed_count:
            logger.warning(f"Ignoring non-numeric bed_count {bed_count!r}")
        return None
    if beds <= 0:
        return None
    if beds > 500:
        return f"large hospital with {beds} beds"
    if beds > 200:
        return f"medium-sized hospital with {beds} beds"
    return f"{beds}-bed facility"


class TextPreparationService:
    """Service for building embedding text from entity records.

    Args:
        max_text_length: Longest text to produce before shortening
        current_year: Callable returning the current year, injectable for tests
    """

    def __init__(
        self,
        max_text_length: int = DEFAULT_MAX_TEXT_LENGTH,
        current_year: Callable[[], int] = lambda: datetime.now(UTC).year,
    ):
        self._max_text_length = max_text_length
        self._current_year = current_year

    def prepare(self, entity: EntityRecord) -> IndexableEntity:
        """Prepare an entity for indexing."""
        if entity.entity_type == "doctor":
            text = self.prepare_doctor_text(entity.name, entity.attributes)
        else:
            text = self.prepare_hospital_text(entity.name, entity.attributes)
        return IndexableEntity(id=entity.id, name=entity.name, text=text or entity.name)

    def prepare_hospital_text(self, name: str, attributes: dict[str, Any]) -> str:
        """Describe a hospital, most important facts first.

        Args:
            name: Hospital name
            attributes: Stored hospital columns plus a ``metadata`` dict

        Returns:
            Sentences joined with ". "
        """
        parts: list[str] = []

        if name:
            parts.append(name)

        hospital_type = attributes.get("type")
        if hospital_type:
            parts.append(f"{str(hospital_type).replace('_', ' ').lower()} hospital")

        city, state = attributes.get("city"), attributes.get("state")
        if city and state:
            parts.append(f"located in {city}, {state}")
        elif city:
            parts.append(f"located in {city}")

        size = _size_phrase(attributes.get("bed_count"))
        if size:
            parts.append(size)

        established = attributes.get("established")
        if established:
            parts.append(self._establishment_phrase(established))

        emergency = attributes.get("emergency_services")
        trauma_level = attributes.get("trauma_level")
        if emergency and trauma_level:
            parts.append(f"provides Level {trauma_level} trauma center and emergency services")
        elif emergency:
            parts.append("provides emergency medical services")
        elif trauma_level:
            parts.append(f"Level {trauma_level} trauma center")

        metadata = attributes.get("metadata") or {}
        specialties = _as_list(metadata.get("specialties"))
        if specialties:
            parts.append(f"medical specialties include {', '.join(specialties[:MAX_SPECIALTIES])}")
        programs = _as_list(metadata.get("programs"))
        if programs:
            parts.append(f"specialized programs: {', '.join(programs[:MAX_PROGRAMS])}")
        accreditations = _as_list(metadata.get("accreditations"))
        if accreditations:
            parts.append(f"accredited by {', '.join(accreditations)}")
        languages = _as_list(metadata.get("languages"))
        if len(languages) > 1:
            parts.append(f"multilingual services in {', '.join(languages)}")
        if metadata.get("medical_school"):
            parts.append(f"affiliated with {metadata['medical_school']}")
        research = _as_list(metadata.get("research_programs"))
        if research:
            parts.append(f"research focus: {', '.join(research)}")

        description = (attributes.get("description") or "").strip()
        if description:
            if len(description) > MAX_DESCRIPTION_CHARS:
                description = description[:MAX_DESCRIPTION_CHARS] + "..."
            parts.append(description)

        if attributes.get("website"):
            parts.append("online services available")

        return self._join(parts, name)

    def prepare_doctor_text(self, name: str, attributes: dict[str, Any]) -> str:
        """Describe a doctor for semantic search."""
        parts: list[str] = []

        title = attributes.get("title")
        parts.append(f"{title} {name}".strip() if title else name)

        specialties = _as_list(attributes.get("specialties"))
        if specialties:
            parts.append(f"specializes in {', '.join(specialties[:MAX_SPECIALTIES])}")

        experience = attributes.get("years_of_experience")
        if experience:
            parts.append(f"{experience} years of experience")

        hospitals = _as_list(attributes.get("hospitals"))
        if hospitals:
            parts.append(f"practices at {', '.join(hospitals)}")

        languages = _as_list(attributes.get("languages"))
        if len(languages) > 1:
            parts.append(f"speaks {', '.join(languages)}")

        if attributes.get("is_accepting_new_patients"):
            parts.append("accepting new patients")
        if attributes.get("is_telehealth_available"):
            parts.append("telehealth consultations available")

        biography = (attributes.get("biography") or "").strip()
        if biography:
            if len(biography) > MAX_DESCRIPTION_CHARS:
                biography = biography[:MAX_DESCRIPTION_CHARS] + "..."
            parts.append(biography)

        return self._join(parts, name)

    def _establishment_phrase(self, established: Any) -> str:
        try:
            age = self._current_year() - int(established)
        except (TypeError, ValueError):
            return f"established in {established}"
        if age > 100:
            return f"established in {established}, over {age // 10 * 10} years of medical service"
        if age > 25:
            return f"established in {established}, {age // 5 * 5}+ years of medical care"
        return f"established in {established}"

    def _join(self, parts: list[str], name: str) -> str:
        text = ". ".join(parts)
        if len(text) <= self._max_text_length:
            return text

        logger.warning(f"Embedding text for '{name}' too long ({len(text)} chars), shortening")
        text = ". ".join(parts[:PRIORITY_PARTS])
        if len(text) > self._max_text_length:
            text = ". ".join(parts[:MINIMAL_PARTS])
        return text[: self._max_text_length]

    @staticmethod
    def included_fields(attributes: dict[str, Any], name: str | None = None) -> list[str]:
        """List which hospital fields contributed to the text."""
        fields = ["name"] if name else []
        for field in (
            "type",
            "city",
            "state",
            "bed_count",
            "established",
            "emergency_services",
            "trauma_level",
            "description",
            "metadata",
        ):
            if attributes.get(field):
                fields.append(field)
        return fields

    @staticmethod
    def analyze_text_structure(text: str) -> dict[str, Any]:
        """Summarize prepared text for embedding metadata."""
        lowered = text.lower()
        return {
            "word_count": len(text.split()),
            "sentence_count": len(re.findall(r"[.!?]+", text)),
            "has_specialties": "specialties" in lowered or "programs" in lowered,
            "has_location": "located in" in lowered,
        }
