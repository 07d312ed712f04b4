"""Tests for TextPreparationService."""

from care_embeddings.domain.models import EntityRecord
from care_embeddings.domain.services.text_preparation_service import TextPreparationService


def service(max_text_length: int = 8000) -> TextPreparationService:
    return TextPreparationService(max_text_length=max_text_length, current_year=lambda: 2025)


class TestHospitalText:
    """Tests for hospital descriptions."""

    def test_full_hospital_description(self):
        """Test attributes appear in priority order joined by '. '."""
        text = service().prepare_hospital_text(
            "Boston General",
            {
                "type": "ACADEMIC_MEDICAL",
                "city": "Boston",
                "state": "MA",
                "bed_count": 650,
                "established": 1890,
                "emergency_services": True,
                "trauma_level": "I",
                "metadata": {
                    "specialties": ["cardiology", "oncology"],
                    "languages": ["English", "Spanish"],
                },
                "website": "https://example.org",
            },
        )

        assert text == (
            "Boston General. academic medical hospital. located in Boston, MA. "
            "large hospital with 650 beds. established in 1890, over 130 years of medical service. "
            "provides Level I trauma center and emergency services. "
            "medical specialties include cardiology, oncology. "
            "multilingual services in English, Spanish. online services available"
        )

    def test_bed_count_classes(self):
        """Test bed counts map to size phrases."""
        prep = service()
        assert "medium-sized hospital with 300 beds" in prep.prepare_hospital_text("H", {"bed_count": 300})
        assert "120-bed facility" in prep.prepare_hospital_text("H", {"bed_count": 120})

    def test_bed_count_stored_as_text(self):
        """Test numeric strings are coerced and other values are skipped."""
        prep = service()
        assert "medium-sized hospital with 400 beds" in prep.prepare_hospital_text("H", {"bed_count": "400"})
        assert prep.prepare_hospital_text("H", {"bed_count": "unknown"}) == "H"

    def test_establishment_phrases(self):
        """Test hospital age is described in rounded terms."""
        prep = service()
        assert "established in 1980, 45+ years of medical care" in prep.prepare_hospital_text(
            "H", {"established": 1980}
        )
        assert prep.prepare_hospital_text("H", {"established": 2015}).endswith("established in 2015")

    def test_emergency_without_trauma(self):
        """Test emergency services alone."""
        text = service().prepare_hospital_text("H", {"emergency_services": True})
        assert "provides emergency medical services" in text

    def test_lists_are_capped(self):
        """Test specialties and programs are limited."""
        text = service().prepare_hospital_text(
            "H",
            {
                "metadata": {
                    "specialties": [f"s{i}" for i in range(10)],
                    "programs": [f"p{i}" for i in range(10)],
                }
            },
        )
        assert "s5" in text and "s6" not in text
        assert "p3" in text and "p4" not in text

    def test_single_language_omitted(self):
        """Test one language is not worth mentioning."""
        text = service().prepare_hospital_text("H", {"metadata": {"languages": ["English"]}})
        assert "multilingual" not in text

    def test_description_truncated(self):
        """Test long descriptions are cut at 200 characters."""
        text = service().prepare_hospital_text("H", {"description": "x" * 300})
        assert text.endswith("x" * 200 + "...")

    def test_overlong_text_keeps_priority_parts(self):
        """Test shortening keeps the most important parts."""
        prep = service(max_text_length=120)
        text = prep.prepare_hospital_text(
            "Boston General",
            {
                "type": "GENERAL",
                "city": "Boston",
                "state": "MA",
                "bed_count": 650,
                "description": "A very long description " * 10,
            },
        )
        assert len(text) <= 120
        assert text.startswith("Boston General. general hospital. located in Boston, MA")


class TestDoctorText:
    """Tests for doctor descriptions."""

    def test_doctor_description(self):
        """Test doctor attributes are described."""
        text = service().prepare_doctor_text(
            "Jane Smith",
            {
                "title": "Dr.",
                "specialties": ["cardiology"],
                "years_of_experience": 15,
                "hospitals": ["Boston General"],
                "languages": ["English", "French"],
                "is_accepting_new_patients": True,
                "is_telehealth_available": True,
            },
        )
        assert text == (
            "Dr. Jane Smith. specializes in cardiology. 15 years of experience. "
            "practices at Boston General. speaks English, French. accepting new patients. "
            "telehealth consultations available"
        )


def test_prepare_dispatches_on_entity_type():
    """Test prepare picks the right builder and keeps the ID."""
    prep = service()
    doctor = prep.prepare(
        EntityRecord(id="d1", name="Jane Smith", entity_type="doctor", attributes={"title": "Dr."})
    )
    hospital = prep.prepare(EntityRecord(id="h1", name="Boston General", attributes={"city": "Boston"}))

    assert doctor.id == "d1"
    assert doctor.text == "Dr. Jane Smith"
    assert hospital.text == "Boston General. located in Boston"


def test_included_fields_and_structure():
    """Test metadata helpers describe the prepared text."""
    attributes = {"city": "Boston", "type": "GENERAL", "metadata": {"specialties": ["x"]}}
    fields = TextPreparationService.included_fields(attributes, name="H")
    assert fields == ["name", "type", "city", "metadata"]

    structure = TextPreparationService.analyze_text_structure(
        "H. located in Boston. medical specialties include x"
    )
    assert structure["has_location"]
    assert structure["has_specialties"]
    assert structure["word_count"] == 8
