import asyncio
from pathlib import Path

from applyflow.browser.mapper import apply_mappings, map_field, map_fields
from applyflow.types import ApplicantProfile, FieldMapping, FormField
from fakes import FakePage


def _profile(**overrides) -> ApplicantProfile:
    values = {
        "name": "Ada Lovelace King",
        "email": "ada@example.com",
        "phone": "+44 20 7946 0000",
        "location": "London",
        "linkedin": "https://linkedin.com/in/ada",
        "portfolio": "",
    }
    values.update(overrides)
    return ApplicantProfile(**values)


def _field(name: str, kind: str = "text", **extra) -> FormField:
    return FormField(kind=kind, name=name, selector=f'[name="{name}"]', **extra)


def test_email_keyword_wins_over_text_type() -> None:
    mapping = map_field(_field("email_address"), _profile())

    assert mapping is not None
    assert mapping.profile_field == "email"
    assert mapping.value == "ada@example.com"
    assert mapping.confidence == 0.95


def test_name_parts_come_from_full_name() -> None:
    mappings = map_fields([_field("firstName"), _field("last_name")], _profile())

    assert [(m.profile_field, m.value, m.confidence) for m in mappings] == [
        ("first_name", "Ada", 0.9),
        ("last_name", "Lovelace King", 0.9),
    ]


def test_placeholder_and_id_are_searched() -> None:
    by_placeholder = map_field(_field("q1", placeholder="Your City"), _profile())
    by_id = map_field(_field("q2", id="linkedin-url"), _profile())

    assert by_placeholder is not None and by_placeholder.profile_field == "location"
    assert by_placeholder.confidence == 0.8
    assert by_id is not None and by_id.profile_field == "linkedin"


def test_first_matching_attribute_claims_the_field() -> None:
    mappings = map_fields([_field("email_or_phone")], _profile())

    assert len(mappings) == 1
    assert mappings[0].profile_field == "email"


def test_unmatched_and_empty_values_are_omitted() -> None:
    fields = [_field("favourite_colour"), _field("portfolio_url"), _field("phone")]

    mappings = map_fields(fields, _profile())

    assert [m.profile_field for m in mappings] == ["phone"]


def test_resume_only_maps_file_inputs() -> None:
    text_field = _field("resume_link")
    file_field = _field("resume", kind="file")

    assert map_field(text_field, _profile(), "/tmp/cv.pdf") is None
    mapping = map_field(file_field, _profile(), "/tmp/cv.pdf")
    assert mapping is not None
    assert mapping.profile_field == "resume"
    assert mapping.confidence == 0.95
    assert map_field(file_field, _profile(), None) is None


def test_apply_mappings_continues_after_a_failing_field() -> None:
    page = FakePage(fill_errors={'[name="first_name"]'})
    mappings = map_fields([_field("first_name"), _field("email")], _profile())

    result = asyncio.run(apply_mappings(page, mappings))

    assert result.success is False
    assert [f.name for f in result.unfilled_fields] == ["first_name"]
    assert [m.profile_field for m in result.filled_fields] == ["email"]
    assert result.errors[0].startswith("Failed to fill field first_name:")
    assert page.filled == {'[name="email"]': "ada@example.com"}


def test_checkbox_already_checked_is_left_alone() -> None:
    checkbox = _field("email_updates", kind="checkbox")
    page = FakePage(checked={'[name="email_updates"]'})
    mapping = FieldMapping(field=checkbox, profile_field="email", value="ada@example.com", confidence=0.95)

    result = asyncio.run(apply_mappings(page, [mapping]))

    assert result.filled_fields == []
    assert result.unfilled_fields == []
    assert result.success is True


def test_select_falls_back_to_value_then_warns() -> None:
    city = _field("city", kind="select")
    country = _field("address_country", kind="select")
    page = FakePage(select_values={'[name="city"]': {"London"}})
    mappings = map_fields([city, country], _profile())

    result = asyncio.run(apply_mappings(page, mappings))

    assert page.selected == {'[name="city"]': "London"}
    assert [m.field.name for m in result.filled_fields] == ["city"]
    assert result.warnings == ['Could not select option "London" for field address_country']


def test_resume_upload_requires_existing_file(tmp_path: Path) -> None:
    resume = tmp_path / "resume.pdf"
    resume.write_bytes(b"%PDF-1.4")
    upload = _field("resume", kind="file")
    page = FakePage()

    missing = asyncio.run(apply_mappings(page, map_fields([upload], _profile(), str(tmp_path / "nope.pdf"))))
    present = asyncio.run(apply_mappings(page, map_fields([upload], _profile(), str(resume))))

    assert missing.filled_fields == []
    assert missing.warnings[0].startswith("Resume file not found:")
    assert [m.profile_field for m in present.filled_fields] == ["resume"]
    assert page.uploaded == {'[name="resume"]': str(resume)}
