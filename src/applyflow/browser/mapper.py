"""Map detected form fields onto applicant data and write the values into the page.

Mapping is keyword based: each field's lower-cased ``name``, ``id`` and
``placeholder`` are searched for the keywords of every profile attribute in
table order, and the first attribute that matches claims the field. The
confidence attached to a mapping is a property of the keyword family, not of
the individual match.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from applyflow.browser.driver import Page
from applyflow.types import ApplicantProfile, FieldKind, FieldMapping, FillResult, FormField

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FieldRule:
    profile_field: str
    keywords: tuple[str, ...]
    confidence: float
    value: Callable[[ApplicantProfile, str | None], str]
    kinds: frozenset[FieldKind] | None = None

    def matches(self, field: FormField, haystacks: tuple[str, ...]) -> bool:
        if self.kinds is not None and field.kind not in self.kinds:
            return False
        return any(keyword in text for keyword in self.keywords for text in haystacks)


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule(
        "first_name",
        ("firstname", "first_name", "first-name", "first name", "fname", "givenname", "given_name", "given name"),
        0.9,
        lambda profile, _resume: profile.first_name,
    ),
    FieldRule(
        "last_name",
        (
            "lastname",
            "last_name",
            "last-name",
            "last name",
            "lname",
            "surname",
            "familyname",
            "family_name",
            "family name",
        ),
        0.9,
        lambda profile, _resume: profile.last_name,
    ),
    FieldRule("email", ("email", "e-mail", "mail"), 0.95, lambda profile, _resume: profile.email),
    FieldRule("phone", ("phone", "mobile", "telephone", "tel"), 0.9, lambda profile, _resume: profile.phone),
    FieldRule("location", ("location", "address", "city"), 0.8, lambda profile, _resume: profile.location),
    FieldRule("linkedin", ("linkedin",), 0.9, lambda profile, _resume: profile.linkedin),
    FieldRule(
        "portfolio",
        ("portfolio", "website", "personal_website"),
        0.9,
        lambda profile, _resume: profile.portfolio,
    ),
    FieldRule(
        "resume",
        ("resume", "cv", "curriculum", "file", "upload"),
        0.95,
        lambda _profile, resume: resume or "",
        kinds=frozenset({"file"}),
    ),
)


def _haystacks(field: FormField) -> tuple[str, ...]:
    return tuple(text.lower() for text in (field.name, field.id or "", field.placeholder or "") if text)


def map_field(field: FormField, profile: ApplicantProfile, resume_path: str | None = None) -> FieldMapping | None:
    haystacks = _haystacks(field)
    for rule in FIELD_RULES:
        if not rule.matches(field, haystacks):
            continue
        value = rule.value(profile, resume_path)
        if not value:
            return None
        return FieldMapping(field=field, profile_field=rule.profile_field, value=value, confidence=rule.confidence)
    return None


def map_fields(
    fields: list[FormField],
    profile: ApplicantProfile,
    resume_path: str | None = None,
) -> list[FieldMapping]:
    mappings = []
    for field in fields:
        mapping = map_field(field, profile, resume_path)
        if mapping is not None:
            mappings.append(mapping)
    return mappings


async def apply_mappings(page: Page, mappings: list[FieldMapping]) -> FillResult:
    result = FillResult()

    for mapping in mappings:
        field = mapping.field
        try:
            if field.kind == "file" and mapping.profile_field == "resume":
                if mapping.value and Path(mapping.value).exists():
                    await page.set_input_files(field.selector, mapping.value)
                    result.filled_fields.append(mapping)
                else:
                    result.warnings.append(f"Resume file not found: {mapping.value}")
            elif field.kind == "checkbox":
                if not await page.is_checked(field.selector):
                    await page.check(field.selector)
                    result.filled_fields.append(mapping)
            elif field.kind == "select":
                if await _select(page, field.selector, mapping.value):
                    result.filled_fields.append(mapping)
                else:
                    result.warnings.append(f'Could not select option "{mapping.value}" for field {field.name}')
            else:
                await page.fill(field.selector, mapping.value)
                result.filled_fields.append(mapping)
        except Exception as exc:
            logger.warning("Failed to fill field %s: %s", field.name, exc)
            result.errors.append(f"Failed to fill field {field.name}: {exc}")
            result.unfilled_fields.append(field)

    result.success = not result.errors
    return result


async def _select(page: Page, selector: str, value: str) -> bool:
    try:
        await page.select_option(selector, label=value)
        return True
    except Exception as exc:
        logger.debug("select by label failed for %s, trying value: %s", selector, exc)
    try:
        await page.select_option(selector, value=value)
        return True
    except Exception as exc:
        logger.debug("select_option failed for %s: %s", selector, exc)
        return False
