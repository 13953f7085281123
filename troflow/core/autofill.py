"""Field mapping used to pre-populate forms from earlier forms or the vault."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, MutableMapping

from troflow.domain.workflow import FormType

AutofillSource = Literal["previous_form", "vault", "both"]

FieldMap = tuple[tuple[str, str], ...]


@dataclass(slots=True)
class AutofillResult:
    fields: dict[str, Any] = field(default_factory=dict)
    source: AutofillSource = "previous_form"

    @property
    def fields_autofilled(self) -> int:
        return len(self.fields)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields_autofilled": self.fields_autofilled,
            "fields": self.fields,
            "source": self.source,
        }


def _person_fields(prefix: str) -> FieldMap:
    suffixes = (
        "Name",
        "Address",
        "City",
        "State",
        "Zip",
        "DOB",
        "Gender",
        "Race",
        "Height",
        "Weight",
        "HairColor",
        "EyeColor",
    )
    return tuple((f"{prefix}{suffix}", f"{prefix}{suffix}") for suffix in suffixes)


DV100_TO_CLETS: FieldMap = (
    *_person_fields("protectedPerson"),
    *_person_fields("restrainedPerson"),
    ("caseNumber", "caseNumber"),
    ("county", "county"),
)

DV100_TO_DV105: FieldMap = (
    ("protectedPersonName", "petitionerName"),
    ("restrainedPersonName", "respondentName"),
    ("caseNumber", "caseNumber"),
    ("county", "county"),
    ("children", "children"),
    ("childNames", "childNames"),
    ("childBirthdates", "childBirthdates"),
    ("numberOfChildren", "numberOfChildren"),
    ("currentCustodyArrangement", "currentCustodyArrangement"),
)

DV100_TO_FL150: FieldMap = (
    ("protectedPersonName", "partyName"),
    ("caseNumber", "caseNumber"),
    ("county", "county"),
    ("protectedPersonName", "petitioner"),
    ("restrainedPersonName", "respondent"),
    ("numberOfChildren", "numberOfChildren"),
)

DV120_TO_FL150: FieldMap = (
    ("respondentName", "partyName"),
    ("caseNumber", "caseNumber"),
    ("county", "county"),
)

# partyName is always the respondent; their attorney goes to attorneyFor
DV120_TO_FL320: FieldMap = (
    ("respondentName", "partyName"),
    ("caseNumber", "caseNumber"),
    ("county", "county"),
    ("petitionerName", "petitioner"),
    ("respondentName", "respondent"),
    ("attorneyName", "attorneyFor"),
    ("firmName", "firmName"),
    ("stateBarNumber", "stateBarNumber"),
    ("streetAddress", "streetAddress"),
    ("city", "city"),
    ("state", "state"),
    ("zipCode", "zipCode"),
    ("telephoneNo", "telephoneNo"),
    ("faxNo", "faxNo"),
    ("email", "email"),
)

# target form -> [(source form, field map)], applied in order
PREVIOUS_FORM_MAPPINGS: dict[FormType, tuple[tuple[FormType, FieldMap], ...]] = {
    FormType.CLETS001: ((FormType.DV100, DV100_TO_CLETS),),
    FormType.DV105: ((FormType.DV100, DV100_TO_DV105),),
    FormType.FL150: (
        (FormType.DV100, DV100_TO_FL150),
        (FormType.DV120, DV120_TO_FL150),
    ),
    FormType.FL320: ((FormType.DV120, DV120_TO_FL320),),
}

VAULT_COMMON_FIELDS: FieldMap = (
    ("full_name", "partyName"),
    ("street_address", "streetAddress"),
    ("city", "city"),
    ("state", "state"),
    ("zip_code", "zipCode"),
    ("phone", "telephoneNo"),
    ("telephone_no", "telephoneNo"),
    ("fax_no", "faxNo"),
    ("email", "email"),
    ("email_address", "email"),
    ("attorney_name", "firmName"),
    ("attorney_bar_number", "stateBarNumber"),
    ("county", "county"),
)

VAULT_FORM_FIELDS: dict[FormType, FieldMap] = {
    FormType.DV100: (
        ("full_name", "protectedPersonName"),
        ("street_address", "protectedPersonAddress"),
        ("city", "protectedPersonCity"),
        ("state", "protectedPersonState"),
        ("zip_code", "protectedPersonZip"),
        ("date_of_birth", "protectedPersonDOB"),
        ("gender", "protectedPersonGender"),
        ("race", "protectedPersonRace"),
    ),
    FormType.DV105: (("full_name", "petitionerName"),),
    FormType.DV120: (("full_name", "respondentName"),),
    FormType.CLETS001: (
        ("height", "protectedPersonHeight"),
        ("weight", "protectedPersonWeight"),
        ("hair_color", "protectedPersonHairColor"),
        ("eye_color", "protectedPersonEyeColor"),
    ),
}


def apply_field_map(source: Mapping[str, Any], field_map: FieldMap) -> dict[str, Any]:
    """Copy every populated source field to its target name."""

    mapped: dict[str, Any] = {}
    for source_field, target_field in field_map:
        value = source.get(source_field)
        if value:
            mapped[target_field] = value
    return mapped


def map_vault_to_form(vault_data: Mapping[str, Any], form_type: FormType) -> dict[str, Any]:
    mapped = apply_field_map(vault_data, VAULT_COMMON_FIELDS)
    mapped.update(apply_field_map(vault_data, VAULT_FORM_FIELDS.get(form_type, ())))
    return mapped


def map_previous_forms(
    target_form: FormType,
    completed_forms: Mapping[FormType, Mapping[str, Any]],
) -> dict[str, Any]:
    mapped: dict[str, Any] = {}
    for source_form, field_map in PREVIOUS_FORM_MAPPINGS.get(target_form, ()):
        source_data = completed_forms.get(source_form)
        if source_data:
            mapped.update(apply_field_map(source_data, field_map))
    return mapped


def autofill_from_previous_forms(
    target_form: FormType,
    completed_forms: Mapping[FormType, Mapping[str, Any]],
) -> AutofillResult:
    return AutofillResult(fields=map_previous_forms(target_form, completed_forms), source="previous_form")


def autofill_from_vault(target_form: FormType, vault_data: Mapping[str, Any]) -> AutofillResult:
    return AutofillResult(fields=map_vault_to_form(vault_data, target_form), source="vault")


def autofill_from_both(
    target_form: FormType,
    vault_data: Mapping[str, Any],
    completed_forms: Mapping[FormType, Mapping[str, Any]],
) -> AutofillResult:
    """Vault values first, then anything earlier forms say wins."""

    fields = map_vault_to_form(vault_data, target_form)
    fields.update(map_previous_forms(target_form, completed_forms))
    return AutofillResult(fields=fields, source="both")


# ----------------------------------------------------------------------
# cross-form consistency
# ----------------------------------------------------------------------
COMMON_FIELDS = ("caseNumber", "county", "petitionerName", "respondentName")

# fields that carry the same fact under a form-specific name
_COMMON_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "caseNumber": ("caseNumber",),
    "county": ("county",),
    "petitionerName": ("petitionerName", "protectedPersonName"),
    "respondentName": ("respondentName", "restrainedPersonName"),
}


def extract_common_values(forms: Mapping[Any, Mapping[str, Any]]) -> dict[str, list[str]]:
    """Distinct values of each shared field across ``forms``, in first-seen order."""

    values: dict[str, dict[str, None]] = {name: {} for name in COMMON_FIELDS}
    for data in forms.values():
        for name, aliases in _COMMON_FIELD_ALIASES.items():
            for alias in aliases:
                if data.get(alias) is not None:
                    values[name][str(data[alias]).strip()] = None
                    break
    return {name: list(seen) for name, seen in values.items()}


def find_inconsistencies(forms: Mapping[Any, Mapping[str, Any]]) -> list[str]:
    return [
        f"{name} has inconsistent values: {', '.join(seen)}"
        for name, seen in extract_common_values(forms).items()
        if len(seen) > 1
    ]


def synchronize_common_fields(
    forms: Mapping[FormType, MutableMapping[str, Any]],
    authoritative: FormType,
) -> None:
    """Fill blank shared fields in every form from the authoritative form, in place."""

    source = forms.get(authoritative)
    if not source:
        return
    for form_type, data in forms.items():
        if form_type == authoritative:
            continue
        for name in COMMON_FIELDS:
            if source.get(name) and not data.get(name):
                data[name] = source[name]
