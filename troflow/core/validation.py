"""Validation of form field data, field layouts and whole packets.

Everything here is pure: results are returned as :class:`ValidationResult`
objects and nothing raises for bad input.
"""
from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ValidationError

from troflow.core.autofill import find_inconsistencies
from troflow.core.schema import (
    DV100FormDataSchema,
    EMAIL_PATTERN,
    FieldPositions,
    FormDataSchema,
    ZIP_PATTERN,
)
from troflow.domain.dependencies import FORM_DEPENDENCIES
from troflow.domain.workflow import FORM_REQUIREMENTS, FormStatus, FormType, PacketType, Workflow, is_done


@dataclass(slots=True)
class ValidationIssue:
    message: str
    code: str
    severity: str = "error"
    form_type: FormType | None = None
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["form_type"] = self.form_type.value if self.form_type else None
        return payload


@dataclass(slots=True)
class ValidationWarning:
    message: str
    suggestion: str | None = None
    form_type: FormType | None = None
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["form_type"] = self.form_type.value if self.form_type else None
        return payload


@dataclass(slots=True)
class ValidationResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def extend(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [item.to_dict() for item in self.errors],
            "warnings": [item.to_dict() for item in self.warnings],
        }


# ----------------------------------------------------------------------
# field helpers
# ----------------------------------------------------------------------
def has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (bool, int, float)):
        return True
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return False


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value))


def is_valid_phone(value: str) -> bool:
    return len(re.sub(r"\D", "", value)) == 10


def is_valid_zip_code(value: str) -> bool:
    return bool(ZIP_PATTERN.match(value))


_DATE_FORMATS = ("%m/%d/%Y", "%m-%d-%Y", "%Y/%m/%d")


def _parse_date(value: str) -> date | None:
    raw = value.strip()
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def is_valid_date(value: str, *, today: date | None = None) -> bool:
    """Parseable and between 1900-01-01 and one year from today."""

    if not value:
        return False
    parsed = _parse_date(value)
    if parsed is None:
        return False
    today = today or date.today()
    try:
        upper = today.replace(year=today.year + 1)
    except ValueError:  # 29 February
        upper = today.replace(year=today.year + 1, day=28)
    return date(1900, 1, 1) <= parsed <= upper


def is_valid_case_number(value: str) -> bool:
    if not value:
        return False
    cleaned = re.sub(r"[\s-]", "", value)
    return bool(re.fullmatch(r"[A-Za-z0-9]{6,}", cleaned))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


# ----------------------------------------------------------------------
# structural schemas
# ----------------------------------------------------------------------
FORM_SCHEMAS: dict[FormType, type[BaseModel]] = {
    FormType.DV100: DV100FormDataSchema,
}


def _issues_from(exc: ValidationError, code: str, form_type: FormType | None) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        issues.append(
            ValidationIssue(
                message=error.get("msg", "Invalid value"),
                code=code,
                form_type=form_type,
                field=location or None,
            )
        )
    return issues


def validate_form_schema(form_type: FormType | None, data: Mapping[str, Any]) -> ValidationResult:
    """Check field formats and length limits before anything is persisted."""

    schema = FORM_SCHEMAS.get(form_type, FormDataSchema) if form_type else FormDataSchema
    try:
        schema.model_validate(dict(data))
    except ValidationError as exc:
        return ValidationResult(errors=_issues_from(exc, "INVALID_FIELD", form_type))
    return ValidationResult()


def validate_field_positions(positions: Mapping[str, Any]) -> ValidationResult:
    try:
        FieldPositions.model_validate(dict(positions))
    except ValidationError as exc:
        return ValidationResult(errors=_issues_from(exc, "INVALID_FIELD_POSITION", None))
    return ValidationResult()


# ----------------------------------------------------------------------
# completeness rules
# ----------------------------------------------------------------------
REQUIRED_FIELDS: dict[FormType, tuple[str, ...]] = {
    FormType.DV100: (
        "protectedPersonName",
        "restrainedPersonName",
        "relationship",
        "abuseDescription",
        "ordersRequested",
        "signatureDate",
        "signature",
    ),
    FormType.CLETS001: (
        "protectedPersonName",
        "protectedPersonAddress",
        "protectedPersonCity",
        "protectedPersonState",
        "protectedPersonZip",
        "protectedPersonDOB",
        "protectedPersonGender",
        "protectedPersonRace",
        "restrainedPersonName",
        "restrainedPersonDOB",
        "restrainedPersonGender",
        "lawEnforcementAgency",
    ),
    FormType.DV105: (
        "petitionerName",
        "respondentName",
        "caseNumber",
        "children",
        "custodyOrders",
        "visitationOrders",
    ),
    FormType.FL150: (
        "partyName",
        "caseNumber",
        "averageMonthlyIncome",
        "averageMonthlyExpenses",
        "signatureDate",
        "signature",
    ),
    FormType.DV120: (
        "respondentName",
        "petitionerName",
        "caseNumber",
        "agreeOrDisagree",
        "signatureDate",
        "signature",
    ),
    FormType.FL320: (
        "partyName",
        "caseNumber",
        "petitioner",
        "respondent",
        "signatureDate",
        "signature",
    ),
    FormType.DV101: ("incidentDate", "incidentDescription"),
    # court-issued
    FormType.DV109: (),
    FormType.DV110: (),
}


@dataclass(frozen=True, slots=True)
class ConditionalRequirement:
    field: str
    condition: Callable[[Mapping[str, Any]], bool]
    message: str


def _has_children_listed(data: Mapping[str, Any]) -> bool:
    children = data.get("children")
    return isinstance(children, list) and len(children) > 0


CONDITIONAL_REQUIREMENTS: dict[FormType, tuple[ConditionalRequirement, ...]] = {
    FormType.DV100: (
        ConditionalRequirement(
            "childNames",
            lambda data: data.get("hasChildren") is True,
            "Child names are required when children are involved",
        ),
        ConditionalRequirement(
            "childSupportAmount",
            lambda data: data.get("requestingChildSupport") is True,
            "Child support amount is required when requesting child support",
        ),
        ConditionalRequirement(
            "spousalSupportAmount",
            lambda data: data.get("requestingSpousalSupport") is True,
            "Spousal support amount is required when requesting spousal support",
        ),
    ),
    FormType.DV105: (
        ConditionalRequirement(
            "currentCustodyArrangement",
            _has_children_listed,
            "Current custody arrangement must be described",
        ),
    ),
    FormType.FL150: (
        ConditionalRequirement(
            "employerName",
            lambda data: data.get("employmentStatus") == "employed",
            "Employer name is required if employed",
        ),
        ConditionalRequirement(
            "childCareExpenses",
            lambda data: bool(data.get("hasChildren")),
            "Child care expenses must be listed if you have children",
        ),
    ),
}

ABUSE_TYPE_FIELDS = (
    "physicalAbuse",
    "sexualAbuse",
    "emotionalAbuse",
    "financialAbuse",
    "stalking",
    "harassment",
)

ORDER_FIELDS = (
    "personalConductOrders",
    "stayAwayOrders",
    "moveOutOrders",
    "childCustodyOrders",
    "childSupportOrders",
    "spousalSupportOrders",
    "propertyOrders",
)

PHYSICAL_DESCRIPTION_FIELDS = ("height", "weight", "hairColor", "eyeColor")

INITIATING_PACKETS = (PacketType.INITIATING_NO_CHILDREN, PacketType.INITIATING_WITH_CHILDREN)


def _check_required(form_type: FormType, data: Mapping[str, Any], result: ValidationResult) -> None:
    for name in REQUIRED_FIELDS.get(form_type, ()):
        if not has_value(data.get(name)):
            result.errors.append(
                ValidationIssue(
                    message=f"{name} is required",
                    code="REQUIRED_FIELD_MISSING",
                    form_type=form_type,
                    field=name,
                )
            )
    for requirement in CONDITIONAL_REQUIREMENTS.get(form_type, ()):
        if requirement.condition(data) and not has_value(data.get(requirement.field)):
            result.errors.append(
                ValidationIssue(
                    message=requirement.message,
                    code="CONDITIONAL_REQUIREMENT_NOT_MET",
                    form_type=form_type,
                    field=requirement.field,
                )
            )


def _rules_dv100(data: Mapping[str, Any], result: ValidationResult) -> None:
    if not any(data.get(name) is True for name in ABUSE_TYPE_FIELDS):
        result.errors.append(
            ValidationIssue(
                message="At least one type of abuse must be indicated",
                code="NO_ABUSE_TYPE_SELECTED",
                severity="critical",
                form_type=FormType.DV100,
            )
        )
    if not any(data.get(name) is True for name in ORDER_FIELDS):
        result.errors.append(
            ValidationIssue(
                message="At least one order must be requested",
                code="NO_ORDERS_REQUESTED",
                severity="critical",
                form_type=FormType.DV100,
            )
        )
    description = data.get("abuseDescription")
    if isinstance(description, str) and len(description) < 50:
        result.warnings.append(
            ValidationWarning(
                message="Abuse description is very brief. More details may strengthen your case.",
                suggestion="Consider adding more specific details about dates, locations, and incidents",
                form_type=FormType.DV100,
                field="abuseDescription",
            )
        )


def _rules_clets(data: Mapping[str, Any], result: ValidationResult) -> None:
    zip_code = data.get("protectedPersonZip")
    if zip_code and not (isinstance(zip_code, str) and is_valid_zip_code(zip_code)):
        result.errors.append(
            ValidationIssue(
                message="Invalid ZIP code format",
                code="INVALID_ZIP_CODE",
                form_type=FormType.CLETS001,
                field="protectedPersonZip",
            )
        )
    birth_date = data.get("protectedPersonDOB")
    if birth_date and not (isinstance(birth_date, str) and is_valid_date(birth_date)):
        result.errors.append(
            ValidationIssue(
                message="Invalid date of birth",
                code="INVALID_DATE",
                form_type=FormType.CLETS001,
                field="protectedPersonDOB",
            )
        )
    missing = [name for name in PHYSICAL_DESCRIPTION_FIELDS if not has_value(data.get(name))]
    if missing:
        result.warnings.append(
            ValidationWarning(
                message="Physical description is incomplete. This information helps law enforcement.",
                suggestion=f"Add: {', '.join(missing)}",
                form_type=FormType.CLETS001,
            )
        )


def _rules_dv105(data: Mapping[str, Any], result: ValidationResult) -> None:
    children = data.get("children")
    if isinstance(children, list):
        if not children:
            result.errors.append(
                ValidationIssue(
                    message="At least one child must be listed",
                    code="NO_CHILDREN_LISTED",
                    severity="critical",
                    form_type=FormType.DV105,
                    field="children",
                )
            )
        for index, child in enumerate(children):
            child = child if isinstance(child, Mapping) else {}
            for key in ("name", "birthdate"):
                if not child.get(key):
                    result.errors.append(
                        ValidationIssue(
                            message=f"Child {index + 1} {key} is required",
                            code="CHILD_INFO_INCOMPLETE",
                            form_type=FormType.DV105,
                            field=f"children[{index}].{key}",
                        )
                    )
    case_number = data.get("caseNumber")
    if case_number and not (isinstance(case_number, str) and is_valid_case_number(case_number)):
        result.warnings.append(
            ValidationWarning(
                message="Case number format may be invalid",
                suggestion="Verify case number matches court records",
                form_type=FormType.DV105,
                field="caseNumber",
            )
        )


def _rules_fl150(data: Mapping[str, Any], result: ValidationResult) -> None:
    income = data.get("averageMonthlyIncome")
    expenses = data.get("averageMonthlyExpenses")
    for name, value, label in (
        ("averageMonthlyIncome", income, "Income"),
        ("averageMonthlyExpenses", expenses, "Expenses"),
    ):
        if has_value(value) and not _is_number(value):
            result.errors.append(
                ValidationIssue(
                    message=f"{label} must be a valid number",
                    code="INVALID_NUMBER",
                    form_type=FormType.FL150,
                    field=name,
                )
            )
    if _is_number(income) and _is_number(expenses) and expenses > income * 1.2:
        result.warnings.append(
            ValidationWarning(
                message="Expenses exceed income by more than 20%",
                suggestion="Review expense calculations for accuracy",
                form_type=FormType.FL150,
            )
        )


def _rules_dv120(data: Mapping[str, Any], result: ValidationResult) -> None:
    if not data.get("agreeOrDisagree"):
        result.errors.append(
            ValidationIssue(
                message="You must indicate whether you agree or disagree with the request",
                code="NO_RESPONSE_INDICATED",
                severity="critical",
                form_type=FormType.DV120,
                field="agreeOrDisagree",
            )
        )


FORM_RULES: dict[FormType, Callable[[Mapping[str, Any], ValidationResult], None]] = {
    FormType.DV100: _rules_dv100,
    FormType.CLETS001: _rules_clets,
    FormType.DV105: _rules_dv105,
    FormType.FL150: _rules_fl150,
    FormType.DV120: _rules_dv120,
}


def validate_form_data(form_type: FormType | str, data: Mapping[str, Any]) -> ValidationResult:
    """Completeness and consistency rules for one form's field data."""

    try:
        form_type = FormType(form_type)
    except ValueError:
        return ValidationResult(
            errors=[
                ValidationIssue(
                    message=f"Unknown form type: {form_type}",
                    code="UNKNOWN_FORM_TYPE",
                    severity="critical",
                )
            ]
        )

    result = ValidationResult()
    if form_type in (FormType.DV109, FormType.DV110):
        return result
    _check_required(form_type, data, result)
    rule = FORM_RULES.get(form_type)
    if rule is not None:
        rule(data, result)
    return result


def is_form_complete(form_type: FormType, data: Mapping[str, Any]) -> bool:
    return all(has_value(data.get(name)) for name in REQUIRED_FIELDS.get(form_type, ()))


def form_completion_percentage(form_type: FormType, data: Mapping[str, Any]) -> int:
    required = REQUIRED_FIELDS.get(form_type, ())
    if not required:
        return 100
    filled = sum(1 for name in required if has_value(data.get(name)))
    return round(filled / len(required) * 100)


# ----------------------------------------------------------------------
# packet
# ----------------------------------------------------------------------
def validate_packet_data(
    workflow: Workflow,
    form_data: Mapping[FormType, Mapping[str, Any]],
) -> ValidationResult:
    """Check a whole packet is ready to file."""

    result = ValidationResult()
    statuses = workflow.form_statuses
    requirements = FORM_REQUIREMENTS[workflow.packet_type]

    for form_type in requirements.required:
        status = statuses.get(form_type)
        if status in (FormStatus.NOT_STARTED, FormStatus.IN_PROGRESS):
            result.errors.append(
                ValidationIssue(
                    message=f"{form_type.value} must be completed before filing",
                    code="INCOMPLETE_FORM",
                    severity="critical",
                    form_type=form_type,
                )
            )
            continue
        data = form_data.get(form_type)
        if data:
            result.extend(validate_form_data(form_type, data))
        else:
            result.errors.append(
                ValidationIssue(
                    message=f"{form_type.value} data not found",
                    code="FORM_DATA_MISSING",
                    severity="critical",
                    form_type=form_type,
                )
            )

    packet_forms = set(requirements.all_forms)
    for dependency in FORM_DEPENDENCIES:
        # prerequisites that belong to a different packet type cannot be satisfied here
        if dependency.required_form not in packet_forms:
            continue
        required_done = is_done(statuses.get(dependency.required_form))
        if is_done(statuses.get(dependency.dependent_form)) and not required_done:
            result.errors.append(
                ValidationIssue(
                    message=dependency.reason,
                    code="DEPENDENCY_NOT_MET",
                    severity="critical",
                    form_type=dependency.dependent_form,
                )
            )
        if dependency.condition is not None and dependency.condition(workflow) and not required_done:
            result.errors.append(
                ValidationIssue(
                    message=dependency.reason,
                    code="CONDITIONAL_DEPENDENCY_NOT_MET",
                    severity="critical",
                    form_type=dependency.dependent_form,
                )
            )

    for message in find_inconsistencies(form_data):
        result.warnings.append(
            ValidationWarning(
                message=message,
                suggestion="Review and correct conflicting information across forms",
            )
        )

    config = workflow.packet_config
    if config.has_children and workflow.packet_type in INITIATING_PACKETS:
        if not is_done(statuses.get(FormType.DV105)):
            result.errors.append(
                ValidationIssue(
                    message="DV-105 must be completed when children are involved",
                    code="MISSING_REQUIRED_FORM",
                    severity="critical",
                    form_type=FormType.DV105,
                )
            )
    if config.requesting_support and not is_done(statuses.get(FormType.FL150)):
        result.errors.append(
            ValidationIssue(
                message="FL-150 must be completed when requesting support",
                code="MISSING_REQUIRED_FORM",
                severity="critical",
                form_type=FormType.FL150,
            )
        )

    return result
