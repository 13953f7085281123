from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator
from pydantic_core import PydanticCustomError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")
PHONE_CHARS_PATTERN = re.compile(r"^[\d\s\-()]+$")


def _limit(value: str | None, size: int, message: str) -> str | None:
    if value is not None and len(value) > size:
        raise PydanticCustomError("string_too_long", message)
    return value


def _pattern(value: str | None, pattern: re.Pattern[str], message: str) -> str | None:
    # empty strings are how the UI clears a field
    if value and not pattern.match(value):
        raise PydanticCustomError("string_pattern_mismatch", message)
    return value


class FormDataSchema(BaseModel):
    """Structural rules shared by every form's field data.

    Only the common fields are typed; form-specific fields pass through
    untouched and are checked by the completeness rules instead.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    party_name: str | None = Field(default=None, alias="partyName")
    firm_name: str | None = Field(default=None, alias="firmName")
    street_address: str | None = Field(default=None, alias="streetAddress")
    city: str | None = None
    state: str | None = None
    zip_code: str | None = Field(default=None, alias="zipCode")
    telephone_no: str | None = Field(default=None, alias="telephoneNo")
    fax_no: str | None = Field(default=None, alias="faxNo")
    email: str | None = None
    attorney_for: str | None = Field(default=None, alias="attorneyFor")
    state_bar_number: str | None = Field(default=None, alias="stateBarNumber")
    county: str | None = None
    petitioner: str | None = None
    respondent: str | None = None
    case_number: str | None = Field(default=None, alias="caseNumber")
    facts: str | None = None
    signature_date: str | None = Field(default=None, alias="signatureDate")
    signature: str | None = None

    no_orders: bool | None = Field(default=None, alias="noOrders")
    agree_orders: bool | None = Field(default=None, alias="agreeOrders")
    consent_custody: bool | None = Field(default=None, alias="consentCustody")
    consent_visitation: bool | None = Field(default=None, alias="consentVisitation")

    @field_validator("party_name", "petitioner", "respondent", "firm_name", "attorney_for")
    @classmethod
    def _names(cls, value: str | None) -> str | None:
        return _limit(value, 200, "Name must be less than 200 characters")

    @field_validator("street_address")
    @classmethod
    def _street(cls, value: str | None) -> str | None:
        return _limit(value, 300, "Address must be less than 300 characters")

    @field_validator("city", "county")
    @classmethod
    def _city(cls, value: str | None) -> str | None:
        return _limit(value, 100, "City must be less than 100 characters")

    @field_validator("state")
    @classmethod
    def _state(cls, value: str | None) -> str | None:
        return _limit(value, 50, "State must be less than 50 characters")

    @field_validator("zip_code")
    @classmethod
    def _zip(cls, value: str | None) -> str | None:
        return _pattern(value, ZIP_PATTERN, "ZIP code must be 5 or 9 digits")

    @field_validator("telephone_no", "fax_no")
    @classmethod
    def _phone(cls, value: str | None) -> str | None:
        return _limit(value, 20, "Phone number must be less than 20 characters")

    @field_validator("email")
    @classmethod
    def _email(cls, value: str | None) -> str | None:
        value = _pattern(value, EMAIL_PATTERN, "Invalid email address")
        return _limit(value, 255, "Email must be less than 255 characters")

    @field_validator("state_bar_number")
    @classmethod
    def _bar_number(cls, value: str | None) -> str | None:
        return _limit(value, 20, "Bar number must be less than 20 characters")

    @field_validator("case_number")
    @classmethod
    def _case_number(cls, value: str | None) -> str | None:
        return _limit(value, 100, "Case number must be less than 100 characters")

    @field_validator("facts")
    @classmethod
    def _facts(cls, value: str | None) -> str | None:
        return _limit(value, 10000, "Facts must be less than 10000 characters")


class DV100FormDataSchema(FormDataSchema):
    protected_person_name: str | None = Field(default=None, alias="protectedPersonName")
    restrained_person_name: str | None = Field(default=None, alias="restrainedPersonName")
    item1d_email: str | None = None
    abuse_description: str | None = Field(default=None, alias="abuseDescription")

    @field_validator("protected_person_name", "restrained_person_name")
    @classmethod
    def _party_names(cls, value: str | None) -> str | None:
        return _limit(value, 200, "Name must be less than 200 characters")

    @field_validator("item1d_email")
    @classmethod
    def _item_email(cls, value: str | None) -> str | None:
        return _pattern(value, EMAIL_PATTERN, "Invalid email address")

    @field_validator("abuse_description")
    @classmethod
    def _abuse_description(cls, value: str | None) -> str | None:
        return _limit(value, 10000, "Description must be less than 10000 characters")


class FieldPosition(BaseModel):
    """Placement of one overlay field, as percentages of the page box."""

    model_config = ConfigDict(extra="allow")

    top: float = Field(ge=0, le=100, allow_inf_nan=False)
    left: float = Field(ge=0, le=100, allow_inf_nan=False)
    width: float | None = Field(default=None, gt=0, le=100, allow_inf_nan=False)
    height: float | None = Field(default=None, gt=0, le=100, allow_inf_nan=False)


class FieldPositions(RootModel[dict[str, FieldPosition]]):
    pass


class PersonalInfo(BaseModel):
    """Reusable personal data kept in the vault."""

    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)

    full_name: str
    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    telephone_no: str | None = None
    fax_no: str | None = None
    email_address: str | None = None
    attorney_name: str | None = None
    firm_name: str | None = None
    bar_number: str | None = None

    @field_validator("full_name")
    @classmethod
    def _full_name(cls, value: str) -> str:
        if not value:
            raise PydanticCustomError("missing", "Name is required")
        return _limit(value, 100, "Name must be less than 100 characters")  # type: ignore[return-value]

    @field_validator("street_address")
    @classmethod
    def _street(cls, value: str | None) -> str | None:
        return _limit(value, 200, "Address must be less than 200 characters")

    @field_validator("city")
    @classmethod
    def _city(cls, value: str | None) -> str | None:
        return _limit(value, 100, "City must be less than 100 characters")

    @field_validator("state")
    @classmethod
    def _state(cls, value: str | None) -> str | None:
        if value and len(value) != 2:
            raise PydanticCustomError("string_length", "State must be 2 characters")
        return value

    @field_validator("zip_code")
    @classmethod
    def _zip(cls, value: str | None) -> str | None:
        return _pattern(value, ZIP_PATTERN, "ZIP code must be 5 or 9 digits")

    @field_validator("telephone_no", "fax_no")
    @classmethod
    def _phone(cls, value: str | None) -> str | None:
        value = _pattern(value, PHONE_CHARS_PATTERN, "Invalid phone number format")
        return _limit(value, 20, "Phone number too long")

    @field_validator("email_address")
    @classmethod
    def _email(cls, value: str | None) -> str | None:
        value = _pattern(value, EMAIL_PATTERN, "Invalid email address")
        return _limit(value, 255, "Email must be less than 255 characters")

    @field_validator("attorney_name")
    @classmethod
    def _attorney(cls, value: str | None) -> str | None:
        return _limit(value, 100, "Attorney name must be less than 100 characters")

    @field_validator("firm_name")
    @classmethod
    def _firm(cls, value: str | None) -> str | None:
        return _limit(value, 200, "Firm name must be less than 200 characters")

    @field_validator("bar_number")
    @classmethod
    def _bar_number(cls, value: str | None) -> str | None:
        return _limit(value, 20, "Bar number must be less than 20 characters")
