# validation.py
# Input models for operator forms (pydantic).
# parse_* helpers turn pydantic errors into errors.ValidationError with per-field details.

from datetime import date

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

PAN_PATTERN = r"^[A-Z]{5}[0-9]{4}[A-Z]{1}$"
DEMAT_MIN_LENGTH = 16


class ApplicationForm(BaseModel):
    name: str = Field(min_length=1)
    pan: str = Field(pattern=PAN_PATTERN)
    demat_no: str = Field(min_length=DEMAT_MIN_LENGTH)
    shares_req: int = Field(ge=1)

    @field_validator('name', 'pan', 'demat_no', mode='before')
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class CompanyForm(BaseModel):
    name: str = Field(min_length=1)
    total_shares: int = Field(gt=0)
    price: float = Field(gt=0)
    start_date: date
    end_date: date

    @field_validator('name', mode='before')
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode='after')
    def _dates_in_order(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


_MESSAGES = {
    'pan': "Invalid PAN format",
    'demat_no': f"Demat number must be at least {DEMAT_MIN_LENGTH} characters",
    'shares_req': "Must request at least 1 share",
    'name': "Name is required",
}


def _details(exc):
    out = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get('loc', ())) or "__all__"
        if err.get('type') == 'missing':
            message = f"{field} is required"
        else:
            message = _MESSAGES.get(field, err.get('msg', "invalid value"))
        out.append({'field': field, 'message': message})
    return out


def parse_application_form(data):
    try:
        return ApplicationForm(**data)
    except PydanticValidationError as exc:
        raise ValidationError("Validation failed", _details(exc)) from exc


def parse_company_form(data):
    try:
        return CompanyForm(**data)
    except PydanticValidationError as exc:
        raise ValidationError("Validation failed", _details(exc)) from exc
