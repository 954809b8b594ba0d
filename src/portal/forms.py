"""
Form models validated before any network call is made.

Each form is a pydantic model. ``validate_form`` returns either the model or
a ``{field: first_error_message}`` mapping for inline display.
"""

from typing import Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic.networks import validate_email

from ..shared.security import InputValidator

FormT = TypeVar("FormT", bound=BaseModel)


def validate_form(model: Type[FormT], data: dict) -> Tuple[Optional[FormT], Dict[str, str]]:
    """
    Validate submitted form data.

    Returns:
        tuple: (model_or_None, errors_by_field)
    """
    try:
        return model.model_validate(data), {}
    except ValidationError as e:
        errors: Dict[str, str] = {}
        for error in e.errors():
            field = str(error["loc"][0]) if error["loc"] else "__all__"
            message = error.get("ctx", {}).get("error") or error["msg"]
            message = str(message)
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            errors.setdefault(field, message)
        return None, errors


def _min_length(value: str, length: int, message: str) -> str:
    value = (value or "").strip()
    if len(value) < length:
        raise ValueError(message)
    return value


class LoginForm(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def email_required(cls, v):
        return _min_length(v, 1, "Email is required.")

    @field_validator("password")
    @classmethod
    def password_required(cls, v):
        if not v:
            raise ValueError("Password is required.")
        return v


class RegisterForm(BaseModel):
    full_name: str
    email: str
    phone: str
    password: str

    @field_validator("full_name")
    @classmethod
    def name_length(cls, v):
        return _min_length(v, 2, "Name must be at least 2 characters.")

    @field_validator("email")
    @classmethod
    def email_format(cls, v):
        try:
            _, email = validate_email((v or "").strip())
        except ValueError:
            raise ValueError("Please enter a valid email address.")
        return email

    @field_validator("phone")
    @classmethod
    def phone_format(cls, v):
        if not InputValidator.validate_phone(v):
            raise ValueError("Please enter a valid phone number.")
        return InputValidator.normalize_phone(v)

    @field_validator("password")
    @classmethod
    def password_length(cls, v):
        if len(v or "") < 8:
            raise ValueError("Password must be at least 8 characters.")
        return v


class PasswordResetRequestForm(BaseModel):
    """Step one of password reset: email OR phone identifies the account."""
    email: Optional[str] = None
    phone: Optional[str] = None

    @model_validator(mode="after")
    def email_or_phone(self):
        self.email = (self.email or "").strip() or None
        self.phone = InputValidator.normalize_phone(self.phone or "") or None
        if not self.email and not self.phone:
            raise ValueError("Please provide either your email address or phone number")
        return self

    def to_payload(self) -> dict:
        payload = {}
        if self.email:
            payload["email"] = self.email
        if self.phone:
            payload["phone"] = self.phone
        return payload


class PasswordResetConfirmForm(BaseModel):
    otp: str
    new_password: str
    confirm_password: str

    @field_validator("otp")
    @classmethod
    def otp_required(cls, v):
        return _min_length(v, 1, "Reset code is required.")

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class PasswordChangeForm(BaseModel):
    new_password: str
    confirm_password: str

    @model_validator(mode="after")
    def password_rules(self):
        if not self.new_password or not self.confirm_password:
            raise ValueError("Please fill in all fields")
        if len(self.new_password) < 8:
            raise ValueError("Password must be at least 8 characters long")
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class ProfileForm(BaseModel):
    full_name: str = ""
    phone: str = ""
    profile_image: str = ""

    @field_validator("phone")
    @classmethod
    def phone_format(cls, v):
        if v and not InputValidator.validate_phone(v):
            raise ValueError("Please enter a valid phone number.")
        return InputValidator.normalize_phone(v)


class PhoneForm(BaseModel):
    phone: str

    @field_validator("phone")
    @classmethod
    def phone_format(cls, v):
        if not v or not v.strip():
            raise ValueError("Please enter your phone number")
        if not InputValidator.validate_phone(v):
            raise ValueError("Please enter a valid phone number.")
        return InputValidator.normalize_phone(v)


class ClientForm(BaseModel):
    """Registration or edit of an OAuth client."""
    client_name: str
    client_uri: Optional[str] = None
    logo_uri: Optional[str] = None
    description: Optional[str] = None
    redirect_uris: List[str] = Field(default_factory=list)
    scope: str = "openid profile email"
    visible_on_dashboard: bool = False

    @field_validator("client_name")
    @classmethod
    def name_length(cls, v):
        return _min_length(v, 2, "Application name must be at least 2 characters.")

    @field_validator("client_uri", "logo_uri", "description", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("client_uri", "logo_uri")
    @classmethod
    def valid_url(cls, v):
        if v is not None and not InputValidator.validate_redirect_uri(v):
            raise ValueError("Please enter a valid URL.")
        return v

    @field_validator("redirect_uris", mode="before")
    @classmethod
    def split_uris(cls, v):
        if isinstance(v, str):
            return InputValidator.split_redirect_uris(v)
        return v

    @field_validator("redirect_uris")
    @classmethod
    def valid_uris(cls, v):
        if not v:
            raise ValueError("At least one callback URL is required.")
        for uri in v:
            if not InputValidator.validate_redirect_uri(uri):
                raise ValueError(f"Invalid callback URL: {uri}")
        return v

    @field_validator("scope")
    @classmethod
    def scope_required(cls, v):
        return _min_length(v, 1, "Scope is required")

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class ServiceForm(BaseModel):
    """Creation of a service account."""
    service_name: str
    description: str = ""
    allowed_ips: List[str] = Field(default_factory=list)

    @field_validator("service_name")
    @classmethod
    def name_length(cls, v):
        return _min_length(v, 3, "Service name must be at least 3 characters.")


class ServiceUpdateForm(BaseModel):
    description: str = ""
    allowed_ips: List[str] = Field(default_factory=list)
    is_active: bool = True


class UserEditForm(BaseModel):
    full_name: str = ""
    role: str = "user"
    is_active: bool = True
    phone: Optional[str] = None

    @field_validator("phone", mode="before")
    @classmethod
    def blank_phone(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v
