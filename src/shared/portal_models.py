"""
Pydantic models for the resources the portal reads from the authorization API.

The API owns every one of these entities. The portal only holds a copy for
the lifetime of a single page request, so the models are lenient: unknown
fields are ignored and most fields are optional.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union
from enum import Enum


class ResponseType(str, Enum):
    """OAuth response types."""
    CODE = "code"


class UserRole(str, Enum):
    """Roles the portal distinguishes for navigation."""
    USER = "user"
    DEVELOPER = "developer"
    ADMIN = "admin"


class ApiModel(BaseModel):
    """Base for API payloads: ignore unknown fields."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UserProfile(ApiModel):
    """
    The signed-in user as returned by ``/users/me``.

    Fetched fresh on every protected page.
    """
    id: Union[str, int] = Field(..., validation_alias=AliasChoices("id", "_id"), description="User identifier")
    email: str = Field(..., description="Email address")
    full_name: Optional[str] = Field(default=None, description="Display name")
    is_active: bool = True
    is_superuser: bool = False
    is_email_verified: bool = False
    google_id: Optional[str] = None
    profile_image: Optional[str] = None
    created_at: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_developer(self) -> bool:
        """Developers and superusers see the developer console."""
        return self.role == UserRole.DEVELOPER.value or self.is_superuser

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    @property
    def initials(self) -> str:
        parts = (self.full_name or self.email).split()
        return "".join(p[0] for p in parts[:2]).upper()


class UserStats(ApiModel):
    """Aggregate counters for the user management screen."""
    total_users: int = 0
    active_users: int = 0
    admins: int = 0
    new_users_24h: int = 0


class ClientInfo(ApiModel):
    """
    Public metadata for an OAuth client.

    Shown on the consent screen.
    """
    client_name: str = Field(..., description="Application name")
    client_uri: Optional[str] = None
    logo_uri: Optional[str] = None
    scope: Optional[str] = None


class OAuthClient(ApiModel):
    """An OAuth client registration owned by a developer."""
    client_id: str
    client_name: str
    client_uri: Optional[str] = None
    logo_uri: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[str] = None
    scope: Optional[str] = None
    redirect_uris: List[str] = Field(default_factory=list)
    visible_on_dashboard: bool = False
    client_secret: Optional[str] = Field(
        default=None,
        description="Only present in create and regenerate responses"
    )


class ServiceAccount(ApiModel):
    """A non-human identity with an API key and IP allow-list."""
    id: Union[str, int]
    service_name: str
    description: Optional[str] = None
    allowed_ips: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: Optional[str] = None
    last_used_at: Optional[str] = None
    usage_count: int = 0
    owner_id: Optional[str] = None
    api_key: Optional[str] = Field(
        default=None,
        description="Only present in create and rotate-key responses"
    )


class RequestLogEntry(ApiModel):
    """An immutable record of a past API call made with a service key."""
    id: Union[str, int]
    service_id: Optional[Union[str, int]] = None
    method: str
    path: str
    response_status: int
    duration_ms: float = 0
    timestamp: str
    request_body: Optional[Any] = None
    request_headers: Optional[Any] = None
    response_body: Optional[Any] = None
    response_headers: Optional[Any] = None
    client_ip: Optional[str] = None

    @property
    def status_class(self) -> str:
        """Bucket a status code for display (2xx, 4xx, ...)."""
        return f"{self.response_status // 100}xx"


class LogPage(ApiModel):
    """One page of request logs."""
    items: List[RequestLogEntry] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    size: int = 20
    pages: int = 1

    @classmethod
    def from_response(cls, data: Union[Dict[str, Any], List[Any], None], page: int = 1) -> "LogPage":
        """
        Build a page from either a paginated object or a bare list.

        A bare list is treated as a single page holding everything.
        """
        if isinstance(data, list):
            items = [RequestLogEntry.model_validate(item) for item in data]
            return cls(items=items, total=len(items), page=1, size=len(items), pages=1)
        if not data:
            return cls(page=page)
        return cls(
            items=[RequestLogEntry.model_validate(item) for item in data.get("items") or []],
            total=data.get("total") or 0,
            page=data.get("page") or page,
            size=data.get("size") or 20,
            pages=data.get("pages") or 1,
        )


class Instructor(ApiModel):
    name: Optional[str] = None
    email: Optional[str] = None


class Course(ApiModel):
    """A course from the learning platform catalogue."""
    id: int
    title: str
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    thumbnail: Optional[str] = None
    category: Optional[str] = None
    instructor: Optional[Instructor] = None
    instructors: List[Instructor] = Field(default_factory=list)
    price: Optional[Union[str, float]] = None
    is_free: bool = False
    enrollment_count: Optional[int] = None
    max_enrollments: Optional[int] = None
    course_url: Optional[str] = None
    product_key: Optional[str] = None


class Enrollment(ApiModel):
    """A course the signed-in user is enrolled in."""
    id: int
    title: str
    slug: Optional[str] = None
    enrollment_date: Optional[str] = None
    status: Optional[str] = None
    progress_percentage: float = 0
    completed_at: Optional[str] = None
    category: Optional[str] = None
    course_url: Optional[str] = None


class Transaction(ApiModel):
    """A billing order."""
    id: Union[int, str]
    order_id: Optional[Union[str, int]] = None
    amount: Optional[Union[str, float]] = None
    currency: Optional[str] = None
    payment_status: str
    payment_method: Optional[str] = None
    created_at: Optional[str] = None
    course_title: Optional[str] = None
    product_name: Optional[str] = None


class AuthorizeParams(BaseModel):
    """
    Query parameters of an incoming ``/authorize`` request.

    Only ``client_id``, ``redirect_uri`` and ``response_type`` are required
    for the flow to proceed; the rest are forwarded when present.
    """
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    response_type: Optional[str] = None
    scope: Optional[str] = None
    state: Optional[str] = None
    nonce: Optional[str] = None

    REQUIRED: ClassVar[Tuple[str, ...]] = ("client_id", "redirect_uri", "response_type")
    FORWARDED: ClassVar[Tuple[str, ...]] = ("client_id", "redirect_uri", "response_type", "scope", "state", "nonce")

    @property
    def missing(self) -> List[str]:
        """Names of required parameters that are absent or empty."""
        return [name for name in self.REQUIRED if not getattr(self, name)]

    @property
    def is_complete(self) -> bool:
        return not self.missing

    @property
    def scopes(self) -> List[str]:
        return self.scope.split() if self.scope else []

    def to_query(self) -> Dict[str, str]:
        """Present parameters in a stable order for forwarding."""
        return {
            name: getattr(self, name)
            for name in self.FORWARDED
            if getattr(self, name)
        }
