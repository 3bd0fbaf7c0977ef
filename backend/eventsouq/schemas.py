from datetime import datetime
from typing import Any, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from .models import UserRole


AccountType = Literal["attendee", "organizer", "provider"]
ProfileVisibility = Literal["public", "friends_only", "private"]
LanguagePreference = Literal["ar", "en"]
ModerationKind = Literal["event", "service", "provider"]
ReportEntityType = Literal["event", "service", "user", "group"]
ReportReason = Literal[
    "spam",
    "harassment",
    "inappropriate",
    "false_info",
    "hate_speech",
    "fraud",
    "misleading",
    "safety_concern",
    "poor_quality",
    "impersonation",
    "other",
]
ReportStatus = Literal["pending", "reviewed", "resolved", "dismissed"]
SuggestionReason = Literal["mutual_group", "mutual_connection", "popular"]


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    full_name: Optional[str] = None

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        if not any(ch.isalpha() for ch in v) or not any(ch.isdigit() for ch in v):
            raise ValueError("Password must include letters and numbers")
        return v


class UserRegister(UserCreate):
    confirm_password: str
    account_type: AccountType = "attendee"
    referral_code: Optional[str] = Field(default=None, max_length=20)

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info):
        password = info.data.get("password") if hasattr(info, "data") else None
        if password and v != password:
            raise ValueError("Passwords do not match")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str
    role: UserRole
    user_id: int


class TokenData(BaseModel):
    email: Optional[str] = None
    role: Optional[UserRole] = None
    user_id: Optional[int] = None


class ProfileResponse(BaseModel):
    full_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    profile_visibility: ProfileVisibility = "public"
    language_preference: LanguagePreference = "ar"
    referral_code: Optional[str] = None
    referral_count: int = 0
    points_balance: int = 0
    is_shield_member: bool = False

    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    id: int
    email: EmailStr
    role: UserRole
    is_admin: bool = False
    profile: Optional[ProfileResponse] = None

    model_config = ConfigDict(from_attributes=True)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=255)
    bio: Optional[str] = Field(None, max_length=2000)
    avatar_url: Optional[str] = Field(None, max_length=500)
    profile_visibility: Optional[ProfileVisibility] = None
    language_preference: Optional[LanguagePreference] = None


class CategoryResponse(BaseModel):
    id: int
    name: str
    name_ar: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class EventCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)
    title_ar: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    category_id: Optional[int] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    location: Optional[str] = Field(None, max_length=255)
    max_attendees: Optional[int] = Field(default=None, ge=1)
    price: float = Field(default=0.0, ge=0)


class EventResponse(BaseModel):
    id: int
    title: str
    title_ar: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    organizer_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    location: Optional[str] = None
    max_attendees: Optional[int] = None
    current_attendees: int = 0
    price: float = 0.0
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=255)
    name_ar: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    service_category_id: Optional[int] = None
    price: float = Field(default=0.0, ge=0)


class ServiceResponse(BaseModel):
    id: int
    name: str
    name_ar: Optional[str] = None
    description: Optional[str] = None
    service_category_id: Optional[int] = None
    provider_id: int
    price: float = 0.0
    status: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BookingResponse(BaseModel):
    id: int
    user_id: int
    status: str
    total_amount: float
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ProviderApplicationCreate(BaseModel):
    business_name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    document_url: Optional[str] = Field(None, max_length=500)


class ProviderApplicationResponse(BaseModel):
    id: int
    user_id: int
    business_name: str
    description: Optional[str] = None
    document_url: Optional[str] = None
    verification_status: str
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EventShareRequest(BaseModel):
    friend_ids: List[int] = Field(..., min_length=1)
    message: Optional[str] = Field(None, max_length=500)


class PendingItem(BaseModel):
    kind: ModerationKind
    id: int
    title: str
    owner_id: Optional[int] = None
    owner_name: Optional[str] = None
    created_at: Optional[datetime] = None


class PendingItemsResponse(BaseModel):
    events: List[PendingItem]
    services: List[PendingItem]
    providers: List[PendingItem]


class RejectRequest(BaseModel):
    comment: str = ""


class ModerationResult(BaseModel):
    outcome: Literal["done", "ignored"]
    kind: Literal["event", "service", "provider", "withdrawal"]
    id: int
    status: Optional[str] = None
    message: str


class BulkApproveItem(BaseModel):
    kind: ModerationKind
    id: int


class BulkApproveRequest(BaseModel):
    items: List[BulkApproveItem] = Field(..., min_length=1, max_length=100)


class BulkApproveItemResult(BaseModel):
    kind: ModerationKind
    id: int
    success: bool
    error: Optional[str] = None


class BulkApproveResponse(BaseModel):
    success_count: int
    results: List[BulkApproveItemResult]
    message: str


class AdminStatsResponse(BaseModel):
    total_users: int
    total_events: int
    total_services: int
    pending_events: int
    pending_services: int
    pending_providers: int
    pending_reports: int
    total_bookings: int
    pending_withdrawals: int


class ActivityLogResponse(BaseModel):
    id: int
    admin_id: Optional[int] = None
    admin_name: Optional[str] = None
    action: str
    entity_type: str
    entity_id: int
    details: Optional[dict[str, Any]] = None
    created_at: datetime


class AdminPerformance(BaseModel):
    admin_id: int
    admin_name: Optional[str] = None
    events_approved: int = 0
    events_rejected: int = 0
    services_approved: int = 0
    services_rejected: int = 0
    providers_approved: int = 0
    providers_rejected: int = 0
    reports_handled: int = 0
    withdrawals_processed: int = 0
    total_actions: int = 0
    last_active: Optional[datetime] = None


class ReportCreate(BaseModel):
    entity_type: ReportEntityType
    entity_id: int
    reason: ReportReason
    details: Optional[str] = Field(None, max_length=2000)


class ReportUpdate(BaseModel):
    status: Literal["reviewed", "resolved", "dismissed"]
    admin_notes: Optional[str] = Field(None, max_length=2000)


class ReportResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    reporter_id: int
    reason: str
    details: Optional[str] = None
    status: str
    admin_notes: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SettingUpdate(BaseModel):
    value: Any = None


class SettingResponse(BaseModel):
    key: str
    value: Any = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    id: int
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    follower_count: int = 0


class SuggestionResponse(UserSummary):
    suggestion_reason: Optional[SuggestionReason] = None


class FollowRequestResponse(BaseModel):
    id: int
    requester_id: int
    requester_name: Optional[str] = None
    status: str
    created_at: datetime


class FriendRequestAction(BaseModel):
    action: Literal["accept", "reject", "cancel"]


class GroupCreate(BaseModel):
    group_name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    event_id: Optional[int] = None
    max_members: int = Field(default=50, ge=2, le=1000)


class GroupResponse(BaseModel):
    id: int
    group_name: str
    description: Optional[str] = None
    event_id: Optional[int] = None
    created_by: int
    max_members: int
    current_members: int

    model_config = ConfigDict(from_attributes=True)


class GroupInvite(BaseModel):
    user_id: int


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UnreadCountResponse(BaseModel):
    unread: int


class MessageResponse(BaseModel):
    message: str


class BadgeResponse(BaseModel):
    id: int
    name: str
    name_ar: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    rarity: str
    requirement_type: Optional[str] = None
    requirement_value: Optional[int] = None
    points_reward: int = 0

    model_config = ConfigDict(from_attributes=True)


class BadgeProgress(BadgeResponse):
    progress: float
    current_value: int
    earned: bool
    awarded_at: Optional[datetime] = None


class AchievementsResponse(BaseModel):
    stats: dict[str, Any]
    badges: List[BadgeProgress]
    earned_count: int
    total_points: int
    newly_awarded: List[int] = []


class ReferralResponse(BaseModel):
    referral_code: Optional[str] = None
    referral_count: int = 0
    total_rewards: float = 0.0


class WalletTransactionResponse(BaseModel):
    id: int
    type: str
    amount: float
    description: Optional[str] = None
    status: str
    reference_id: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WalletResponse(BaseModel):
    balance: float
    pending_earnings: float
    total_earned: float
    transactions: List[WalletTransactionResponse]


class WithdrawalRequest(BaseModel):
    amount: float = Field(..., gt=0)
    bank_name: str = ""
    account_number: str = ""
    account_holder_name: str = ""


class WithdrawalResponse(BaseModel):
    success: bool
    message: str
    transaction_id: int
    reference_id: str
