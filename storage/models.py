"""
Record models for the deal-sourcing store.

Every collection in DealStore is backed by one dataclass here. Records are
persisted as a JSON document plus a handful of indexed columns, so the
dataclasses carry their own encode/decode helpers:

    company = Company(user_id="u1", company_number="12345678", company_name="Acme Ltd")
    payload = to_document(company)          # JSON-safe dict
    again = from_document(Company, payload)  # round-trips nested types

Enums are `str, Enum` so they serialize as their plain values.
"""

from __future__ import annotations

import functools
import typing
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

T = TypeVar("T")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Fixed-width ISO timestamp so stored values sort lexicographically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


# =============================================================================
# ENUMS
# =============================================================================

class CompanyStage(str, Enum):
    """Lifecycle stage of a sourced company."""
    DISCOVERED = "discovered"
    RESEARCHING = "researching"
    QUALIFIED = "qualified"
    CONTACTED = "contacted"
    MEETING = "meeting"
    INTRODUCED = "introduced"
    PASSED = "passed"


# Forward-only edges; anything else needs an operator edit.
STAGE_TRANSITIONS: Dict[CompanyStage, set] = {
    CompanyStage.DISCOVERED: {CompanyStage.RESEARCHING, CompanyStage.PASSED},
    CompanyStage.RESEARCHING: {CompanyStage.QUALIFIED, CompanyStage.PASSED},
    CompanyStage.QUALIFIED: {CompanyStage.CONTACTED},
    CompanyStage.CONTACTED: {CompanyStage.MEETING},
    CompanyStage.MEETING: {CompanyStage.INTRODUCED},
    CompanyStage.INTRODUCED: set(),
    CompanyStage.PASSED: set(),
}


def can_transition(current: CompanyStage, target: CompanyStage) -> bool:
    return target in STAGE_TRANSITIONS.get(current, set())


class FounderTier(str, Enum):
    EXCEPTIONAL = "exceptional"
    STRONG = "strong"
    PROMISING = "promising"
    STANDARD = "standard"


class RelationshipStrength(str, Enum):
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


class IntroductionStatus(str, Enum):
    CONSIDERING = "considering"
    PREPARING = "preparing"
    SENT = "sent"
    ACCEPTED = "accepted"
    MEETING_SCHEDULED = "meeting_scheduled"
    PASSED = "passed"
    INVESTED = "invested"


ACTIVE_INTRODUCTION_STATUSES = {
    IntroductionStatus.CONSIDERING,
    IntroductionStatus.PREPARING,
    IntroductionStatus.SENT,
    IntroductionStatus.ACCEPTED,
    IntroductionStatus.MEETING_SCHEDULED,
}


class OutreachChannel(str, Enum):
    EMAIL = "email"
    LINKEDIN = "linkedin"


class OutreachStatus(str, Enum):
    """Status of a queued outreach item. `sent` and `failed` are terminal."""
    DRAFT = "draft"
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    REPLIED = "replied"
    BOUNCED = "bounced"
    FAILED = "failed"


class JobType(str, Enum):
    DISCOVERY = "discovery"
    ENRICHMENT = "enrichment"
    QUALIFICATION = "qualification"
    OUTREACH_QUEUE = "outreach_queue"
    OUTREACH = "outreach"
    MATCHING = "matching"
    INVESTOR_DISCOVERY = "investor_discovery"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ValidationStatus(str, Enum):
    VALIDATED = "validated"
    NEEDS_REVIEW = "needs_review"
    REJECTED = "rejected"


# =============================================================================
# PROFILE ENTRIES
# =============================================================================

@dataclass
class EducationEntry:
    """One education line parsed from a profile."""
    school: str
    is_top_tier: bool = False
    tier: Optional[str] = None  # "tier1", "tier2" or None
    degree: Optional[str] = None  # phd, mba, masters, bachelors
    field_of_study: Optional[str] = None
    is_technical_field: bool = False


@dataclass
class ExperienceEntry:
    """One employer mention parsed from a profile."""
    company: str
    title: str = "Unknown"
    is_high_growth: bool = False
    is_founder_role: bool = False
    is_leadership_role: bool = False
    is_technical_role: bool = False


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class Company:
    user_id: str
    company_number: str
    company_name: str
    incorporation_date: Optional[date] = None
    company_status: str = "active"
    company_type: str = "ltd"
    registered_address: Optional[str] = None
    sic_codes: List[str] = field(default_factory=list)
    source: str = "auto_sourcing"
    stage: CompanyStage = CompanyStage.DISCOVERED
    funding_stage: str = "pre-seed"

    is_stealth_mode: bool = False
    recently_announced: bool = False
    description: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None

    # Scores
    overall_score: Optional[int] = None
    team_score: Optional[int] = None
    market_score: Optional[int] = None
    traction_score: Optional[int] = None
    bonus_score: Optional[int] = None
    qualification_tier: Optional[str] = None
    qualification_policy: Optional[str] = None
    qualified_at: Optional[datetime] = None
    last_scored_at: Optional[datetime] = None

    company_enrichment: Optional[Dict[str, Any]] = None
    discovered_at: Optional[datetime] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def age_days(self, today: Optional[date] = None) -> Optional[int]:
        if not self.incorporation_date:
            return None
        today = today or utc_now().date()
        return (today - self.incorporation_date).days


@dataclass
class Founder:
    user_id: str
    first_name: str
    last_name: str
    company_id: Optional[int] = None
    email: Optional[str] = None
    email_source: Optional[str] = None
    linkedin_url: Optional[str] = None
    headline: Optional[str] = None
    location: Optional[str] = None
    role: Optional[str] = None
    is_founder: bool = True
    source: str = "companies_house"

    # Parsed profile
    education: List[EducationEntry] = field(default_factory=list)
    experience: List[ExperienceEntry] = field(default_factory=list)
    stealth_signals: List[str] = field(default_factory=list)
    announcement_signals: List[str] = field(default_factory=list)
    is_repeat_founder: bool = False
    is_technical: bool = False
    prior_exits: int = 0
    years_experience: Optional[int] = None
    domain_expertise: List[str] = field(default_factory=list)
    enrichment_confidence: Optional[str] = None
    enriched_at: Optional[datetime] = None

    # Scores (always derived from education/experience)
    education_score: Optional[int] = None
    experience_score: Optional[int] = None
    overall_score: Optional[int] = None
    founder_tier: Optional[FounderTier] = None

    # Code hosting
    github_username: Optional[str] = None
    github_url: Optional[str] = None
    public_repos: Optional[int] = None
    followers: Optional[int] = None
    top_languages: List[str] = field(default_factory=list)
    organizations: List[str] = field(default_factory=list)
    technical_score: Optional[int] = None
    contribution_level: Optional[str] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_scored(self) -> bool:
        return self.overall_score is not None

    @property
    def has_top_tier_education(self) -> bool:
        return any(e.is_top_tier for e in self.education)

    @property
    def has_high_growth_experience(self) -> bool:
        return any(e.is_high_growth for e in self.experience)


@dataclass
class Investor:
    user_id: str
    vc_name: str
    firm_name: str
    email: Optional[str] = None
    website: Optional[str] = None
    stages: List[str] = field(default_factory=list)
    sectors: List[str] = field(default_factory=list)
    check_size: Optional[str] = None
    relationship_strength: RelationshipStrength = RelationshipStrength.WEAK
    last_contact_at: Optional[datetime] = None
    notes: Optional[str] = None

    # Discovery metadata
    partner_emails: List[Dict[str, Any]] = field(default_factory=list)
    portfolio_companies: List[Dict[str, Any]] = field(default_factory=list)
    discovered_from: Optional[str] = None
    activity_score: Optional[int] = None
    validation_status: Optional[ValidationStatus] = None
    validation_errors: List[str] = field(default_factory=list)

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Introduction:
    user_id: str
    company_id: int
    investor_id: int
    founder_id: Optional[int] = None
    status: IntroductionStatus = IntroductionStatus.CONSIDERING
    match_score: Optional[int] = None
    match_reasons: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    introduced_at: Optional[datetime] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_INTRODUCTION_STATUSES


@dataclass
class OutreachItem:
    user_id: str
    founder_id: int
    scheduled_for: datetime
    message: str
    company_id: Optional[int] = None
    channel: OutreachChannel = OutreachChannel.EMAIL
    subject: Optional[str] = None
    template_id: Optional[int] = None
    status: OutreachStatus = OutreachStatus.QUEUED
    priority: int = 100
    attempts: int = 0
    max_attempts: int = 3
    last_error: Optional[str] = None
    queued_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class OutreachHistory:
    """Denormalized copy of what was actually sent to a founder."""
    user_id: str
    founder_id: int
    message: str
    company_id: Optional[int] = None
    channel: OutreachChannel = OutreachChannel.EMAIL
    subject: Optional[str] = None
    status: OutreachStatus = OutreachStatus.SENT
    sent_at: Optional[datetime] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class JobRun:
    user_id: str
    job_type: JobType
    status: JobStatus = JobStatus.RUNNING
    items_total: Optional[int] = None
    items_processed: int = 0
    items_failed: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    results: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RateLimitCounter:
    user_id: str
    api_name: str
    window_start: datetime
    request_count: int = 0
    last_request_at: Optional[datetime] = None

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class UserSettings:
    user_id: str
    companies_house_api_key: Optional[str] = None
    exa_api_key: Optional[str] = None
    email_api_key: Optional[str] = None
    email_from_address: Optional[str] = None
    email_from_name: Optional[str] = None
    apollo_api_key: Optional[str] = None
    hunter_api_key: Optional[str] = None
    default_template_id: Optional[int] = None
    auto_discovery_enabled: bool = True
    auto_enrichment_enabled: bool = True
    auto_outreach_enabled: bool = True
    qualification_policy: str = "pipeline"

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MessageTemplate:
    user_id: str
    name: str
    body: str
    channel: OutreachChannel = OutreachChannel.EMAIL
    subject: Optional[str] = None
    is_default: bool = False

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# =============================================================================
# DOCUMENT CODEC
# =============================================================================

# Columns kept outside the JSON document.
ROW_FIELDS = ("id", "created_at", "updated_at")


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _encode(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple, set)):
        return [_encode(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _encode(v) for k, v in value.items()}
    return value


def encode_value(value: Any) -> Any:
    """Encode a single value the way it is stored in an indexed column."""
    return _encode(value)


@functools.lru_cache(maxsize=None)
def _type_hints(cls: type) -> Dict[str, Any]:
    return typing.get_type_hints(cls)


def _decode(tp: Any, value: Any) -> Any:
    if value is None:
        return None

    origin = typing.get_origin(tp)
    if origin is Union:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        return _decode(args[0], value) if args else value
    if origin in (list, List):
        args = typing.get_args(tp)
        inner = args[0] if args else Any
        return [_decode(inner, v) for v in value]
    if origin in (dict, Dict):
        return dict(value)

    if tp is datetime:
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    if tp is date:
        return date.fromisoformat(value)
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(value)
    if isinstance(tp, type) and is_dataclass(tp):
        return from_document(tp, value)
    return value


def to_document(record: Any) -> Dict[str, Any]:
    """Encode a record into a JSON-safe dict (row fields excluded)."""
    return {
        f.name: _encode(getattr(record, f.name))
        for f in fields(record)
        if f.name not in ROW_FIELDS
    }


def from_document(cls: Type[T], data: Dict[str, Any]) -> T:
    """Decode a dict produced by `to_document` back into `cls`.

    Unknown keys are dropped so older documents keep loading after a field
    is removed.
    """
    hints = _type_hints(cls)
    kwargs = {}
    for f in fields(cls):
        if f.name in data:
            kwargs[f.name] = _decode(hints[f.name], data[f.name])
    return cls(**kwargs)
