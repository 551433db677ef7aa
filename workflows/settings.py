"""
Per-user settings snapshot.

Settings are read once per scheduler tick and handed to every stage as an
immutable SettingsSnapshot, so a stage never reads half-updated keys.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from storage.models import UserSettings

DEFAULT_FROM_ADDRESS = "outreach@example.com"
DEFAULT_FROM_NAME = "Deal Team"


@dataclass(frozen=True)
class SettingsSnapshot:
    user_id: str
    companies_house_api_key: Optional[str] = None
    exa_api_key: Optional[str] = None
    email_api_key: Optional[str] = None
    email_from_address: str = DEFAULT_FROM_ADDRESS
    email_from_name: str = DEFAULT_FROM_NAME
    apollo_api_key: Optional[str] = None
    hunter_api_key: Optional[str] = None
    default_template_id: Optional[int] = None
    auto_discovery_enabled: bool = True
    auto_enrichment_enabled: bool = True
    auto_outreach_enabled: bool = True
    qualification_policy: str = "pipeline"

    @classmethod
    def from_settings(cls, settings: UserSettings) -> SettingsSnapshot:
        return cls(
            user_id=settings.user_id,
            companies_house_api_key=settings.companies_house_api_key,
            exa_api_key=settings.exa_api_key,
            email_api_key=settings.email_api_key,
            email_from_address=settings.email_from_address or DEFAULT_FROM_ADDRESS,
            email_from_name=settings.email_from_name or DEFAULT_FROM_NAME,
            apollo_api_key=settings.apollo_api_key,
            hunter_api_key=settings.hunter_api_key,
            default_template_id=settings.default_template_id,
            auto_discovery_enabled=settings.auto_discovery_enabled,
            auto_enrichment_enabled=settings.auto_enrichment_enabled,
            auto_outreach_enabled=settings.auto_outreach_enabled,
            qualification_policy=settings.qualification_policy or "pipeline",
        )

    @property
    def can_send_email(self) -> bool:
        return bool(self.email_api_key)

    @property
    def can_discover_emails(self) -> bool:
        return bool(self.apollo_api_key or self.hunter_api_key)
