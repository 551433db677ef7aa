"""
Default records created for a new user: message templates and settings.

Usage:
    from storage.seed import seed_user_defaults

    settings = await seed_user_defaults(store, "default_user")
"""

from __future__ import annotations

import logging
from typing import List, Optional

from storage.deal_store import DealStore
from storage.models import MessageTemplate, OutreachChannel, UserSettings

logger = logging.getLogger(__name__)


FOUNDER_INTRODUCTION_BODY = """Hi {{firstName}},

I came across {{companyName}} and was impressed by what you're building. I work with early-stage VCs and help connect promising founders with investors who are a good fit.

I'd love to learn more about your journey and see if I can be helpful - whether that's introductions to relevant investors, feedback on your pitch, or just sharing what I'm seeing in the market.

Would you be open to a quick 15-minute chat this week?

Best,
{{senderName}}"""

STEALTH_FOUNDER_BODY = """Hi {{firstName}},

I noticed you're working on something new and wanted to reach out. I spend my time connecting exceptional founders with early-stage VCs, particularly at pre-seed and seed.

I know stealth means you're likely heads down building, but when you're ready to start conversations with investors, I'd be happy to make some warm introductions to funds that would be a good fit.

No pressure at all - just wanted to plant the seed. Feel free to reach out whenever the timing is right.

Best,
{{senderName}}"""

FOLLOW_UP_BODY = """Hi {{firstName}},

Just wanted to follow up on my previous note about {{companyName}}. I know founders are incredibly busy, so I'll keep this brief.

If you're open to a quick chat about fundraising or investor introductions, I'm happy to help. If the timing isn't right, no worries at all.

Best,
{{senderName}}"""

LINKEDIN_BODY = (
    "Hi {{firstName}}, I came across {{companyName}} and was impressed. "
    "I connect founders with early-stage VCs - would love to chat if you're "
    "exploring funding options."
)


def default_templates(user_id: str) -> List[MessageTemplate]:
    return [
        MessageTemplate(
            user_id=user_id,
            name="Founder Introduction",
            subject="Quick intro - {{companyName}}",
            body=FOUNDER_INTRODUCTION_BODY,
            is_default=True,
        ),
        MessageTemplate(
            user_id=user_id,
            name="Stealth Founder Outreach",
            subject="Connecting with stealth founders",
            body=STEALTH_FOUNDER_BODY,
        ),
        MessageTemplate(
            user_id=user_id,
            name="Follow-up",
            subject="Re: {{companyName}} - following up",
            body=FOLLOW_UP_BODY,
        ),
        MessageTemplate(
            user_id=user_id,
            name="LinkedIn Connection",
            channel=OutreachChannel.LINKEDIN,
            body=LINKEDIN_BODY,
        ),
    ]


async def seed_templates(store: DealStore, user_id: str) -> int:
    """Create the default templates once; returns how many were added."""
    if await store.count(MessageTemplate, user_id=user_id):
        return 0

    templates = default_templates(user_id)
    for template in templates:
        await store.insert(template)
    logger.info(f"Seeded {len(templates)} message templates for {user_id}")
    return len(templates)


async def seed_user_defaults(
    store: DealStore,
    user_id: str,
    settings: Optional[UserSettings] = None,
) -> UserSettings:
    """
    Ensure a user has settings and templates.

    Stored settings win over `settings`; the argument only fills a missing row
    and any API keys the stored row lacks.
    """
    await seed_templates(store, user_id)

    stored = await store.get_settings(user_id)
    if stored is None:
        stored = settings or UserSettings(user_id=user_id)
        stored.user_id = user_id
    elif settings is not None:
        for name in (
            "companies_house_api_key",
            "exa_api_key",
            "email_api_key",
            "email_from_address",
            "email_from_name",
            "apollo_api_key",
            "hunter_api_key",
        ):
            if not getattr(stored, name) and getattr(settings, name):
                setattr(stored, name, getattr(settings, name))

    if stored.default_template_id is None:
        template = await store.first(MessageTemplate, user_id=user_id, is_default=True)
        stored.default_template_id = template.id if template else None

    return await store.save_settings(stored)
