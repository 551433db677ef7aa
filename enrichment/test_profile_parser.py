"""
Tests for the heuristic profile parser.

Run:
    python -m pytest enrichment/test_profile_parser.py -v
"""

from enrichment.lexicon import contains_term, default_lexicon, matching_terms
from enrichment.profile_parser import (
    count_exits,
    parse_education,
    parse_profile,
    years_of_experience,
)
from storage.models import ExperienceEntry

PROFILE = """
Ada Lovelace
Founder & CEO at Analytical Engines
London, United Kingdom
Building something new in machine learning
University of Cambridge - PhD Computer Science
Imperial College London - MSc Mathematics
Senior Engineer at Google 2015 - 2019
Co-founder at Difference Labs (acquired 2021)
Previously worked in payments and lending
"""


class TestLexicon:

    def test_word_boundaries(self):
        lexicon = default_lexicon()
        assert lexicon.university_tier("Please submit your form") is None
        assert lexicon.university_tier("MIT Sloan") == "tier1"
        assert lexicon.university_tier("University of Warwick") == "tier2"
        assert not contains_term("otherwise fine", "Wise")
        assert contains_term("Engineer at Wise", "Wise")

    def test_matching_terms_keeps_list_order(self):
        assert matching_terms("payments and banking", ["banking", "payments", "crypto"]) == [
            "banking", "payments",
        ]


class TestParseProfile:

    def test_full_profile(self):
        signals = parse_profile(PROFILE, profile_url="https://linkedin.com/in/ada", current_year=2025)

        assert signals.profile_url == "https://linkedin.com/in/ada"
        assert signals.headline == "Founder & CEO at Analytical Engines"
        assert signals.location == "London, United Kingdom"
        assert signals.is_stealth
        assert signals.stealth_signals == ["building something new"]
        assert not signals.is_recently_announced

        schools = [(e.tier, e.degree, e.field_of_study) for e in signals.education]
        assert schools == [
            ("tier1", "phd", "computer science"),
            ("tier1", "masters", "mathematics"),
        ]

        companies = [(e.company, e.title, e.is_high_growth) for e in signals.experience]
        assert companies == [
            ("Google", "Senior Engineer", True),
            ("Analytical Engines", "Founder & CEO", False),
            ("Difference Labs", "Co-founder", False),
        ]
        google, analytical, difference = signals.experience
        assert google.is_technical_role and not google.is_founder_role
        assert analytical.is_founder_role and analytical.is_leadership_role
        assert difference.is_founder_role

        assert signals.is_repeat_founder
        assert signals.is_technical
        assert signals.prior_exits == 1
        assert signals.years_experience == 10
        assert signals.domain_expertise == ["fintech"]
        assert signals.has_phd and not signals.has_mba
        assert signals.confidence == "high"

    def test_same_text_same_signals(self):
        assert parse_profile(PROFILE, current_year=2025) == parse_profile(PROFILE, current_year=2025)

    def test_empty_text(self):
        signals = parse_profile("", current_year=2025)
        assert signals.headline is None
        assert signals.education == []
        assert signals.experience == []
        assert signals.years_experience is None
        assert signals.confidence == "low"

    def test_announcement_keywords(self):
        signals = parse_profile("Excited to announce we are now live!", current_year=2025)
        assert signals.is_recently_announced
        assert signals.announcement_signals == ["now live", "excited to announce"]

    def test_headline_only_scans_first_lines(self):
        filler = "\n".join(f"line {n}" for n in range(12))
        signals = parse_profile(f"{filler}\nCTO at Somewhere", current_year=2025)
        assert signals.headline is None


class TestLineRules:

    def test_education_capped_at_five(self):
        lines = [f"University number {n}" for n in range(7)]
        assert len(parse_education(lines, default_lexicon())) == 5

    def test_education_lines_skipped_for_employers(self):
        signals = parse_profile("MBA at London Business School", current_year=2025)
        assert signals.experience == []
        assert signals.has_mba

    def test_exits_capped_without_founder_role(self):
        text = "Stripe acquired it. Then an acquisition. Then an exit."
        plain = [ExperienceEntry(company="Stripe")]
        founder = [ExperienceEntry(company="Acme", is_founder_role=True)]
        assert count_exits(text, plain, default_lexicon()) == 1
        assert count_exits(text, founder, default_lexicon()) == 3

    def test_years_need_two_mentions(self):
        assert years_of_experience("Joined in 2019", 2025) is None
        assert years_of_experience("2012 to 2019", 2025) == 13
        assert years_of_experience("1975 and 2030 and 2020 and 2022", 2025) == 5
