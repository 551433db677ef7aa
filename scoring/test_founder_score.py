"""
Tests for founder education / experience scoring and tiers.
"""

from scoring.founder_score import (
    apply_scores,
    education_score,
    experience_score,
    founder_tier,
    score_profile,
)
from storage.models import EducationEntry, ExperienceEntry, Founder, FounderTier

TOP = EducationEntry(school="University of Oxford", is_top_tier=True, tier="tier1")
OTHER_SCHOOL = EducationEntry(school="University of Somewhere")
HIGH_GROWTH = ExperienceEntry(company="Stripe", is_high_growth=True)
OTHER_JOB = ExperienceEntry(company="Acme")


class TestEducation:

    def test_levels(self):
        assert education_score([]) == 0
        assert education_score([OTHER_SCHOOL]) == 30
        assert education_score([TOP]) == 75
        assert education_score([TOP, TOP]) == 100

    def test_degree_bonuses_capped(self):
        phd = EducationEntry(school="Imperial College", is_top_tier=True, degree="phd")
        mba = EducationEntry(school="Business School of X", degree="mba")
        assert education_score([TOP, mba]) == 85
        assert education_score([TOP, phd]) == 100


class TestExperience:

    def test_high_growth_ladder(self):
        assert experience_score([]) == 0
        assert experience_score([OTHER_JOB]) == 30
        assert experience_score([HIGH_GROWTH]) == 60
        assert experience_score([HIGH_GROWTH, HIGH_GROWTH]) == 80
        assert experience_score([HIGH_GROWTH] * 3) == 100

    def test_bonuses(self):
        lead = ExperienceEntry(company="Monzo", is_high_growth=True, is_leadership_role=True)
        assert experience_score([lead], years_experience=12) == 80
        assert experience_score([OTHER_JOB], is_repeat_founder=True, prior_exits=1) == 55
        assert experience_score([OTHER_JOB], years_experience=9) == 30


class TestTier:

    def test_thresholds(self):
        assert founder_tier(80, False, 0, 0, 0) == FounderTier.EXCEPTIONAL
        assert founder_tier(65, False, 0, 0, 0) == FounderTier.STRONG
        assert founder_tier(45, False, 0, 0, 0) == FounderTier.PROMISING
        assert founder_tier(44, False, 0, 0, 0) == FounderTier.STANDARD

    def test_signal_overrides(self):
        assert founder_tier(20, True, 1, 0, 0) == FounderTier.EXCEPTIONAL
        assert founder_tier(20, True, 0, 1, 0) == FounderTier.STRONG
        assert founder_tier(20, False, 0, 1, 0) == FounderTier.PROMISING
        assert founder_tier(20, False, 0, 0, 1) == FounderTier.PROMISING


class TestScoreProfile:

    def test_weighted_overall(self):
        scores = score_profile([TOP], [HIGH_GROWTH])
        # 0.4 * 75 + 0.6 * 60
        assert scores.overall_score == 66
        assert scores.tier == FounderTier.STRONG

    def test_apply_scores_writes_fields(self):
        founder = Founder(user_id="u1", first_name="A", last_name="B", education=[OTHER_SCHOOL])
        apply_scores(founder)
        assert founder.education_score == 30
        assert founder.experience_score == 0
        assert founder.overall_score == 12
        assert founder.founder_tier == FounderTier.STANDARD
