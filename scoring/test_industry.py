"""
Tests for SIC-code market scores and sector tags.
"""

from scoring.industry import infer_sectors, lookup_code, market_score


class TestLookup:

    def test_exact_code(self):
        found = lookup_code("62012")
        assert found.score == 85
        assert found.category == "Software"
        assert found.matched_code == "62012"

    def test_longest_prefix_takes_best_entry(self):
        # 6201x: 62011 (95) beats 62012 (85)
        found = lookup_code("62019")
        assert found.score == 95
        assert found.matched_code == "62011"

    def test_falls_back_to_two_digit_prefix(self):
        found = lookup_code("64110")
        assert found.score == 90
        assert found.matched_code == "64209"

    def test_unknown_code(self):
        assert lookup_code("01110") is None


class TestMarketScore:

    def test_defaults(self):
        assert market_score([]).score == 50
        assert market_score(None).category == "Unknown"
        unmatched = market_score(["01110"])
        assert unmatched.score == 40
        assert unmatched.category == "Traditional"

    def test_best_code_wins(self):
        assert market_score(["62020", "62012"]).score == 85


class TestSectors:

    def test_class_code_before_prefix(self):
        assert infer_sectors(["14131", "62012"]) == ["fashion", "software", "fashion-tech"]

    def test_prefix_and_dedup(self):
        assert infer_sectors(["64209", "66110", "01110"]) == ["fintech"]
        assert infer_sectors(None) == []
