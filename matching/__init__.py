"""Company-investor matching and introduction creation."""

from matching.matcher import MatchCandidate, Matcher, MatchingResult, match_company, score_pair

__all__ = ["MatchCandidate", "Matcher", "MatchingResult", "match_company", "score_pair"]
