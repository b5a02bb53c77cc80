"""
Unit tests for release title matching

The matcher decides whether a release names the library item at all, so
false positives here turn into wrong grabs.
"""

import pytest

from acquirarr.services.title_matcher import (
    AUTO_SEARCH,
    RSS_MATCH,
    SEARCH_FILTER,
    category_matches,
    has_tv_marker,
    normalize_title,
    title_matches,
    year_matches,
)


class TestTitleMatches:

    def test_exact_movie_title(self):
        assert title_matches(
            "Masters.of.the.Universe.2026.1080p.WEB-DL.x264-GRP",
            "Masters of the Universe", 2026, RSS_MATCH, current_year=2026,
        )

    def test_longer_title_containing_the_words_is_rejected(self):
        """The content words start too late in the release title."""
        assert not title_matches(
            "He-Man.and.the.Masters.of.the.Universe.2026.1080p.WEB-DL.x264-GRP",
            "Masters of the Universe", 2026, RSS_MATCH, current_year=2026,
        )

    def test_year_outside_tolerance_is_rejected(self):
        assert not title_matches(
            "Masters.of.the.Universe.1987.1080p.BluRay.x264-GRP",
            "Masters of the Universe", 2026, AUTO_SEARCH, current_year=2026,
        )

    def test_year_off_by_one_is_accepted(self):
        assert title_matches(
            "Dune.Part.Two.2023.2160p.WEB-DL-GRP", "Dune Part Two", 2024, AUTO_SEARCH,
        )

    def test_tv_release_never_matches_a_movie(self):
        assert not title_matches(
            "Dune.S01E01.1080p.WEB-DL-GRP", "Dune", 2021, AUTO_SEARCH, current_year=2026,
        )

    def test_season_pack_rejected_for_movies_in_rss(self):
        assert not title_matches(
            "Dune.S01.1080p.WEB-DL-GRP", "Dune", 2021, RSS_MATCH, current_year=2026,
        )

    def test_series_match_ignores_year(self):
        assert title_matches("The.Expanse.S03E07.1080p.WEB-DL-GRP", "The Expanse", None, RSS_MATCH)

    def test_series_title_with_trailing_year(self):
        assert title_matches("Doctor.Who.S01E01.720p.HDTV-GRP", "Doctor Who (2005)", None, RSS_MATCH)

    def test_missing_words_rejected(self):
        assert not title_matches("The.Expanse.S03E07.1080p-GRP", "The Boys", None, AUTO_SEARCH)

    def test_short_title_strict_in_rss(self):
        """Two content words or fewer allow only one extra word in RSS."""
        assert not title_matches(
            "Dune.Messiah.Extended.Cut.2021.1080p.BluRay-GRP", "Dune", 2021, RSS_MATCH, current_year=2026,
        )

    def test_search_filter_uses_content_word_count(self):
        assert title_matches(
            "The.Matrix.Resurrections.2021.1080p.WEB-DL-GRP", "The Matrix", 2021, SEARCH_FILTER,
        )

    def test_empty_inputs(self):
        assert not title_matches("", "Dune", 2021)
        assert not title_matches("Dune.2021.1080p", "", 2021)


class TestYearMatches:

    def test_release_without_year_for_older_title(self):
        assert year_matches("Alien.1080p.BluRay-GRP", 1979, current_year=2026)

    def test_release_without_year_for_current_title(self):
        assert not year_matches("Alien.Romulus.1080p.WEB-DL-GRP", 2026, current_year=2026)


class TestHelpers:

    def test_normalize_title(self):
        assert normalize_title("Marvel's Agents of S.H.I.E.L.D.") == "marvels agents of s h i e l d"
        assert normalize_title("Law & Order") == "law and order"

    def test_tv_markers(self):
        assert has_tv_marker("Show.1x02.HDTV")
        assert not has_tv_marker("Show.S02.1080p")
        assert has_tv_marker("Show.S02.1080p", strict=True)

    @pytest.mark.parametrize("categories,media_kind,expected", [
        (["Movies/HD"], "movie", True),
        (["TV/HD"], "movie", False),
        (["2040"], "tv", False),
        (["5040"], "tv", True),
        ([], "movie", True),
    ])
    def test_category_matches(self, categories, media_kind, expected):
        assert category_matches(categories, media_kind) is expected
