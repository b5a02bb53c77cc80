"""
Unit tests for custom format evaluation and scoring
"""

import pytest

from acquirarr.models.custom_format import CustomFormat, CustomFormatScore
from acquirarr.services.custom_formats import (
    GB,
    Specification,
    SpecificationKind,
    calculate_release_score,
    matches_format,
    matches_specification,
    score_breakdown,
)


def spec(kind, value=None, negate=False, required=False, **fields):
    return {
        "name": f"{kind}-{value}",
        "implementation": kind,
        "negate": negate,
        "required": required,
        "fields": {"value": value, **fields},
    }


class TestSpecificationParsing:

    def test_kind_from_arr_implementation_name(self):
        assert SpecificationKind.parse("ReleaseTitleSpecification") is SpecificationKind.RELEASE_TITLE
        assert SpecificationKind.parse("quality_modifier") is SpecificationKind.QUALITY_MODIFIER
        assert SpecificationKind.parse("nonsense") is None

    def test_list_form_fields(self):
        parsed = Specification.from_dict({
            "name": "x265",
            "implementation": "ReleaseTitleSpecification",
            "fields": [{"name": "value", "value": r"\bx265\b"}],
        })
        assert parsed.kind is SpecificationKind.RELEASE_TITLE
        assert parsed.value == r"\bx265\b"


class TestMatchesSpecification:

    def test_release_title_regex(self):
        s = Specification.from_dict(spec("release_title", r"\b(x265|hevc)\b"))
        assert matches_specification("Movie.2020.1080p.BluRay.x265-GRP", s)
        assert not matches_specification("Movie.2020.1080p.BluRay.x264-GRP", s)

    def test_invalid_regex_never_matches(self):
        s = Specification.from_dict(spec("release_title", r"(unclosed"))
        assert not matches_specification("anything", s)

    def test_negate(self):
        s = Specification.from_dict(spec("release_title", r"\bx265\b", negate=True))
        assert matches_specification("Movie.2020.1080p.BluRay.x264-GRP", s)

    def test_webrip_source_excludes_webdl(self):
        s = Specification.from_dict(spec("source", 8))
        assert matches_specification("Show.S01E01.1080p.WEBRip.x264-GRP", s)
        assert not matches_specification("Show.S01E01.1080p.WEB-DL.x264-GRP", s)

    def test_resolution(self):
        s = Specification.from_dict(spec("resolution", "2160p"))
        assert matches_specification("Movie.2020.2160p.WEB-DL-GRP", s)
        assert matches_specification("Movie.2020.4K.WEB-DL-GRP", s)

    def test_release_group(self):
        s = Specification.from_dict(spec("release_group", "^(FraMeSToR|SPARKS)$"))
        assert matches_specification("Movie.2020.1080p.BluRay.x264-SPARKS", s)
        assert not matches_specification("Movie.2020.1080p.BluRay.x264-YIFY", s)

    def test_language_english_means_no_foreign_tag(self):
        s = Specification.from_dict(spec("language", 1))
        assert matches_specification("Movie.2020.1080p.BluRay-GRP", s)
        assert not matches_specification("Movie.2020.GERMAN.1080p.BluRay-GRP", s)

    def test_size_range(self):
        s = Specification.from_dict(spec("size", None, min=1, max=10))
        assert matches_specification("Movie", s, size=5 * GB)
        assert not matches_specification("Movie", s, size=20 * GB)
        assert matches_specification("Movie", s, size=None)

    def test_quality_modifier(self):
        s = Specification.from_dict(spec("quality_modifier", 1))
        assert matches_specification("Movie.2020.1080p.BluRay.REMUX-GRP", s)

    def test_unknown_kind_is_a_miss(self):
        s = Specification.from_dict({"name": "odd", "implementation": "nope"})
        assert not matches_specification("anything", s)

    def test_negated_unknown_kind_matches(self):
        s = Specification.from_dict({"name": "odd", "implementation": "nope", "negate": True})
        assert matches_specification("anything", s)


class TestMatchesFormat:

    def test_format_without_specs_matches_everything(self):
        assert matches_format("Movie.2020.1080p", [])
        assert matches_format("Show.S01E01.720p.HDTV-LOL", None)

    def test_required_specs_must_all_match(self):
        specs = [
            spec("release_title", r"\bx265\b", required=True),
            spec("resolution", "2160p", required=True),
        ]
        assert matches_format("Movie.2020.2160p.WEB-DL.x265-GRP", specs)
        assert not matches_format("Movie.2020.1080p.WEB-DL.x265-GRP", specs)

    def test_one_optional_spec_is_enough(self):
        specs = [spec("release_title", r"\bDV\b"), spec("release_title", r"\bHDR10\b")]
        assert matches_format("Movie.2020.2160p.HDR10.WEB-DL-GRP", specs)
        assert not matches_format("Movie.2020.2160p.SDR.WEB-DL-GRP", specs)


class TestScoring:

    @pytest.fixture
    def formats(self, db, make_profile):
        profile = make_profile()
        x265 = CustomFormat(name="x265", media_type="both",
                            specifications=[spec("release_title", r"\b(x265|hevc)\b")])
        remux = CustomFormat(name="Remux", media_type="movie",
                             specifications=[spec("quality_modifier", 1)])
        banned = CustomFormat(name="Banned Group", media_type="both",
                              specifications=[spec("release_group", "^YIFY$")])
        db.add_all([x265, remux, banned])
        db.commit()
        CustomFormatScore.set_score(db, profile.id, x265.id, 50)
        CustomFormatScore.set_score(db, profile.id, remux.id, 100)
        CustomFormatScore.set_score(db, profile.id, banned.id, -1000)
        return profile

    def test_scores_sum_over_matching_formats(self, db, formats):
        title = "Movie.2020.1080p.BluRay.REMUX.HEVC-GRP"
        assert calculate_release_score(db, title, formats.id, media_type="movie") == 150

    def test_formats_limited_to_media_type(self, db, formats):
        title = "Show.S01E01.1080p.BluRay.REMUX.HEVC-GRP"
        assert calculate_release_score(db, title, formats.id, media_type="series") == 50

    def test_negative_score(self, db, formats):
        assert calculate_release_score(db, "Movie.2020.720p.BluRay.x264-YIFY", formats.id) == -1000

    def test_breakdown_names(self, db, formats):
        breakdown = score_breakdown(db, "Movie.2020.2160p.WEB-DL.x265-GRP", formats.id)
        assert breakdown.format_names == ["x265"]

    def test_no_profile_scores_zero(self, db, formats):
        assert calculate_release_score(db, "Movie.2020.2160p.WEB-DL.x265-GRP", None) == 0
