"""
Unit tests for automatic search: release ranking and search-and-grab

The indexer gateway is replaced by an in-memory fake and the grab service by
an AsyncMock; the library and quality profiles are real database rows.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from acquirarr.adapters.quality_profile_oracle import DatabaseQualityProfileOracle
from acquirarr.models.blacklist import BlacklistEntry
from acquirarr.models.download import Download, DownloadStatus
from acquirarr.models.library import LibraryExclusion
from acquirarr.services.auto_search import AutoSearchService, base_score, expected_size, score_releases
from acquirarr.services.release_parser import detect_quality
from acquirarr.services.releases import Release

GB = 1024 ** 3


def rel(title, seeders=100, size=4 * GB):
    return Release(guid=title, title=title, download_url=f"magnet:?dn={title}", size=size,
                   seeders=seeders, indexer="Jackett", indexer_id=1, quality=detect_quality(title))


WEB = rel("Masters.of.the.Universe.2026.1080p.WEB-DL.x264-GRP")
BLURAY = rel("Masters.of.the.Universe.2026.1080p.BluRay.x264-GRP")
REMUX = rel("Masters.of.the.Universe.2026.1080p.BluRay.REMUX.AVC-GRP", size=30 * GB)
PROPER = rel("Masters.of.the.Universe.2026.PROPER.1080p.WEB-DL.x264-GRP")


class FakeGateway:
    def __init__(self, releases=(), error=None):
        self.releases = list(releases)
        self.error = error
        self.calls = []

    async def search_movies(self, db, title, year=None, interactive=False):
        self.calls.append(("movie", title, year))
        if self.error:
            raise self.error
        return list(self.releases)

    async def search_tv(self, db, title, season=None, episode=None, interactive=False):
        self.calls.append(("tv", title, season, episode))
        if self.error:
            raise self.error
        return list(self.releases)


@pytest.fixture
def grab_service():
    service = Mock()
    service.grab = AsyncMock(side_effect=lambda db, release, target, interactive=False: Mock(release=release))
    return service


@pytest.fixture
def auto_search(grab_service):
    def _make(releases=(), error=None):
        return AutoSearchService(gateway=FakeGateway(releases, error), grab_service=grab_service, batch_delay=0)
    return _make


class TestScoring:

    @pytest.fixture
    def oracle(self, db):
        return DatabaseQualityProfileOracle(db)

    def test_disallowed_quality_scores_zero(self, oracle, make_profile):
        profile = make_profile()
        assert base_score(REMUX, profile.id, oracle, "Masters of the Universe", 2026) == 0

    def test_title_mismatch_scores_zero(self, oracle, make_profile):
        profile = make_profile()
        other = rel("Some.Other.Film.2026.1080p.BluRay.x264-GRP")
        assert base_score(other, profile.id, oracle, "Masters of the Universe", 2026) == 0

    def test_year_far_off_scores_zero(self, oracle, make_profile):
        profile = make_profile()
        remake = rel("Masters.of.the.Universe.1987.1080p.BluRay.x264-GRP")
        assert base_score(remake, profile.id, oracle, "Masters of the Universe", 2026) == 0

    def test_cutoff_quality_beats_lower_quality(self, oracle, make_profile):
        profile = make_profile(cutoff="Bluray-1080p")
        assert base_score(BLURAY, profile.id, oracle) > base_score(WEB, profile.id, oracle)

    def test_size_far_from_expected_is_penalized(self, oracle, make_profile):
        profile = make_profile()
        tiny = rel(BLURAY.title, size=100 * 1024 ** 2)
        assert base_score(BLURAY, profile.id, oracle) - base_score(tiny, profile.id, oracle) == 50

    def test_seeders_bonus_is_capped(self, oracle, make_profile):
        profile = make_profile()
        assert base_score(rel(BLURAY.title, seeders=100), profile.id, oracle) == \
            base_score(rel(BLURAY.title, seeders=5000), profile.id, oracle)

    def test_expected_size_by_media_kind(self):
        assert expected_size("Bluray-1080p", "movie") == 3 * GB
        assert expected_size("HDTV-1080p", "tv") == 1 * GB
        assert expected_size("Unknown", "movie") == 3 * GB

    def test_ranking_drops_blacklisted_and_rejected(self, db, oracle, make_profile):
        profile = make_profile()
        ranked = score_releases(
            db, [WEB, REMUX, BLURAY], profile.id, oracle, "Masters of the Universe",
            blacklisted_titles=[BLURAY.title.upper()], expected_year=2026,
        )
        assert [r.title for r in ranked] == [WEB.title]

    def test_minimum_custom_format_score(self, db, oracle, make_profile):
        profile = make_profile(min_custom_format_score=10)
        assert score_releases(db, [WEB, BLURAY], profile.id, oracle) == []


class TestMovieSearch:

    @pytest.mark.asyncio
    async def test_grabs_best_release(self, db, make_movie, auto_search, grab_service):
        movie = make_movie()
        service = auto_search([WEB, REMUX, BLURAY])

        assert await service.search_and_grab_movie(db, movie.id)

        _, release, target = grab_service.grab.call_args.args
        assert release.title == BLURAY.title
        assert target.movie_id == movie.id
        assert target.folder_path == movie.folder_path
        assert service.gateway.calls == [("movie", "Masters of the Universe", 2026)]

    @pytest.mark.asyncio
    async def test_unknown_movie(self, db, auto_search):
        service = auto_search([BLURAY])
        assert await service.search_and_grab_movie(db, 404) is None
        assert service.gateway.calls == []

    @pytest.mark.asyncio
    async def test_active_download_skips_search(self, db, make_movie, auto_search):
        movie = make_movie()
        db.add(Download(media_kind="movie", movie_id=movie.id, title="x",
                        status=DownloadStatus.DOWNLOADING.value))
        db.commit()

        service = auto_search([BLURAY])
        assert await service.search_and_grab_movie(db, movie.id) is None
        assert service.gateway.calls == []

    @pytest.mark.asyncio
    async def test_file_at_cutoff_is_not_searched_unless_forced(self, db, make_movie, auto_search,
                                                                 make_profile):
        movie = make_movie(profile=make_profile(cutoff="WEB-1080p"), has_file=True,
                           file_path="/data/movies/m/m.mkv", file_quality="WEBDL-1080p")
        service = auto_search([BLURAY])

        assert await service.search_and_grab_movie(db, movie.id) is None
        assert service.gateway.calls == []

        await service.search_and_grab_movie(db, movie.id, force=True)
        assert len(service.gateway.calls) == 1

    @pytest.mark.asyncio
    async def test_upgrade_only_when_better(self, db, make_movie, auto_search, grab_service):
        movie = make_movie(has_file=True, file_quality="WEBDL-1080p",
                           file_path="/data/movies/m/Masters.of.the.Universe.2026.1080p.WEB-DL.x264-GRP.mkv")

        assert await auto_search([WEB]).search_and_grab_movie(db, movie.id) is None
        grab_service.grab.assert_not_called()

        assert await auto_search([BLURAY]).search_and_grab_movie(db, movie.id)

    @pytest.mark.asyncio
    async def test_proper_replaces_same_quality(self, db, make_movie, auto_search, grab_service):
        movie = make_movie(has_file=True, file_quality="WEBDL-1080p",
                           file_path="/data/movies/m/Masters.of.the.Universe.2026.1080p.WEB-DL.x264-GRP.mkv")

        assert await auto_search([PROPER]).search_and_grab_movie(db, movie.id)
        assert grab_service.grab.call_args.args[1].title == PROPER.title

    @pytest.mark.asyncio
    async def test_upgrades_disabled(self, db, make_movie, make_profile, auto_search):
        movie = make_movie(profile=make_profile(upgrade_allowed=False), has_file=True,
                           file_path="/data/movies/m/m.mkv", file_quality="HDTV-720p")
        service = auto_search([BLURAY])
        assert await service.search_and_grab_movie(db, movie.id) is None
        assert service.gateway.calls == []


class TestEpisodeAndSeasonSearch:

    @pytest.mark.asyncio
    async def test_episode_search_keeps_exact_episode(self, db, make_series, auto_search, grab_service):
        series = make_series()
        releases = [
            rel("The.Expanse.S01.1080p.BluRay.x264-GRP", seeders=500, size=10 * GB),
            rel("The.Expanse.S01E01.1080p.BluRay.x264-GRP", seeders=500, size=GB),
            rel("The.Expanse.S01E02.1080p.WEB-DL.x264-GRP", seeders=10, size=GB),
        ]
        service = auto_search(releases)

        assert await service.search_and_grab_episode(db, series.id, 1, 2)

        _, release, target = grab_service.grab.call_args.args
        assert release.title == "The.Expanse.S01E02.1080p.WEB-DL.x264-GRP"
        assert (target.season_number, target.episode_number) == (1, 2)
        assert service.gateway.calls == [("tv", "The Expanse", 1, 2)]

    @pytest.mark.asyncio
    async def test_blacklisted_episode_release_is_skipped(self, db, make_series, auto_search):
        series = make_series()
        title = "The.Expanse.S01E02.1080p.WEB-DL.x264-GRP"
        BlacklistEntry.add(db, title, series_id=series.id, season_number=1, episode_number=2)

        assert await auto_search([rel(title, size=GB)]).search_and_grab_episode(db, series.id, 1, 2) is None

    @pytest.mark.asyncio
    async def test_season_search_requires_pack(self, db, make_series, auto_search, grab_service):
        series = make_series()
        releases = [
            rel("The.Expanse.S01E01.1080p.BluRay.x264-GRP", seeders=900, size=GB),
            rel("The.Expanse.S01.1080p.BluRay.x264-GRP", seeders=50, size=GB),
        ]

        assert await auto_search(releases).search_and_grab_season(db, series.id, 1)

        _, release, target = grab_service.grab.call_args.args
        assert release.title == "The.Expanse.S01.1080p.BluRay.x264-GRP"
        assert target.episode_number is None


class TestBatchSearch:

    @pytest.mark.asyncio
    async def test_missing_search_counts(self, db, make_movie, make_series, auto_search):
        make_movie()
        make_movie(title="Excluded Film", tmdb_id=555)
        db.add(LibraryExclusion(external_id=555, media_type="movie", title="Excluded Film"))
        db.commit()
        make_series(episodes=((1, 1), (0, 1)))
        make_series(title="Future Show", tvdb_id=3000, aired=False)

        stats = await auto_search([BLURAY]).search_all_missing(db)

        assert stats["movies"] == {"total": 1, "searched": 1, "found": 1}
        assert stats["episodes"]["total"] == 1

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_batch(self, db, make_movie, auto_search):
        make_movie()
        make_movie(title="Second Film", tmdb_id=1001)

        stats = await auto_search(error=RuntimeError("indexers down")).search_all_missing(db)
        assert stats["movies"] == {"total": 2, "searched": 2, "found": 0}

    @pytest.mark.asyncio
    async def test_cutoff_unmet_selects_upgradable(self, db, make_movie, make_profile, auto_search):
        make_movie(has_file=True, file_path="/m/a.mkv", file_quality="HDTV-720p")
        make_movie(title="At Cutoff", tmdb_id=1001, has_file=True, file_path="/m/b.mkv",
                   file_quality="Bluray-1080p")
        make_movie(title="Locked", tmdb_id=1002, profile=make_profile(upgrade_allowed=False),
                   has_file=True, file_path="/m/c.mkv", file_quality="HDTV-720p")

        service = auto_search([])
        stats = await service.search_all_cutoff_unmet(db)

        assert stats["movies"]["total"] == 1
        assert service.gateway.calls == [("movie", "Masters of the Universe", 2026)]
