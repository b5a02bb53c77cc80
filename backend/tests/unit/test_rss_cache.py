"""
Unit tests for the RSS cache and the blacklist models
"""

from datetime import datetime, timedelta

from acquirarr.models.blacklist import BlacklistEntry
from acquirarr.models.rss_cache import RssCacheEntry


def insert(db, guid="guid-1", indexer_id=1, title="Movie.2020.1080p.BluRay.x264-GRP"):
    return RssCacheEntry.insert_if_new(
        db, indexer_id=indexer_id, guid=guid, title=title,
        download_url=f"http://indexer.local/dl/{guid}", size=1, publish_date=None,
        categories=["Movies/HD"], protocol="torrent",
    )


class TestRssCache:

    def test_insert_is_idempotent(self, db):
        assert insert(db) is True
        assert insert(db) is False
        assert db.query(RssCacheEntry).count() == 1

    def test_same_guid_on_another_indexer_is_new(self, db):
        assert insert(db, indexer_id=1)
        assert insert(db, indexer_id=2)

    def test_mark_sets_processed_and_grabbed(self, db):
        insert(db)
        RssCacheEntry.mark(db, 1, "guid-1", grabbed=True)
        entry = db.query(RssCacheEntry).one()
        assert entry.processed and entry.grabbed
        assert RssCacheEntry.get_stats(db) == {"total": 1, "grabbed": 1, "processed": 1}

    def test_purge_older_than(self, db):
        insert(db, guid="old")
        insert(db, guid="new")
        old = db.query(RssCacheEntry).filter(RssCacheEntry.guid == "old").one()
        old.created_at = datetime.utcnow() - timedelta(days=10)
        db.commit()

        assert RssCacheEntry.purge_older_than(db, 7) == 1
        assert [e.guid for e in RssCacheEntry.get_recent(db)] == ["new"]


class TestBlacklist:

    def test_movie_titles_are_normalized(self, db):
        BlacklistEntry.add(db, "  Movie.2020.1080p.BluRay.x264-GRP ", movie_id=3, reason="failed")
        assert BlacklistEntry.titles_for_movie(db, 3) == ["movie.2020.1080p.bluray.x264-grp"]
        assert BlacklistEntry.is_blacklisted_for_movie(db, 3, "MOVIE.2020.1080p.BluRay.x264-GRP")
        assert not BlacklistEntry.is_blacklisted_for_movie(db, 4, "Movie.2020.1080p.BluRay.x264-GRP")

    def test_episode_scope(self, db):
        BlacklistEntry.add(db, "Show.S01E02.720p.HDTV-GRP", series_id=5, season_number=1, episode_number=2)
        assert BlacklistEntry.titles_for_episode(db, 5, 1, 2) == ["show.s01e02.720p.hdtv-grp"]
        assert BlacklistEntry.titles_for_episode(db, 5, 1, 3) == []
