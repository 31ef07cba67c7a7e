"""Unit tests for the sqlite store."""

from datetime import datetime, timedelta, timezone

import pytest

from gator.errors import AlreadyExistsError

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestUsers:

    def test_create_and_get_user(self, db):
        created = db.create_user("kahya")
        fetched = db.get_user("kahya")
        assert fetched is not None
        assert fetched.id == created.id
        assert db.get_user("nobody") is None

    def test_duplicate_user(self, db):
        db.create_user("kahya")
        with pytest.raises(AlreadyExistsError):
            db.create_user("kahya")

    def test_reset_cascades(self, db, user):
        feed = db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        db.create_feed_follow(user.id, feed.id)
        db.create_post("t", "https://blog.example.com/a", "", None, feed.id)

        assert db.reset_users() == 1
        assert db.get_users() == []
        assert db.get_feed_by_url(feed.url) is None
        assert db.get_next_feed_to_fetch() is None


class TestFeeds:

    def test_feed_url_is_unique(self, db, user):
        db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        with pytest.raises(AlreadyExistsError):
            db.create_feed("Blog again", "https://blog.example.com/index.xml", user.id)

    def test_feeds_with_user(self, db, user):
        db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        [(feed, user_name)] = db.get_feeds_with_user()
        assert feed.name == "Blog"
        assert user_name == "kahya"

    def test_next_feed_prefers_never_fetched(self, db, user):
        fetched = db.create_feed("Fetched", "https://a.example.com/rss", user.id)
        never = db.create_feed("Never", "https://b.example.com/rss", user.id)
        db.mark_feed_fetched(fetched.id, T0)

        assert db.get_next_feed_to_fetch().id == never.id

    def test_next_feed_is_oldest_stamp(self, db, user):
        old = db.create_feed("Old", "https://a.example.com/rss", user.id)
        new = db.create_feed("New", "https://b.example.com/rss", user.id)
        db.mark_feed_fetched(new.id, T0 + timedelta(minutes=5))
        db.mark_feed_fetched(old.id, T0)

        assert db.get_next_feed_to_fetch().id == old.id

    def test_mark_feed_fetched(self, db, user):
        feed = db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        assert feed.last_fetched_at is None

        db.mark_feed_fetched(feed.id, T0)
        assert db.get_feed_by_url(feed.url).last_fetched_at == T0


class TestFollows:

    def test_follow_and_list(self, db, user):
        feed = db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        feed_follow = db.create_feed_follow(user.id, feed.id)
        assert feed_follow.feed_name == "Blog"
        assert feed_follow.user_name == "kahya"

        assert [f.feed_name for f in db.get_feed_follows_for_user(user.id)] == ["Blog"]

    def test_duplicate_follow(self, db, user):
        feed = db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        db.create_feed_follow(user.id, feed.id)
        with pytest.raises(AlreadyExistsError):
            db.create_feed_follow(user.id, feed.id)

    def test_unfollow(self, db, user):
        feed = db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        db.create_feed_follow(user.id, feed.id)

        assert db.delete_feed_follow(user.id, feed.id) is True
        assert db.delete_feed_follow(user.id, feed.id) is False
        assert db.get_feed_follows_for_user(user.id) == []


class TestPosts:

    def test_duplicate_post_returns_none(self, db, user):
        feed = db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        first = db.create_post("t", "https://blog.example.com/a", "", T0, feed.id)
        second = db.create_post("t", "https://blog.example.com/a", "", T0, feed.id)
        assert first is not None
        assert second is None

    def test_same_url_in_other_feed_is_allowed(self, db, user):
        a = db.create_feed("A", "https://a.example.com/rss", user.id)
        b = db.create_feed("B", "https://b.example.com/rss", user.id)
        assert db.create_post("t", "https://shared.example.com/x", "", None, a.id)
        assert db.create_post("t", "https://shared.example.com/x", "", None, b.id)

    def test_posts_for_user_newest_first(self, db, user):
        feed = db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        db.create_feed_follow(user.id, feed.id)
        db.create_post("undated", "https://blog.example.com/u", "", None, feed.id)
        db.create_post("older", "https://blog.example.com/o", "", T0, feed.id)
        db.create_post("newer", "https://blog.example.com/n", "", T0 + timedelta(days=1), feed.id)

        posts = db.get_posts_for_user(user.id, limit=10)
        assert [p.title for p in posts] == ["newer", "older", "undated"]
        assert posts[0].feed_name == "Blog"
        assert posts[2].published_at is None

        assert len(db.get_posts_for_user(user.id, limit=2)) == 2

    def test_posts_only_from_followed_feeds(self, db, user):
        feed = db.create_feed("Blog", "https://blog.example.com/index.xml", user.id)
        db.create_post("t", "https://blog.example.com/a", "", T0, feed.id)
        assert db.get_posts_for_user(user.id) == []
