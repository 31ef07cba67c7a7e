import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator, List, Optional, Tuple

from .errors import AlreadyExistsError, PersistenceError
from .models import Feed, FeedFollow, Post, User


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp so that text ordering matches time ordering"""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """SQLite database repository"""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_conn(self) -> Generator[sqlite3.Connection, None, None]:
        """Get database connection context manager"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database tables"""
        with self._get_conn() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    name TEXT NOT NULL UNIQUE
                );

                CREATE TABLE IF NOT EXISTS feeds (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    name TEXT NOT NULL,
                    url TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    last_fetched_at TEXT,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS feed_follows (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    feed_id TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE,
                    UNIQUE(user_id, feed_id)
                );

                CREATE TABLE IF NOT EXISTS posts (
                    id TEXT PRIMARY KEY,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    title TEXT NOT NULL,
                    url TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    published_at TEXT,
                    feed_id TEXT NOT NULL,
                    FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE,
                    UNIQUE(feed_id, url)
                );

                -- Scheduler picks the stalest feed on every tick
                CREATE INDEX IF NOT EXISTS idx_feeds_last_fetched_at
                    ON feeds(last_fetched_at);
                CREATE INDEX IF NOT EXISTS idx_feed_follows_user_id
                    ON feed_follows(user_id);
                CREATE INDEX IF NOT EXISTS idx_posts_published_at
                    ON posts(published_at);
            """)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
            name=row["name"],
        )

    @staticmethod
    def _row_to_feed(row: sqlite3.Row) -> Feed:
        return Feed(
            id=row["id"],
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
            name=row["name"],
            url=row["url"],
            user_id=row["user_id"],
            last_fetched_at=_from_db(row["last_fetched_at"]),
        )

    # User operations
    def create_user(self, name: str) -> User:
        """Add a new user, names are unique"""
        now = _now()
        user = User(id=str(uuid.uuid4()), created_at=now, updated_at=now, name=name)
        with self._get_conn() as conn:
            try:
                conn.execute(
                    "INSERT INTO users (id, created_at, updated_at, name) VALUES (?, ?, ?, ?)",
                    (user.id, _to_db(now), _to_db(now), name)
                )
            except sqlite3.IntegrityError:
                raise AlreadyExistsError(f"user {name!r} already exists")
        return user

    def get_user(self, name: str) -> Optional[User]:
        """Get user by name"""
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE name = ?", (name,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_users(self) -> List[User]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM users ORDER BY name"
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def reset_users(self) -> int:
        """Delete every user; feeds, follows and posts go with them"""
        with self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM users")
        return cursor.rowcount

    # Feed operations
    def create_feed(self, name: str, url: str, user_id: str) -> Feed:
        """Add a feed, URLs are globally unique"""
        now = _now()
        feed = Feed(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            url=url,
            user_id=user_id,
        )
        with self._get_conn() as conn:
            try:
                conn.execute(
                    "INSERT INTO feeds (id, created_at, updated_at, name, url, user_id) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (feed.id, _to_db(now), _to_db(now), name, url, user_id)
                )
            except sqlite3.IntegrityError:
                raise AlreadyExistsError(f"feed with URL {url!r} already exists")
        return feed

    def get_feed_by_url(self, url: str) -> Optional[Feed]:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM feeds WHERE url = ?", (url,)
            ).fetchone()
        return self._row_to_feed(row) if row else None

    def get_feeds_with_user(self) -> List[Tuple[Feed, str]]:
        """Get all feeds along with the name of the user who added them"""
        with self._get_conn() as conn:
            rows = conn.execute("""
                SELECT feeds.*, users.name AS user_name
                FROM feeds JOIN users ON feeds.user_id = users.id
                ORDER BY feeds.created_at
            """).fetchall()
        return [(self._row_to_feed(row), row["user_name"]) for row in rows]

    def get_next_feed_to_fetch(self) -> Optional[Feed]:
        """Get the feed fetched least recently, never-fetched feeds first"""
        with self._get_conn() as conn:
            row = conn.execute("""
                SELECT * FROM feeds
                ORDER BY last_fetched_at IS NOT NULL, last_fetched_at, created_at
                LIMIT 1
            """).fetchone()
        return self._row_to_feed(row) if row else None

    def mark_feed_fetched(self, feed_id: str, now: Optional[datetime] = None) -> datetime:
        """Stamp a feed as fetched, returns the stamp"""
        now = now or _now()
        try:
            with self._get_conn() as conn:
                conn.execute(
                    "UPDATE feeds SET last_fetched_at = ?, updated_at = ? WHERE id = ?",
                    (_to_db(now), _to_db(now), feed_id)
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot mark feed {feed_id} fetched: {e}") from e
        return now

    # Follow operations
    def create_feed_follow(self, user_id: str, feed_id: str) -> FeedFollow:
        now = _now()
        follow_id = str(uuid.uuid4())
        with self._get_conn() as conn:
            try:
                conn.execute(
                    "INSERT INTO feed_follows (id, created_at, updated_at, user_id, feed_id) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (follow_id, _to_db(now), _to_db(now), user_id, feed_id)
                )
            except sqlite3.IntegrityError:
                raise AlreadyExistsError("feed is already followed")
            row = conn.execute("""
                SELECT feeds.name AS feed_name, users.name AS user_name
                FROM feed_follows
                JOIN feeds ON feed_follows.feed_id = feeds.id
                JOIN users ON feed_follows.user_id = users.id
                WHERE feed_follows.id = ?
            """, (follow_id,)).fetchone()
        return FeedFollow(
            id=follow_id,
            created_at=now,
            updated_at=now,
            user_id=user_id,
            feed_id=feed_id,
            feed_name=row["feed_name"],
            user_name=row["user_name"],
        )

    def get_feed_follows_for_user(self, user_id: str) -> List[FeedFollow]:
        with self._get_conn() as conn:
            rows = conn.execute("""
                SELECT feed_follows.*, feeds.name AS feed_name, users.name AS user_name
                FROM feed_follows
                JOIN feeds ON feed_follows.feed_id = feeds.id
                JOIN users ON feed_follows.user_id = users.id
                WHERE feed_follows.user_id = ?
                ORDER BY feeds.name
            """, (user_id,)).fetchall()
        return [
            FeedFollow(
                id=row["id"],
                created_at=_from_db(row["created_at"]),
                updated_at=_from_db(row["updated_at"]),
                user_id=row["user_id"],
                feed_id=row["feed_id"],
                feed_name=row["feed_name"],
                user_name=row["user_name"],
            )
            for row in rows
        ]

    def delete_feed_follow(self, user_id: str, feed_id: str) -> bool:
        """Remove a follow, returns True if one existed"""
        with self._get_conn() as conn:
            cursor = conn.execute(
                "DELETE FROM feed_follows WHERE user_id = ? AND feed_id = ?",
                (user_id, feed_id)
            )
        return cursor.rowcount > 0

    # Post operations
    def create_post(
        self,
        title: str,
        url: str,
        description: str,
        published_at: Optional[datetime],
        feed_id: str
    ) -> Optional[Post]:
        """Add a post, returns None if the feed already has this URL"""
        now = _now()
        post = Post(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            title=title,
            url=url,
            description=description,
            published_at=published_at,
            feed_id=feed_id,
        )
        try:
            with self._get_conn() as conn:
                conn.execute(
                    "INSERT INTO posts (id, created_at, updated_at, title, url, description, "
                    "published_at, feed_id) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (post.id, _to_db(now), _to_db(now), title, url, description,
                     _to_db(published_at), feed_id)
                )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                return None
            raise PersistenceError(f"cannot save post {url!r}: {e}") from e
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot save post {url!r}: {e}") from e
        return post

    def get_posts_for_user(self, user_id: str, limit: int = 2) -> List[Post]:
        """Newest posts from the feeds a user follows"""
        with self._get_conn() as conn:
            rows = conn.execute("""
                SELECT posts.*, feeds.name AS feed_name
                FROM posts
                JOIN feed_follows ON posts.feed_id = feed_follows.feed_id
                JOIN feeds ON posts.feed_id = feeds.id
                WHERE feed_follows.user_id = ?
                ORDER BY posts.published_at IS NULL, posts.published_at DESC, posts.created_at DESC
                LIMIT ?
            """, (user_id, limit)).fetchall()
        return [
            Post(
                id=row["id"],
                created_at=_from_db(row["created_at"]),
                updated_at=_from_db(row["updated_at"]),
                title=row["title"],
                url=row["url"],
                description=row["description"],
                published_at=_from_db(row["published_at"]),
                feed_id=row["feed_id"],
                feed_name=row["feed_name"],
            )
            for row in rows
        ]
