import functools
from typing import Optional

import click

from . import __version__
from .config import ConfigManager, GatorConfig, parse_interval
from .database import Database
from .errors import GatorError, NotFoundError, NotLoggedInError


class State:
    """Config and store shared by every command"""

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self._config: Optional[GatorConfig] = None
        self._db: Optional[Database] = None

    @property
    def config(self) -> GatorConfig:
        if self._config is None:
            self._config = self.config_manager.load()
        return self._config

    @property
    def db(self) -> Database:
        if self._db is None:
            self._db = Database(self.config.db_path)
        return self._db

    def set_user(self, name: str) -> None:
        self._config = self.config_manager.set_user(name)


pass_state = click.make_pass_decorator(State)


def handle_errors(f):
    """Report domain errors as a click error with exit status 1"""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except GatorError as e:
            raise click.ClickException(str(e)) from e
    return wrapper


def require_login(f):
    """Resolve the logged in user and pass it as the `user` argument"""
    @functools.wraps(f)
    def wrapper(state: State, *args, **kwargs):
        name = state.config.current_user_name
        if not name:
            raise NotLoggedInError("no user is logged in, run 'gator login NAME' first")
        user = state.db.get_user(name)
        if user is None:
            raise NotLoggedInError(f"logged in user {name!r} no longer exists")
        return f(state, user, *args, **kwargs)
    return wrapper


@click.group(name="gator", help="RSS feed aggregator")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Config file (default ~/.gatorconfig.json)"
)
@click.pass_context
def cli(ctx, config_path):
    ctx.obj = State(ConfigManager(config_path))


@cli.command(help="Show version")
def version():
    click.echo(f"gator {__version__}")


@cli.command(help="Create a user and log in as them")
@click.argument("name")
@pass_state
@handle_errors
def register(state, name):
    user = state.db.create_user(name)
    state.set_user(user.name)
    click.echo(f"User {user.name} created with ID {user.id} at {user.created_at}")


@cli.command(help="Log in as an existing user")
@click.argument("name")
@pass_state
@handle_errors
def login(state, name):
    user = state.db.get_user(name)
    if user is None:
        raise NotFoundError(f"user {name!r} does not exist")
    state.set_user(user.name)
    click.echo(f"{user.name} has been set as the current logged in user")


@cli.command(help="Delete every user along with their feeds and posts")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@pass_state
@handle_errors
def reset(state, yes):
    if not yes and not click.confirm("Delete all users, feeds and posts?"):
        click.echo("Cancelled")
        return
    count = state.db.reset_users()
    click.echo(f"The users table was reset ({count} deleted)")


@cli.command(help="List users")
@pass_state
@handle_errors
def users(state):
    current = state.config.current_user_name
    for user in state.db.get_users():
        if user.name == current:
            click.echo(f"* {user.name} (current)")
        else:
            click.echo(f"* {user.name}")


@cli.command(help="Collect feeds forever, one feed per interval (e.g. 30s, 1m)")
@click.argument("time_between_requests")
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Also write logs to this directory"
)
@click.option("--timeout", type=float, default=30, help="HTTP timeout in seconds")
@pass_state
@handle_errors
def agg(state, time_between_requests, log_dir, timeout):
    interval = parse_interval(time_between_requests)

    from .app import Aggregator, setup_logging
    from .rss import HttpFetcher

    setup_logging(log_dir)
    click.echo(f"Collecting feeds every {interval}")
    aggregator = Aggregator(state.db, interval, fetcher=HttpFetcher(timeout=timeout))
    aggregator.run()


@cli.command(help="Add a feed and follow it")
@click.argument("name")
@click.argument("url")
@pass_state
@handle_errors
@require_login
def addfeed(state, user, name, url):
    feed = state.db.create_feed(name, url, user.id)
    state.db.create_feed_follow(user.id, feed.id)
    click.echo(f"New feed {feed.name} added. Followed by {user.name}")


@cli.command(help="List all feeds")
@pass_state
@handle_errors
def feeds(state):
    for feed, user_name in state.db.get_feeds_with_user():
        click.echo(f"Feed: {feed.name} with URL: {feed.url} was created by: {user_name}")


@cli.command(help="Follow an existing feed by URL")
@click.argument("url")
@pass_state
@handle_errors
@require_login
def follow(state, user, url):
    feed = state.db.get_feed_by_url(url)
    if feed is None:
        raise NotFoundError(f"no feed with URL {url!r}")
    feed_follow = state.db.create_feed_follow(user.id, feed.id)
    click.echo(f"{feed_follow.feed_name} is followed by {feed_follow.user_name}")


@cli.command(help="List the feeds you follow")
@pass_state
@handle_errors
@require_login
def following(state, user):
    for feed_follow in state.db.get_feed_follows_for_user(user.id):
        click.echo(feed_follow.feed_name)


@cli.command(help="Stop following a feed by URL")
@click.argument("url")
@pass_state
@handle_errors
@require_login
def unfollow(state, user, url):
    feed = state.db.get_feed_by_url(url)
    if feed is None:
        raise NotFoundError(f"no feed with URL {url!r}")
    if not state.db.delete_feed_follow(user.id, feed.id):
        raise NotFoundError(f"{user.name} does not follow {url}")
    click.echo(f"{user.name} unfollowed {feed.name}")


@cli.command(help="Show the newest posts from the feeds you follow")
@click.argument("limit", type=click.IntRange(min=1), default=2)
@pass_state
@handle_errors
@require_login
def browse(state, user, limit):
    posts = state.db.get_posts_for_user(user.id, limit)
    if not posts:
        click.echo("No posts yet, run 'gator agg' to collect some")
        return
    for post in posts:
        published = post.published_at.strftime("%Y-%m-%d %H:%M") if post.published_at else "unknown date"
        click.echo(f"{published} from {post.feed_name}")
        click.echo(f"--- {post.title} ---")
        if post.description:
            click.echo(f"    {post.description}")
        click.echo(f"Link: {post.url}")
        click.echo("=====================================")
