from .fetcher import USER_AGENT, BaseFetcher, HttpFetcher
from .parser import parse_feed

__all__ = ["USER_AGENT", "BaseFetcher", "HttpFetcher", "parse_feed"]
