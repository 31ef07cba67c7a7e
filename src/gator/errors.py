class GatorError(Exception):
    """Base class for all gator errors"""


class ConfigError(GatorError):
    """Bad configuration value or unreadable config file"""


class NetworkError(GatorError):
    """Feed could not be retrieved"""


class FetchCancelled(NetworkError):
    """Fetch aborted because the aggregator is stopping"""


class ParseError(GatorError):
    """Feed body is not a usable RSS document"""


class PersistenceError(GatorError):
    """Store write failed for a reason other than a uniqueness conflict"""


class NotFoundError(GatorError):
    pass


class AlreadyExistsError(GatorError):
    pass


class NotLoggedInError(GatorError):
    pass
