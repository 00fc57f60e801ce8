"""dbgateway -- HTTPS gateway in front of database shell scripts.

Remote callers trigger database operations (queries, non-queries,
version and database listing) through a handful of HTTP endpoints. Each
endpoint runs a fixed script from the server's working directory and
relays its output, so callers never touch the database or the host
shell directly.
"""

__version__ = "0.1.0"
