"""Cookie jar persistence."""

from anonfetch.cookies.jar import Cookie, CookieJarStore, format_line, parse_line

__all__ = ["Cookie", "CookieJarStore", "format_line", "parse_line"]
