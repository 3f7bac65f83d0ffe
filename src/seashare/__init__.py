"""seashare - streaming share gateway for Seafile."""

__version__ = "0.1.0"
