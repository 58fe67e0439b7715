"""Smart-speaker interaction testbed: correlated query, response and traffic records."""

__version__ = "0.1.0"
