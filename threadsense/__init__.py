"""Issue and pull request context aggregation with community-weighted relevance."""

__version__ = "0.1.0"
