"""Anonymous photo gallery with rate-limited upvotes."""

__version__ = "0.1.0"
