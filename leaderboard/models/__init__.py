from .entry import Entry
from .vote import VoteRecord

__all__ = ["Entry", "VoteRecord"]
