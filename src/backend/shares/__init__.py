"""
Share handshake between accounts.

Provides:
- ShareState / ShareOffer (models.py)
- ShareBroker: offer / accept (copy-on-accept) / reject (broker.py)
"""

from .broker import ShareBroker
from .models import ShareOffer, ShareState

__all__ = [
    "ShareBroker",
    "ShareOffer",
    "ShareState",
]
