"""
Shared engine dependency for the API routers
"""

from typing import Optional

from ..config import get_config
from ..engine import PayoutEngine


_engine: Optional[PayoutEngine] = None


def get_engine() -> PayoutEngine:
    """Engine built from configuration on first use"""
    global _engine
    if _engine is None:
        _engine = PayoutEngine.from_config(get_config())
    return _engine
