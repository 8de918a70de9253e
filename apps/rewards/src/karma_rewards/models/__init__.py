"""SQLAlchemy models package."""

from .rewards import RewardAsset, RewardRecord  # noqa: F401

__all__ = ["RewardAsset", "RewardRecord"]
