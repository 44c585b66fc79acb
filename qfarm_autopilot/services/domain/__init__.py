"""QFarm domain services."""

from .analytics_service import AnalyticsService
from .config_data import GameConfigData
from .farm_service import FarmService, LandAnalyzeResult, SeedOffer, current_phase
from .friend_service import FriendLandStatus, FriendPreview, FriendService
from .quota_tracker import OperationQuota, QuotaExhausted, QuotaTracker
from .user_service import DeviceInfo, LoginResult, UserService
from .warehouse_service import WarehouseService

__all__ = [
    "AnalyticsService",
    "DeviceInfo",
    "FarmService",
    "FriendLandStatus",
    "FriendPreview",
    "FriendService",
    "GameConfigData",
    "LandAnalyzeResult",
    "LoginResult",
    "OperationQuota",
    "QuotaExhausted",
    "QuotaTracker",
    "SeedOffer",
    "UserService",
    "WarehouseService",
    "current_phase",
]
