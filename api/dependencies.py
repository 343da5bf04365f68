"""FastAPI dependencies building the managers for a request."""

from fastapi import Depends

from backend import Backend, get_backend
from chat import ChatManager
from config import get_settings
from favorites import FavoritesManager
from listings import ListingManager
from profiles import ProfileManager
from promotions import PromotionManager

async def get_listing_manager(backend: Backend = Depends(get_backend)) -> ListingManager:
    return ListingManager(backend, analytics_fallback=get_settings().get('analytics_fallback', True))

async def get_chat_manager(backend: Backend = Depends(get_backend)) -> ChatManager:
    return ChatManager(backend)

async def get_favorites_manager(backend: Backend = Depends(get_backend)) -> FavoritesManager:
    return FavoritesManager(backend)

async def get_promotion_manager(backend: Backend = Depends(get_backend)) -> PromotionManager:
    return PromotionManager(backend)

async def get_profile_manager(backend: Backend = Depends(get_backend)) -> ProfileManager:
    return ProfileManager(backend)
