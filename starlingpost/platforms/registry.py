# starlingpost/platforms/registry.py
from typing import Dict, Optional

import httpx

from starlingpost.platforms.base import PlatformAdapter, PlatformConfig, UnfinishedAdapter
from starlingpost.platforms.instagram import InstagramAdapter
from starlingpost.platforms.twitter import TwitterAdapter
from starlingpost.platforms.youtube import YouTubeAdapter
from starlingpost.schemas.platform_schema import Platform

PLATFORM_CONFIGS: Dict[Platform, PlatformConfig] = {
    Platform.YOUTUBE: PlatformConfig(
        client_id_env="YOUTUBE_CLIENT_ID",
        client_secret_env="YOUTUBE_CLIENT_SECRET",
        redirect_uri_env="YOUTUBE_REDIRECT_URI",
        scopes=(
            "https://www.googleapis.com/auth/youtube.upload",
            "https://www.googleapis.com/auth/youtube.readonly",
            "https://www.googleapis.com/auth/youtube",
        ),
        auth_endpoint="https://accounts.google.com/o/oauth2/v2/auth",
        token_endpoint="https://oauth2.googleapis.com/token",
    ),
    Platform.INSTAGRAM: PlatformConfig(
        client_id_env="META_APP_ID",
        client_secret_env="META_APP_SECRET",
        redirect_uri_env="INSTAGRAM_REDIRECT_URI",
        scopes=("instagram_business_basic", "instagram_business_manage_insights"),
        auth_endpoint="https://www.instagram.com/oauth/authorize",
        token_endpoint="https://api.instagram.com/oauth/access_token",
        scope_separator=",",
    ),
    Platform.TWITTER: PlatformConfig(
        client_id_env="TWITTER_CLIENT_ID",
        client_secret_env="TWITTER_CLIENT_SECRET",
        redirect_uri_env="TWITTER_REDIRECT_URI",
        scopes=("tweet.read", "tweet.write", "users.read", "offline.access"),
        auth_endpoint="https://twitter.com/i/oauth2/authorize",
        token_endpoint="https://api.twitter.com/2/oauth2/token",
    ),
}

_ADAPTER_CLASSES = {
    Platform.YOUTUBE: YouTubeAdapter,
    Platform.INSTAGRAM: InstagramAdapter,
    Platform.TWITTER: TwitterAdapter,
}


def build_adapters(transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[Platform, PlatformAdapter]:
    """One adapter per platform; platforms without an integration get an UnfinishedAdapter."""
    adapters: Dict[Platform, PlatformAdapter] = {}
    for platform in Platform:
        cls = _ADAPTER_CLASSES.get(platform)
        if cls is None:
            adapters[platform] = UnfinishedAdapter(platform)
        else:
            adapters[platform] = cls(PLATFORM_CONFIGS[platform], transport=transport)
    return adapters


# adapters are stateless, one set serves the whole process
default_adapters = build_adapters()
