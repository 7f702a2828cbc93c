"""External service integrations."""

from .conversion_client import ConversionProviderClient
from .http_pool import HttpClientPool
from .spotify_client import SpotifyClient

__all__ = [
    "ConversionProviderClient",
    "HttpClientPool",
    "SpotifyClient",
]
