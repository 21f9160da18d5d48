from .base import (
    CompositeFetch,
    Driver,
    SiteRequest,
    SiteResponse,
    fetch_composite,
    join_url,
)
from .flexible import FlexibleCode, flex_float, flex_int, flex_str
from .mtorrent import MTorrentDriver
from .nexusphp import NexusPHPDriver
from .unit3d import Unit3DDriver

__all__ = [
    "CompositeFetch",
    "Driver",
    "SiteRequest",
    "SiteResponse",
    "fetch_composite",
    "join_url",
    "FlexibleCode",
    "flex_float",
    "flex_int",
    "flex_str",
    "MTorrentDriver",
    "NexusPHPDriver",
    "Unit3DDriver",
]
