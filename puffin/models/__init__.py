from puffin.models.oauth import ClientRegistration, TokenPair
from puffin.models.results import (
    CloseCheck,
    ContainerValidation,
    DownloadResult,
    ExchangeResult,
    RemoteInfo,
    SyncCheck,
    SyncOutcome,
    UploadResult,
)
from puffin.models.sync import SyncConfiguration

__all__ = [
    "ClientRegistration",
    "CloseCheck",
    "ContainerValidation",
    "DownloadResult",
    "ExchangeResult",
    "RemoteInfo",
    "SyncCheck",
    "SyncConfiguration",
    "SyncOutcome",
    "TokenPair",
    "UploadResult",
]
