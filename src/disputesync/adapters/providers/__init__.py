"""Built-in provider descriptors."""

from __future__ import annotations

from disputesync.domain.providers import ProviderDescriptor

from .chargebacks911 import CHARGEBACKS911
from .cloudbeds import CLOUDBEDS
from .mews import MEWS
from .opera_cloud import OPERA_CLOUD
from .stripe import STRIPE
from .verifi import VERIFI
from .visa_vrol import VISA_VROL

BUILTIN_DESCRIPTORS: tuple[ProviderDescriptor, ...] = (
    STRIPE,
    VERIFI,
    VISA_VROL,
    CHARGEBACKS911,
    MEWS,
    OPERA_CLOUD,
    CLOUDBEDS,
)

__all__ = [
    "BUILTIN_DESCRIPTORS",
    "CHARGEBACKS911",
    "CLOUDBEDS",
    "MEWS",
    "OPERA_CLOUD",
    "STRIPE",
    "VERIFI",
    "VISA_VROL",
]
