"""
Persistence collaborators: storybook records, asset publishers and repositories.
"""

from .models import PAGE_UPDATE_FIELDS, Storybook, StorybookPage
from .publisher import AssetPublisher, GCSAssetPublisher, LocalAssetPublisher
from .repository import (
    InMemoryStorybookRepository,
    StorybookRepository,
    YamlStorybookRepository,
)

__all__ = [
    "PAGE_UPDATE_FIELDS",
    "Storybook",
    "StorybookPage",
    "AssetPublisher",
    "LocalAssetPublisher",
    "GCSAssetPublisher",
    "StorybookRepository",
    "InMemoryStorybookRepository",
    "YamlStorybookRepository",
]
