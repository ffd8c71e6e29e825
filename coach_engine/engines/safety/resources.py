"""
Regional crisis resources - static hotline directory keyed by locale.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel

from coach_engine.policy import REGIONAL_RESOURCES_FILE
from coach_engine.schemas.coach import Hotline


class ResourceDirectoryData(BaseModel):
    version: str
    default_locale: str = "US"
    additional_resources: List[str] = []
    hotlines: Dict[str, List[Hotline]]


class RegionalResourceDirectory:
    """Locale → hotline lookup with a default-locale fallback."""

    def __init__(self, data: ResourceDirectoryData):
        self.data = data

    def resources_for(self, locale: Optional[str]) -> List[Hotline]:
        """Hotlines for ``locale`` (region code, e.g. "UK" or "en-GB"), else the default list."""
        region = _region_of(locale)
        hotlines = self.data.hotlines.get(region)
        if hotlines is None:
            hotlines = self.data.hotlines[self.data.default_locale]
        return list(hotlines)

    def suggested_resources(self, locale: Optional[str]) -> dict:
        """Bundle stored on escalation records for the reviewer."""
        region = _region_of(locale)
        if region not in self.data.hotlines:
            region = self.data.default_locale
        return {
            "location": region,
            "hotlines": [h.model_dump(exclude_none=True) for h in self.resources_for(region)],
            "additional_resources": list(self.data.additional_resources),
        }


def _region_of(locale: Optional[str]) -> str:
    if not locale:
        return ""
    region = locale.replace("_", "-").split("-")[-1].upper()
    return "UK" if region == "GB" else region


@lru_cache
def load_resource_directory(path: Optional[str] = None) -> RegionalResourceDirectory:
    """Load the hotline directory from ``path`` (or the packaged default)."""
    source = Path(path) if path else REGIONAL_RESOURCES_FILE
    with source.open(encoding="utf-8") as fh:
        return RegionalResourceDirectory(ResourceDirectoryData.model_validate(json.load(fh)))
