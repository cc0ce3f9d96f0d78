"""Static directory of provider endpoints keyed by region."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType

from .task_models import Region

logger = logging.getLogger(__name__)

DEFAULT_REGIONS: tuple[Region, ...] = (
    Region(
        id="china",
        display_name="Mainland China",
        api_base_url="https://www.runninghub.cn",
        host_header="www.runninghub.cn",
    ),
    Region(
        id="hongkong",
        display_name="Hong Kong / Macau / Taiwan / overseas",
        api_base_url="https://www.runninghub.ai",
        host_header="www.runninghub.ai",
    ),
)


class RegionDirectory:
    """Resolve a region selector to a provider endpoint.

    Unknown or missing selectors resolve to the default region: region choice
    only changes network routing, never job semantics.
    """

    def __init__(
        self,
        regions: Mapping[str, Region] | None = None,
        *,
        default_region: str = "hongkong",
    ) -> None:
        table = dict(regions) if regions is not None else {r.id: r for r in DEFAULT_REGIONS}
        if default_region not in table:
            raise ValueError(f"Default region '{default_region}' is not in the directory")
        self._regions = MappingProxyType(table)
        self._default = table[default_region]

    @property
    def default(self) -> Region:
        return self._default

    def resolve(self, region_id: str | None) -> Region:
        if not region_id:
            return self._default
        region = self._regions.get(region_id)
        if region is None:
            logger.warning(
                "regions.unknown_region",
                extra={"region_id": region_id, "fallback": self._default.id},
            )
            return self._default
        return region

    def regions(self) -> list[Region]:
        return list(self._regions.values())
