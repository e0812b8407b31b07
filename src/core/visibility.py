"""
Roam — Visibility & Source Registry.

Keeps the list of calendar sources and which of them are shown. Hiding a
source only removes its events from query results; nothing is deleted.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable

from src.core.errors import NotFoundError, ValidationError
from src.core.validation import validate_color, validate_region
from src.data.models import FIXED_SOURCES, CalendarSource, Region, stamp_new, stamp_updated
from src.ports.storage_port import CalendarSourceStore, RegionStore

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Calendar sources plus their visibility flags, backed by a source store."""

    def __init__(self, store: CalendarSourceStore) -> None:
        self._store = store
        self._sources: list[CalendarSource] = []
        self.refresh()

    def refresh(self) -> None:
        """Reload sources from storage."""
        self._sources = sorted(self._store.find_all(), key=lambda s: s.id)
        logger.debug("Loaded %d calendar sources", len(self._sources))

    def list_sources(self) -> list[CalendarSource]:
        return list(self._sources)

    def get(self, source_id: int) -> CalendarSource | None:
        for source in self._sources:
            if source.id == source_id:
                return source
        return None

    def find_by_name(self, name: str) -> CalendarSource | None:
        for source in self._sources:
            if source.name == name:
                return source
        return None

    def is_visible(self, source_id: int) -> bool:
        source = self.get(source_id)
        return source is not None and source.is_visible

    def visible_ids(self) -> set[int]:
        return {s.id for s in self._sources if s.is_visible}

    def set_visible(self, source_id: int, visible: bool) -> CalendarSource:
        source = self.get(source_id)
        if source is None:
            raise NotFoundError(f"Calendar source {source_id} not found")
        if source.is_visible == visible:
            return source
        updated = self._store.save(stamp_updated(replace(source, is_visible=visible)))
        self._sources = [updated if s.id == source_id else s for s in self._sources]
        logger.info(
            "Calendar source #%d '%s' %s", source_id, updated.name,
            "shown" if visible else "hidden",
        )
        return updated

    def add_source(self, name: str, color: str, is_default: bool = False) -> CalendarSource:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Calendar source name must not be blank")
        validate_color(color)
        source = self._store.save(
            stamp_new(CalendarSource(None, name, color, is_default=is_default))
        )
        self._sources.append(source)
        return source

    def seed_defaults(self, regions: Iterable[Region] = ()) -> list[CalendarSource]:
        """Create the fixed sources and one source per region, skipping known names.

        Safe to run on every start-up.
        """
        existing = {s.name for s in self._sources}
        wanted = [(name, color, is_default) for name, color, is_default in FIXED_SOURCES]
        wanted += [(r.name, r.color, False) for r in regions]

        created: list[CalendarSource] = []
        for name, color, is_default in wanted:
            if name in existing:
                continue
            logger.info("Creating calendar source: %s", name)
            created.append(self.add_source(name, color, is_default))
            existing.add(name)
        return created


def create_region(
    regions: RegionStore, registry: SourceRegistry, name: str, color: str
) -> Region:
    """Add a user-defined region together with its calendar source."""
    region = validate_region(Region(None, name, color))
    if regions.find_by_name(region.name) is not None:
        raise ValidationError(f"Region '{region.name}' already exists")
    region = regions.save(stamp_new(region))
    if registry.find_by_name(region.name) is None:
        registry.add_source(region.name, region.color)
    return region


def update_region(
    regions: RegionStore, region_id: int, name: str | None = None, color: str | None = None
) -> Region:
    """Rename or recolor a region; nothing else may change once it is in use."""
    current = regions.find_by_id(region_id)
    if current is None:
        raise NotFoundError(f"Region {region_id} not found")
    updated = validate_region(
        replace(current, name=name if name is not None else current.name,
                color=color if color is not None else current.color)
    )
    clash = regions.find_by_name(updated.name)
    if clash is not None and clash.id != region_id:
        raise ValidationError(f"Region '{updated.name}' already exists")
    return regions.save(stamp_updated(updated))
