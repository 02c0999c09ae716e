"""
1.0 Entity URL Source
Turns the repository's filtered listings into the entities an account scan
still has to check, and the URLs that earlier scans in this cycle already did.
"""

import logging
from typing import Iterator, List, Set

from link_checker.checkpoint import CheckpointStore
from link_checker.config import Options
from link_checker.entities import (
    Entity,
    EntityFilter,
    EntityRepository,
    Page,
)
from link_checker.url_expander import expand_url_modifiers

logger = logging.getLogger(__name__)


class EntityUrlSource:
    """
    2.0 Entity listings for one account, scoped by the cycle's options.

    Every listing excludes entities that already carry the checkpoint mark.
    Pages are snapshots; applying marks afterwards does not change them.
    """

    def __init__(self, repository: EntityRepository, checkpoint: CheckpointStore,
                 account_id: str, options: Options):
        self.repository = repository
        self.checkpoint = checkpoint
        self.account_id = account_id
        self.options = options

    def _is_marked(self, entity: Entity) -> bool:
        return self.checkpoint.is_marked(self.account_id, entity.key)

    # =========================================================================
    # 2.1 UNCHECKED ENTITIES
    # =========================================================================

    def ads(self) -> Page:
        flt = EntityFilter.active(self.options.check_paused_ads, require_final_url=True, has_label=False)
        return self.repository.ads(self.account_id, flt, self._is_marked)

    def keywords(self) -> Page:
        flt = EntityFilter.active(self.options.check_paused_keywords, require_final_url=True, has_label=False)
        return self.repository.keywords(self.account_id, flt, self._is_marked)

    def sitelink_parents(self) -> List[Page]:
        """Unmarked campaigns, then unmarked ad groups, that may own sitelinks."""
        flt = EntityFilter.active(self.options.check_paused_sitelinks, has_label=False)
        return [
            self.repository.campaigns(self.account_id, flt, self._is_marked),
            self.repository.ad_groups(self.account_id, flt, self._is_marked),
        ]

    def sitelinks(self, parent: Entity) -> Page:
        return self.repository.sitelinks(parent)

    # =========================================================================
    # 2.2 ALREADY CHECKED
    # =========================================================================

    def _marked_entities(self) -> Iterator[Entity]:
        marked = EntityFilter(statuses=("ENABLED", "PAUSED", "REMOVED"), has_label=True)
        if self.options.check_ad_urls:
            yield from self.repository.ads(self.account_id, marked, self._is_marked)
        if self.options.check_keyword_urls:
            yield from self.repository.keywords(self.account_id, marked, self._is_marked)
        if self.options.check_sitelink_urls:
            parents = (
                list(self.repository.campaigns(self.account_id, marked, self._is_marked))
                + list(self.repository.ad_groups(self.account_id, marked, self._is_marked))
            )
            for parent in parents:
                yield from self.repository.sitelinks(parent)

    def already_checked_urls(self) -> Set[str]:
        """
        2.3 Expanded URLs of every entity marked earlier in this cycle.

        Seeds the scan's exclusion set so a URL shared by a marked and an
        unmarked entity is not requested again.
        """
        checked = set()
        for entity in self._marked_entities():
            for url in entity.urls():
                checked.update(expand_url_modifiers(url))
        logger.info(f"Account {self.account_id}: {len(checked)} URLs already checked this cycle")
        return checked
