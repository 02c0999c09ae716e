"""
1.0 Entity Repository Module
Read-only view of the managed account hierarchy and its link inventory.

Queries take filter value objects and return Page snapshots. A page holds at
most `page_limit` entities but always reports how many matched in total, so
callers can tell when a listing was cut short and must be continued on a
later run.

Inventory file layout (JSON):
    {
        "accounts": [
            {
                "id": "123-456-7890", "name": "Shop", "cost_last_30_days": 42.0,
                "campaigns": [
                    {
                        "id": "c1", "name": "Brand", "status": "ENABLED",
                        "sitelinks": [{"id": "s1", "link_text": "Sale", "final_url": "..."}],
                        "ad_groups": [
                            {
                                "id": "g1", "name": "Shoes", "status": "ENABLED",
                                "sitelinks": [],
                                "ads": [{"id": "a1", "type": "EXPANDED_TEXT_AD", ...}],
                                "keywords": [{"id": "k1", "text": "red shoes", ...}]
                            }
                        ]
                    }
                ]
            }
        ]
    }
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

ENABLED = "ENABLED"
PAUSED = "PAUSED"

DEFAULT_PAGE_LIMIT = 50000

# 1.1 Entity type names as they appear in results
TYPE_AD = "Ad"
TYPE_KEYWORD = "Keyword"
TYPE_CAMPAIGN = "Campaign"
TYPE_AD_GROUP = "AdGroup"
TYPE_SITELINK = "Sitelink"


# =============================================================================
# 2.0 ENTITIES
# =============================================================================

@dataclass(frozen=True)
class Account:
    id: str
    name: str = ""
    cost_last_30_days: float = 0.0


@dataclass(frozen=True)
class Entity:
    """Anything that can carry a final URL or a checkpoint mark."""
    id: str
    account_id: str
    entity_type: str
    status: str = ENABLED
    campaign_name: str = ""
    ad_group_name: str = ""
    campaign_status: str = ENABLED
    ad_group_status: str = ENABLED
    final_url: Optional[str] = None
    mobile_final_url: Optional[str] = None

    @property
    def key(self) -> str:
        """Checkpoint key, unique within an account."""
        return f"{self.entity_type}:{self.id}"

    def urls(self) -> List[str]:
        """Final URL and mobile final URL, whichever are set."""
        return [u for u in (self.final_url, self.mobile_final_url) if u]


@dataclass(frozen=True)
class Ad(Entity):
    ad_type: str = "TEXT_AD"
    fields: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    def display_text(self) -> str:
        """
        2.1 Text representation of an ad for reports.

        - Text ads: headline
        - Expanded text ads: "headline1 - headline2"
        - Responsive display ads: long headline
        - Image, HTML5 and Gmail image ads: name
        - Gmail multi-product / single-promotion ads: headline
        """
        f = self.fields
        if self.ad_type == "TEXT_AD":
            return f.get("headline", "")
        if self.ad_type == "EXPANDED_TEXT_AD":
            return f"{f.get('headline_part1', '')} - {f.get('headline_part2', '')}"
        if self.ad_type == "RESPONSIVE_DISPLAY_AD":
            return f.get("long_headline", "")
        if self.ad_type in ("IMAGE_AD", "HTML5_AD", "GMAIL_IMAGE_AD"):
            return f.get("name", "")
        if self.ad_type in ("GMAIL_MULTI_PRODUCT_AD", "GMAIL_SINGLE_PROMOTION_AD"):
            return f.get("headline", "")
        return "N/A"


@dataclass(frozen=True)
class Keyword(Entity):
    text: str = ""


@dataclass(frozen=True)
class Sitelink(Entity):
    link_text: str = ""
    parent_key: str = ""


# =============================================================================
# 3.0 FILTERS AND PAGES
# =============================================================================

@dataclass(frozen=True)
class EntityFilter:
    """
    3.1 Conditions for ads, keywords, campaigns and ad groups.

    statuses applies to the entity and to every parent level it has.
    has_label: True = only marked, False = only unmarked, None = ignore marks.
    """
    statuses: Tuple[str, ...] = (ENABLED,)
    require_final_url: bool = False
    has_label: Optional[bool] = None

    @classmethod
    def active(cls, include_paused: bool, **kwargs) -> "EntityFilter":
        statuses = (ENABLED, PAUSED) if include_paused else (ENABLED,)
        return cls(statuses=statuses, **kwargs)


@dataclass(frozen=True)
class AccountFilter:
    """3.2 Conditions for sub-accounts of the manager account."""
    account_ids: Tuple[str, ...] = ()
    min_cost: Optional[float] = None
    has_label: Optional[bool] = None
    limit: Optional[int] = None


@dataclass
class Page:
    """3.3 Materialised query result: entities plus the total that matched."""
    entities: List[Any]
    total_num_entities: int

    def __iter__(self) -> Iterator[Any]:
        return iter(self.entities)

    def __len__(self) -> int:
        return len(self.entities)

    def has_next(self) -> bool:
        return bool(self.entities)


LabelPredicate = Callable[[Entity], bool]


# =============================================================================
# 4.0 REPOSITORY
# =============================================================================

class EntityRepository:
    """4.0 Paginated, filterable access to the account hierarchy."""

    def accounts(self, flt: AccountFilter, is_marked: Optional[Callable[[str], bool]] = None) -> Page:
        raise NotImplementedError

    def ads(self, account_id: str, flt: EntityFilter, is_marked: Optional[LabelPredicate] = None) -> Page:
        raise NotImplementedError

    def keywords(self, account_id: str, flt: EntityFilter, is_marked: Optional[LabelPredicate] = None) -> Page:
        raise NotImplementedError

    def campaigns(self, account_id: str, flt: EntityFilter, is_marked: Optional[LabelPredicate] = None) -> Page:
        raise NotImplementedError

    def ad_groups(self, account_id: str, flt: EntityFilter, is_marked: Optional[LabelPredicate] = None) -> Page:
        raise NotImplementedError

    def sitelinks(self, parent: Entity) -> Page:
        raise NotImplementedError


class InventoryRepository(EntityRepository):
    """
    4.1 Repository over an inventory document loaded into memory.

    Listings are truncated to page_limit entities per query; the total is
    always reported.
    """

    def __init__(self, inventory: Dict[str, Any], page_limit: int = DEFAULT_PAGE_LIMIT):
        self.page_limit = page_limit
        self._accounts: List[Account] = []
        self._by_account: Dict[str, Dict[str, List[Entity]]] = {}
        self._sitelinks: Dict[str, List[Sitelink]] = {}
        for raw_account in inventory.get("accounts", []):
            self._load_account(raw_account)
        logger.info(f"Inventory loaded: {len(self._accounts)} accounts, page limit {page_limit}")

    @classmethod
    def from_file(cls, path: str, page_limit: int = DEFAULT_PAGE_LIMIT) -> "InventoryRepository":
        with open(path, 'r') as f:
            return cls(json.load(f), page_limit=page_limit)

    # -------------------------------------------------------------------------
    # 4.2 Loading
    # -------------------------------------------------------------------------

    def _load_account(self, raw: Dict[str, Any]) -> None:
        account_id = str(raw["id"])
        self._accounts.append(Account(
            id=account_id,
            name=raw.get("name", ""),
            cost_last_30_days=float(raw.get("cost_last_30_days", 0) or 0),
        ))
        bucket = {TYPE_CAMPAIGN: [], TYPE_AD_GROUP: [], TYPE_AD: [], TYPE_KEYWORD: []}
        self._by_account[account_id] = bucket

        for raw_campaign in raw.get("campaigns", []):
            campaign = Entity(
                id=str(raw_campaign["id"]),
                account_id=account_id,
                entity_type=TYPE_CAMPAIGN,
                status=raw_campaign.get("status", ENABLED),
                campaign_name=raw_campaign.get("name", ""),
                campaign_status=raw_campaign.get("status", ENABLED),
            )
            bucket[TYPE_CAMPAIGN].append(campaign)
            self._load_sitelinks(campaign, raw_campaign.get("sitelinks", []))

            for raw_group in raw_campaign.get("ad_groups", []):
                common = dict(
                    account_id=account_id,
                    campaign_name=campaign.campaign_name,
                    ad_group_name=raw_group.get("name", ""),
                    campaign_status=campaign.status,
                    ad_group_status=raw_group.get("status", ENABLED),
                )
                ad_group = Entity(
                    id=str(raw_group["id"]),
                    entity_type=TYPE_AD_GROUP,
                    status=raw_group.get("status", ENABLED),
                    **common,
                )
                bucket[TYPE_AD_GROUP].append(ad_group)
                self._load_sitelinks(ad_group, raw_group.get("sitelinks", []))

                for raw_ad in raw_group.get("ads", []):
                    extra = {k: v for k, v in raw_ad.items()
                             if k not in ("id", "type", "status", "final_url", "mobile_final_url")}
                    bucket[TYPE_AD].append(Ad(
                        id=str(raw_ad["id"]),
                        entity_type=TYPE_AD,
                        status=raw_ad.get("status", ENABLED),
                        final_url=raw_ad.get("final_url"),
                        mobile_final_url=raw_ad.get("mobile_final_url"),
                        ad_type=raw_ad.get("type", "TEXT_AD"),
                        fields=extra,
                        **common,
                    ))

                for raw_keyword in raw_group.get("keywords", []):
                    bucket[TYPE_KEYWORD].append(Keyword(
                        id=str(raw_keyword["id"]),
                        entity_type=TYPE_KEYWORD,
                        status=raw_keyword.get("status", ENABLED),
                        final_url=raw_keyword.get("final_url"),
                        mobile_final_url=raw_keyword.get("mobile_final_url"),
                        text=raw_keyword.get("text", ""),
                        **common,
                    ))

    def _load_sitelinks(self, parent: Entity, raw_sitelinks: List[Dict[str, Any]]) -> None:
        self._sitelinks[f"{parent.account_id}/{parent.key}"] = [
            Sitelink(
                id=str(raw["id"]),
                account_id=parent.account_id,
                entity_type=TYPE_SITELINK,
                status=raw.get("status", ENABLED),
                campaign_name=parent.campaign_name,
                ad_group_name=parent.ad_group_name,
                final_url=raw.get("final_url"),
                mobile_final_url=raw.get("mobile_final_url"),
                link_text=raw.get("link_text", ""),
                parent_key=parent.key,
            )
            for raw in raw_sitelinks
        ]

    # -------------------------------------------------------------------------
    # 4.3 Queries
    # -------------------------------------------------------------------------

    def _page(self, matches: List[Any]) -> Page:
        return Page(entities=matches[:self.page_limit], total_num_entities=len(matches))

    @staticmethod
    def _matches(entity: Entity, flt: EntityFilter, is_marked: Optional[LabelPredicate]) -> bool:
        levels = [entity.status]
        if entity.entity_type in (TYPE_AD, TYPE_KEYWORD):
            levels += [entity.campaign_status, entity.ad_group_status]
        elif entity.entity_type == TYPE_AD_GROUP:
            levels.append(entity.campaign_status)
        if any(level not in flt.statuses for level in levels):
            return False
        if flt.require_final_url and not entity.final_url:
            return False
        if flt.has_label is not None and is_marked is not None:
            if is_marked(entity) != flt.has_label:
                return False
        return True

    def _select(self, account_id: str, entity_type: str, flt: EntityFilter,
                is_marked: Optional[LabelPredicate]) -> Page:
        entities = self._by_account.get(account_id, {}).get(entity_type, [])
        return self._page([e for e in entities if self._matches(e, flt, is_marked)])

    def accounts(self, flt: AccountFilter, is_marked: Optional[Callable[[str], bool]] = None) -> Page:
        matches = []
        for account in self._accounts:
            if flt.account_ids and account.id not in flt.account_ids:
                continue
            if flt.min_cost is not None and not account.cost_last_30_days > flt.min_cost:
                continue
            if flt.has_label is not None and is_marked is not None:
                if is_marked(account.id) != flt.has_label:
                    continue
            matches.append(account)
        page = self._page(matches)
        if flt.limit is not None:
            page.entities = page.entities[:flt.limit]
        return page

    def ads(self, account_id, flt, is_marked=None):
        return self._select(account_id, TYPE_AD, flt, is_marked)

    def keywords(self, account_id, flt, is_marked=None):
        return self._select(account_id, TYPE_KEYWORD, flt, is_marked)

    def campaigns(self, account_id, flt, is_marked=None):
        return self._select(account_id, TYPE_CAMPAIGN, flt, is_marked)

    def ad_groups(self, account_id, flt, is_marked=None):
        return self._select(account_id, TYPE_AD_GROUP, flt, is_marked)

    def sitelinks(self, parent: Entity) -> Page:
        return self._page(list(self._sitelinks.get(f"{parent.account_id}/{parent.key}", [])))
