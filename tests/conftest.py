"""
Shared fakes for the link checker tests. No network, no real sleeping.
"""

import sys
from pathlib import Path
from typing import Dict, List

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from link_checker.checkpoint import JsonCheckpointStore
from link_checker.errors import FetchServiceError
from link_checker.http_probe import Fetcher, HttpProbe


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher(Fetcher):
    """
    Returns canned status codes per URL and records every request.

    responses values may be an int, an Exception to raise, or a list of
    those consumed one per request.
    """

    def __init__(self, responses: Dict[str, object] = None, default: int = 200, on_fetch=None):
        self.responses = dict(responses or {})
        self.default = default
        self.on_fetch = on_fetch
        self.requested: List[str] = []

    def fetch(self, url: str) -> int:
        self.requested.append(url)
        if self.on_fetch is not None:
            self.on_fetch(url)
        response = self.responses.get(url, self.default)
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return response


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_probe(fetcher: Fetcher, **kwargs) -> HttpProbe:
    kwargs.setdefault("sleep", RecordingSleep())
    return HttpProbe(fetcher, **kwargs)


def rate_limited() -> FetchServiceError:
    return FetchServiceError("Service invoked too many times in a short time: urlfetch")


def quota_exhausted() -> FetchServiceError:
    return FetchServiceError("Service invoked too many times: urlfetch")


def ad(ad_id: str, final_url: str, status: str = "ENABLED", **extra) -> Dict:
    return {"id": ad_id, "type": "TEXT_AD", "status": status, "headline": f"Ad {ad_id}",
            "final_url": final_url, **extra}


def inventory(accounts: List[Dict]) -> Dict:
    return {"accounts": accounts}


def account(account_id: str, ads: List[Dict] = None, keywords: List[Dict] = None,
            campaign_sitelinks: List[Dict] = None, ad_group_sitelinks: List[Dict] = None,
            cost: float = 100.0) -> Dict:
    return {
        "id": account_id,
        "name": f"Account {account_id}",
        "cost_last_30_days": cost,
        "campaigns": [
            {
                "id": "c1",
                "name": "Campaign One",
                "status": "ENABLED",
                "sitelinks": campaign_sitelinks or [],
                "ad_groups": [
                    {
                        "id": "g1",
                        "name": "Group One",
                        "status": "ENABLED",
                        "sitelinks": ad_group_sitelinks or [],
                        "ads": ads or [],
                        "keywords": keywords or [],
                    }
                ],
            }
        ],
    }


@pytest.fixture
def checkpoint(tmp_path):
    return JsonCheckpointStore(data_dir=str(tmp_path / "output"))
