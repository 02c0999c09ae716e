"""
1.0 Results Module
Persistent cycle metadata and the CSV result logs.

Layout:
    output/
        cycle_state.json   (started/completed/notified timestamps, error count)
        results.csv        (current cycle, append-only)
        archive.csv        (previous cycle's results)
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

# 1.1 Column order of the result and archive logs
RESULT_COLUMNS = [
    'account_id', 'timestamp', 'url', 'response_code', 'entity_type',
    'campaign_name', 'ad_group_name', 'ad_text', 'keyword_text', 'sitelink_text',
]


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# 2.0 CYCLE METADATA
# =============================================================================

@dataclass
class Cycle:
    """One analysis pass over every account, possibly spanning many runs."""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    error_count: int = 0
    frequency_days: float = 7

    @property
    def in_progress(self) -> bool:
        return self.started_at is not None and (
            self.completed_at is None or self.completed_at < self.started_at
        )

    def days_since_completed(self, now: datetime) -> float:
        return (now - self.completed_at).total_seconds() / 86400

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": _format_ts(self.started_at),
            "completed_at": _format_ts(self.completed_at),
            "notified_at": _format_ts(self.notified_at),
            "error_count": self.error_count,
            "frequency_days": self.frequency_days,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cycle":
        return cls(
            started_at=_parse_ts(data.get("started_at")),
            completed_at=_parse_ts(data.get("completed_at")),
            notified_at=_parse_ts(data.get("notified_at")),
            error_count=int(data.get("error_count", 0) or 0),
            frequency_days=float(data.get("frequency_days", 7)),
        )


class CycleStateStore:
    """2.1 Cycle metadata kept in a JSON file."""

    def __init__(self, data_dir: str = "output"):
        self.state_file = os.path.join(data_dir, "cycle_state.json")

    def load(self) -> Cycle:
        if not os.path.exists(self.state_file):
            return Cycle()
        with open(self.state_file, 'r') as f:
            return Cycle.from_dict(json.load(f))

    def save(self, cycle: Cycle) -> None:
        os.makedirs(os.path.dirname(self.state_file) or ".", exist_ok=True)
        with open(self.state_file, 'w') as f:
            json.dump(cycle.to_dict(), f, indent=2)


# =============================================================================
# 3.0 RESULT LOG
# =============================================================================

class ResultLog:
    """3.0 Append-only CSV log of URL checks plus an archive of the last cycle."""

    def __init__(self, data_dir: str = "output"):
        self.data_dir = data_dir
        self.results_path = os.path.join(data_dir, "results.csv")
        self.archive_path = os.path.join(data_dir, "archive.csv")

    def append(self, url_checks: List[Dict[str, Any]]) -> int:
        """3.1 Append rows to the current log. Returns the number written."""
        if not url_checks:
            return 0

        df = pd.DataFrame(url_checks).reindex(columns=RESULT_COLUMNS)
        os.makedirs(self.data_dir, exist_ok=True)

        if os.path.exists(self.results_path):
            df.to_csv(self.results_path, mode='a', header=False, index=False)
            logger.info(f"Appended {len(df)} results to {self.results_path}")
        else:
            df.to_csv(self.results_path, mode='w', header=True, index=False)
            logger.info(f"Created {self.results_path} with {len(df)} results")
        return len(df)

    def load(self, path: Optional[str] = None) -> pd.DataFrame:
        path = path or self.results_path
        if not os.path.exists(path):
            return pd.DataFrame(columns=RESULT_COLUMNS)
        return pd.read_csv(path)

    def archive_and_clear(self) -> None:
        """3.2 Replace the archive with the current log, then empty the log."""
        os.makedirs(self.data_dir, exist_ok=True)
        current = self.load()
        current.reindex(columns=RESULT_COLUMNS).to_csv(self.archive_path, index=False)
        pd.DataFrame(columns=RESULT_COLUMNS).to_csv(self.results_path, index=False)
        logger.info(f"Archived {len(current)} results to {self.archive_path}")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)
