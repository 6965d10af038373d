"""
In-memory stand-in for the remote store.

Keeps the service usable with no database: five sample reports are seeded on
first access, and every page reads here before it reads remotely. State lives
as long as the FallbackStore instance and is never persisted.
"""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import config
from admin import ADMIN_ROLE, COMMUNITY_ROLE
from schemas import Profile, Report, ReporterName, Stats

logger = logging.getLogger(__name__)

SAMPLE_OWNER_ID = "test-user"
SAMPLE_OWNER_NAME = "Admin User"

SAMPLE_REPORTS = [
    ("1", "Mangrove Deforestation", "Large area of mangroves being cleared for development", 12.9716, 77.5946),
    ("2", "Oil Spill in Coastal Area", "Oil spill affecting marine life and mangroves", 13.0827, 80.2707),
    ("3", "Plastic Pollution", "Heavy plastic waste accumulation in mangrove area", 19.0760, 72.8777),
    ("4", "Illegal Fishing", "Commercial fishing vessels in protected mangrove zone", 22.5726, 88.3639),
    ("5", "Water Pollution", "Industrial waste being discharged near mangrove forest", 17.3850, 78.4867),
]


class FallbackStore:
    def __init__(self, admin_profile: Optional[bool] = None):
        self.admin_profile = config.FALLBACK_ADMIN_PROFILE if admin_profile is None else admin_profile
        self._lock = threading.RLock()
        self._reports: List[Report] = []
        self._profiles: Dict[str, Profile] = {}
        self._last_id = 0

    def initialize(self) -> None:
        """Seed the sample reports when the collection is empty."""
        with self._lock:
            if self._reports:
                return
            logger.info("Seeding fallback store with %d sample reports", len(SAMPLE_REPORTS))
            now = datetime.now(timezone.utc)
            self._reports = [
                Report(
                    id=rid,
                    title=title,
                    description=description,
                    status="pending",
                    user_id=SAMPLE_OWNER_ID,
                    latitude=lat,
                    longitude=lng,
                    created_at=now,
                    updated_at=now,
                    user_profile=ReporterName(full_name=SAMPLE_OWNER_NAME),
                )
                for rid, title, description, lat, lng in SAMPLE_REPORTS
            ]

    # ---------- reads ----------

    def list_all_reports(self) -> List[Report]:
        self.initialize()
        with self._lock:
            return [r.model_copy() for r in self._reports]

    def list_reports_for(self, owner_id: str) -> List[Report]:
        self.initialize()
        with self._lock:
            return [r.model_copy() for r in self._reports if r.user_id in (owner_id, SAMPLE_OWNER_ID)]

    def get_report(self, report_id: str) -> Optional[Report]:
        self.initialize()
        with self._lock:
            report = self._find(report_id)
            return report.model_copy() if report else None

    def compute_stats(self) -> Stats:
        self.initialize()
        with self._lock:
            counts = {}
            for r in self._reports:
                counts[r.status] = counts.get(r.status, 0) + 1
            return Stats(
                total_reports=len(self._reports),
                pending_reports=counts.get("pending", 0),
                verified_reports=counts.get("verified", 0),
                resolved_reports=counts.get("resolved", 0),
                rejected_reports=counts.get("rejected", 0),
                total_users=len(self._profiles) or 1,
            )

    def get_profile(self, user_id: str) -> Optional[Profile]:
        self.initialize()
        if self.admin_profile:
            # Every identity gets the authority profile while this is on
            return Profile(id=user_id, full_name=SAMPLE_OWNER_NAME, role=ADMIN_ROLE, points=100)
        with self._lock:
            profile = self._profiles.get(user_id)
            return profile.model_copy() if profile else None

    # ---------- writes ----------

    def _next_id(self) -> str:
        # millisecond timestamp, bumped when two reports land in the same ms
        rid = max(int(time.time() * 1000), self._last_id + 1)
        self._last_id = rid
        return str(rid)

    def _find(self, report_id: str) -> Optional[Report]:
        for r in self._reports:
            if r.id == report_id:
                return r
        return None

    def create_report(self, data: Dict[str, Any]) -> Report:
        self.initialize()
        with self._lock:
            now = datetime.now(timezone.utc)
            owner = self._profiles.get(data.get("user_id", ""))
            fields = {k: v for k, v in data.items() if k not in ("id", "created_at", "updated_at", "user_profile")}
            fields.setdefault("status", "pending")
            report = Report(
                **fields,
                id=self._next_id(),
                created_at=now,
                updated_at=now,
                user_profile=ReporterName(full_name=owner.full_name if owner else SAMPLE_OWNER_NAME),
            )
            self._reports.insert(0, report)
            return report.model_copy()

    def update_report_status(self, report_id: str, status: str) -> Optional[Report]:
        self.initialize()
        with self._lock:
            report = self._find(report_id)
            if report is None:
                return None
            report.status = status
            report.updated_at = datetime.now(timezone.utc)
            return report.model_copy()

    def edit_report(self, report_id: str, title: str, description: str) -> Optional[Report]:
        self.initialize()
        with self._lock:
            report = self._find(report_id)
            if report is None:
                return None
            report.title = title
            report.description = description
            report.updated_at = datetime.now(timezone.utc)
            return report.model_copy()

    def upsert_profile(self, user_id: str, full_name: Optional[str] = None, role: str = COMMUNITY_ROLE) -> Profile:
        self.initialize()
        with self._lock:
            if user_id not in self._profiles:
                self._profiles[user_id] = Profile(id=user_id, full_name=full_name or "User", role=role, points=0)
            return self._profiles[user_id].model_copy()

    def set_role(self, user_id: str, role: str) -> Profile:
        self.initialize()
        with self._lock:
            current = self._profiles.get(user_id) or Profile(id=user_id, full_name="User", role=role, points=0)
            self._profiles[user_id] = current.model_copy(update={"role": role, "updated_at": datetime.now(timezone.utc)})
            return self._profiles[user_id].model_copy()
