"""
Report lifecycle: what each page reads and writes.

Every read goes to the fallback store first and to the remote store second;
remote rows whose ids the fallback does not hold are merged in, and the
combined list is ordered most recent first. Writes land in the fallback store
first; the paired remote write only logs a warning when it fails, so the two
can drift apart.
"""
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from fastapi import HTTPException

import config
from admin import POINTS_FOR_VERIFICATION
from errors import BackendError, ValidationFailure, report_failure
from schemas import (
    REPORT_STATUSES,
    LeaderboardEntry,
    Notice,
    Profile,
    Report,
    ReportEdit,
    Stats,
)

logger = logging.getLogger(__name__)

LEADERBOARD_LIMIT = 50
DASHBOARD_RECENT = 5

GEOLOCATION_OPTIONS = {
    "enable_high_accuracy": True,
    "timeout_ms": 10000,
    "maximum_age_ms": 60000,
}

TIMEFRAMES = {
    # days back, bucket size in days
    "week": (7, 1),
    "month": (30, 1),
    "year": (365, 7),
}

# photo extensions are alphanumeric; anything else becomes "jpg"
_EXTENSION = re.compile(r"\.([A-Za-z0-9]{1,8})$")


@dataclass
class PhotoUpload:
    filename: str
    content_type: Optional[str]
    data: bytes


def _sort_recent(reports: Iterable[Report]) -> List[Report]:
    return sorted(reports, key=lambda r: r.created_at, reverse=True)


def _merge(local: List[Report], remote: List[Report]) -> List[Report]:
    seen = {r.id for r in local}
    return local + [r for r in remote if r.id not in seen]


def _read_reports(fallback_reports: List[Report], backend, where: Optional[dict], action: str,
                  limit: Optional[int] = None) -> Tuple[List[Report], Optional[Notice]]:
    notice = None
    remote: List[Report] = []
    if backend is not None and backend.configured:
        try:
            remote = backend.reports.list(where=where, order_by="created_at", descending=True, limit=limit)
        except BackendError as e:
            notice = report_failure(e, action)
    reports = _sort_recent(_merge(fallback_reports, remote))
    if limit:
        reports = reports[:limit]
    return reports, notice


def count_by_status(reports: Iterable[Report]) -> Dict[str, int]:
    counts = {s: 0 for s in REPORT_STATUSES}
    for r in reports:
        counts[r.status] = counts.get(r.status, 0) + 1
    return counts


# ---------- filters ----------

def filter_reports(reports: Iterable[Report], status: str = "all", search: str = "", date: str = "all",
                   include_reporter: bool = False, now: Optional[datetime] = None) -> List[Report]:
    out = list(reports)
    if status and status != "all":
        out = [r for r in out if r.status == status]

    if search:
        term = search.lower()

        def matches(r: Report) -> bool:
            if term in r.title.lower() or term in r.description.lower():
                return True
            name = r.user_profile.full_name if (include_reporter and r.user_profile) else None
            return bool(name and term in name.lower())

        out = [r for r in out if matches(r)]

    if date and date != "all":
        now = now or datetime.now(timezone.utc)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        since = {
            "today": today,
            "week": today - timedelta(days=7),
            "month": today - timedelta(days=30),
        }.get(date)
        if since is not None:
            out = [r for r in out if r.created_at >= since]
    return out


# ---------- dashboard ----------

def dashboard(fallback, backend, identity, profile: Optional[Profile]) -> dict:
    local = fallback.list_reports_for(identity.id)
    reports, notice = _read_reports(local, backend, {"user_id": identity.id}, "load your reports")
    counts = count_by_status(reports)
    return {
        "profile": profile,
        "recent_reports": reports[:DASHBOARD_RECENT],
        "stats": {
            "total_reports": len(reports),
            "pending_reports": counts["pending"],
            "verified_reports": counts["verified"],
            "points": profile.points if profile else 0,
        },
        "notice": notice,
    }


# ---------- submit ----------

def form_config() -> dict:
    return {
        "required_fields": ["title", "description", "photo"],
        "optional_fields": ["latitude", "longitude"],
        "max_photo_bytes": config.MAX_PHOTO_BYTES,
        "geolocation": GEOLOCATION_OPTIONS,
    }


def validate_submission(title: str, description: str, photo: Optional[PhotoUpload]) -> None:
    if not (title and title.strip()) or not (description and description.strip()):
        raise ValidationFailure("Missing information", "Please fill in all required fields.")
    if photo is None or not photo.data:
        raise ValidationFailure("Photo required", "Please upload or take a photo of the incident.")
    if len(photo.data) > config.MAX_PHOTO_BYTES:
        raise ValidationFailure("File too large", "Please select a photo smaller than 5MB.")


def upload_photo(backend, user_id: str, photo: PhotoUpload) -> Optional[str]:
    match = _EXTENSION.search(photo.filename or "")
    ext = match.group(1).lower() if match else "jpg"
    name = f"{user_id}-{int(time.time() * 1000)}.{ext}"
    if backend is None or not backend.configured:
        logger.warning("Storage not configured, continuing without photo")
        return None
    try:
        return backend.storage.upload(name, photo.data, photo.content_type)
    except BackendError as e:
        logger.warning("Storage upload failed, continuing without photo: %s", e)
        return None


def submit_report(fallback, backend, identity, title: str, description: str, photo: Optional[PhotoUpload],
                  latitude: Optional[float] = None, longitude: Optional[float] = None) -> Tuple[Report, Notice]:
    validate_submission(title, description, photo)

    fallback.upsert_profile(identity.id, identity.user_metadata.get("full_name"))
    photo_url = upload_photo(backend, identity.id, photo)

    report = fallback.create_report({
        "title": title,
        "description": description,
        "photo_url": photo_url,
        "latitude": latitude,
        "longitude": longitude,
        "user_id": identity.id,
        "status": "pending",
    })

    if backend is not None and backend.configured:
        try:
            backend.reports.create(report)
        except BackendError as e:
            logger.warning("Database report creation failed, but fallback creation succeeded: %s", e)

    return report, Notice(
        title="Report submitted successfully!",
        description="Your incident report has been submitted and is pending review.",
    )


# ---------- my reports ----------

def my_reports(fallback, backend, identity, status: str = "all", search: str = "") -> dict:
    local = fallback.list_reports_for(identity.id)
    reports, notice = _read_reports(local, backend, {"user_id": identity.id}, "load your reports")
    return {
        "reports": filter_reports(reports, status=status, search=search),
        "total": len(reports),
        "notice": notice,
    }


def _find_report(fallback, backend, report_id: str) -> Optional[Report]:
    report = fallback.get_report(report_id)
    if report is None and backend is not None and backend.configured:
        try:
            report = backend.reports.get(report_id)
        except BackendError as e:
            logger.error("Error fetching report %s: %s", report_id, e)
    return report


def edit_report(fallback, backend, identity, report_id: str, edit: ReportEdit) -> Tuple[Report, Notice]:
    report = _find_report(fallback, backend, report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    if report.user_id != identity.id:
        raise HTTPException(status_code=403, detail="Only the owner can edit this report")
    if report.status != "pending":
        raise HTTPException(status_code=409, detail="Only pending reports can be edited")

    updated = fallback.edit_report(report_id, edit.title, edit.description)
    if backend is not None and backend.configured:
        try:
            remote = backend.reports.update(report_id, {"title": edit.title, "description": edit.description})
            updated = updated or remote
        except BackendError as e:
            logger.warning("Database report update failed: %s", e)
    if updated is None:
        updated = report.model_copy(update={"title": edit.title, "description": edit.description})
    return updated, Notice(title="Success", description="Report updated successfully.")


# ---------- role ----------

def update_role(fallback, backend, identity, role: str) -> Notice:
    """Change the caller's own role, remotely first; the fallback follows only on success."""
    if backend is not None and backend.configured:
        try:
            backend.profiles.update(identity.id, {"role": role})
        except BackendError as e:
            logger.error("Error updating role: %s", e)
            return Notice(title="Error", description="Failed to update role. Please try again.", variant="destructive")
    fallback.set_role(identity.id, role)
    logger.info("User %s changed role to %s", identity.id, role)
    return Notice(title="Role Updated", description=f"Your role has been changed to {role}.")


# ---------- admin ----------

def admin_stats(fallback, backend, reports: List[Report]) -> Stats:
    counts = count_by_status(reports)
    total_users = fallback.compute_stats().total_users
    if backend is not None and backend.configured:
        try:
            total_users = max(total_users, backend.profiles.count())
        except BackendError as e:
            logger.error("Error fetching user count: %s", e)
    return Stats(
        total_reports=len(reports),
        pending_reports=counts["pending"],
        verified_reports=counts["verified"],
        resolved_reports=counts["resolved"],
        rejected_reports=counts["rejected"],
        total_users=total_users,
    )


def admin_reports(fallback, backend, status: str = "all", search: str = "", date: str = "all") -> dict:
    reports, notice = _read_reports(fallback.list_all_reports(), backend, None, "load reports")
    return {
        "reports": filter_reports(reports, status=status, search=search, date=date, include_reporter=True),
        "stats": admin_stats(fallback, backend, reports),
        "notice": notice,
    }


def award_points(backend, user_id: str, points: int) -> Notice:
    """Add points through the award_points procedure, or update inline when it is missing."""
    logger.info("Awarding %d points to user %s", points, user_id)
    failed = Notice(
        title="Error",
        description="Award points function is not working. Please run the database setup script.",
        variant="destructive",
    )
    if backend is None or not backend.configured:
        logger.warning("No database configured, points not awarded")
        return failed
    try:
        try:
            backend.rpc("award_points", user_id=user_id, points_to_add=points)
        except BackendError as e:
            logger.warning("award_points procedure unavailable, updating inline: %s", e)
            current = backend.profiles.get(user_id)
            if current is None:
                logger.warning("No profile %s to award points to", user_id)
                return failed
            backend.profiles.update(user_id, {"points": current.points + points})
    except BackendError as e:
        logger.error("Error awarding points: %s", e)
        return failed
    return Notice(title="Points awarded!", description=f"{points} points have been awarded to the user.")


def set_report_status(fallback, backend, report_id: str, status: str) -> dict:
    notices: List[Notice] = []
    report = fallback.update_report_status(report_id, status)
    if report is None:
        report = _find_report(fallback, backend, report_id)
        if report is None:
            raise HTTPException(status_code=404, detail="Report not found")
        report = report.model_copy(update={"status": status, "updated_at": datetime.now(timezone.utc)})

    if status == "verified":
        notices.append(award_points(backend, report.user_id, POINTS_FOR_VERIFICATION))

    notices.append(Notice(title="Status updated", description=f"Report has been marked as {status}."))

    if backend is not None and backend.configured:
        try:
            backend.reports.update(report_id, {"status": status})
        except BackendError as e:
            logger.warning("Database update failed, but fallback update succeeded: %s", e)

    return {"report": report, "notices": notices}


# ---------- leaderboard ----------

def badge_for(rank: int, points: int) -> str:
    if rank == 1:
        return "Champion"
    if rank == 2:
        return "Silver Guardian"
    if rank == 3:
        return "Bronze Protector"
    if points >= 100:
        return "Eco Warrior"
    if points >= 50:
        return "Top Guardian"
    if points >= 20:
        return "Rising Star"
    return "New Guardian"


def leaderboard(backend, limit: int = LEADERBOARD_LIMIT) -> dict:
    if backend is None or not backend.configured:
        return {"entries": [], "notice": None}
    try:
        profiles = backend.profiles.list(order_by="points", descending=True)
        reports = backend.reports.list()
    except BackendError as e:
        return {"entries": [], "notice": report_failure(e, "load the leaderboard")}

    by_user: Dict[str, List[Report]] = {}
    for r in reports:
        by_user.setdefault(r.user_id, []).append(r)

    entries = []
    # only profiles with at least one report are ranked
    for p in profiles:
        mine = by_user.get(p.id)
        if not mine:
            continue
        rank = len(entries) + 1
        entries.append(LeaderboardEntry(
            id=p.id,
            full_name=p.full_name or "Anonymous Guardian",
            points=p.points or 0,
            verified_reports=sum(1 for r in mine if r.status == "verified"),
            total_reports=len(mine),
            rank=rank,
            badge=badge_for(rank, p.points or 0),
        ))
        if len(entries) >= limit:
            break
    return {"entries": entries, "notice": None}


# ---------- analytics ----------

def _pct(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def analytics(fallback, backend, timeframe: str = "month", now: Optional[datetime] = None) -> dict:
    days, interval = TIMEFRAMES.get(timeframe, TIMEFRAMES["month"])
    reports, notice = _read_reports(fallback.list_all_reports(), backend, None, "load analytics data")
    now = now or datetime.now(timezone.utc)

    counts = count_by_status(reports)
    distribution = [{"name": s.capitalize(), "value": c} for s, c in counts.items() if c]

    series = []
    for i in range(days, -1, -interval):
        start = (now - timedelta(days=i)).replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=interval)
        bucket = [r for r in reports if start <= r.created_at < end]
        series.append({
            "date": start.date().isoformat(),
            "reports": len(bucket),
            "verified": sum(1 for r in bucket if r.status == "verified"),
            "resolved": sum(1 for r in bucket if r.status == "resolved"),
        })

    locations: Dict[str, int] = {}
    geotagged = 0
    for r in reports:
        if r.latitude is not None and r.longitude is not None:
            geotagged += 1
            key = f"{r.latitude:.2f},{r.longitude:.2f}"
            locations[key] = locations.get(key, 0) + 1
    top_locations = sorted(locations.items(), key=lambda kv: kv[1], reverse=True)[:10]

    total = len(reports)
    return {
        "timeframe": timeframe if timeframe in TIMEFRAMES else "month",
        "total_reports": total,
        "status_distribution": distribution,
        "time_series": series,
        "top_locations": [{"name": k, "value": v} for k, v in top_locations],
        "verified_pct": _pct(counts["verified"], total),
        "resolved_pct": _pct(counts["resolved"], total),
        "geotagged": geotagged,
        "geotagged_pct": _pct(geotagged, total),
        "notice": notice,
    }


# ---------- backend status ----------

def backend_status(backend) -> dict:
    info = {
        "backend": "running",
        "database": "not configured",
        "profiles": "unknown",
        "reports": "unknown",
        "storage": "unknown",
        "award_points": "unknown",
    }
    if backend is None or not backend.configured:
        return info
    info["database"] = "connected"
    checks = (("profiles", backend.profiles), ("reports", backend.reports), ("storage", backend.storage))
    for name, store in checks:
        try:
            info[name] = "ok" if store.exists() else "missing"
        except BackendError as e:
            info[name] = f"error: {str(e)[:80]}"
            info["database"] = "error"
    info["award_points"] = "ok" if "award_points" in backend.procedures else "missing"
    return info
