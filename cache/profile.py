"""
Unified profile domain: every profile section in one cached snapshot.

The snapshot is fetched in parallel from a ``ProfileSource`` and cached under
``profile:{user}:unified``. Dashboard views read it through the selectors
registered in ``PROFILE_SELECTORS``; a profile or skills change signal on the
invalidation bus evicts the single entry and every selector refetches.
"""

import asyncio
import hashlib
from collections import Counter
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cache.keys import CacheKeys
from cache.store import CacheStore
from cache.unified import UnifiedDomainCache
from utils.validation import utc_now

SKILL_CATEGORY_LIMIT = 6
RECENT_ACTIVITY_LIMIT = 10


class _ProfileItem(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str

    @field_validator("id", mode="before")
    @classmethod
    def id_to_str(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) and not isinstance(v, bool) else v


class ProfileInfo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    full_name: str = ""
    email: str = ""
    headline: Optional[str] = None


class SkillItem(_ProfileItem):
    name: str
    category: Optional[str] = None


class EmploymentItem(_ProfileItem):
    company_name: str
    job_title: str
    start_date: date
    end_date: Optional[date] = None


class EducationItem(_ProfileItem):
    institution: str
    degree: str = ""
    start_date: Optional[date] = None


class ProjectItem(_ProfileItem):
    project_name: str
    role: Optional[str] = None
    start_date: Optional[date] = None


class CertificationItem(_ProfileItem):
    name: str
    issuer: Optional[str] = None
    issued_date: Optional[date] = None


class ProfileSnapshot(BaseModel):
    """All profile data for one user, as fetched together."""

    model_config = ConfigDict(frozen=True)

    profile: Optional[ProfileInfo] = None
    skills: List[SkillItem] = Field(default_factory=list)
    employment: List[EmploymentItem] = Field(default_factory=list)
    education: List[EducationItem] = Field(default_factory=list)
    projects: List[ProjectItem] = Field(default_factory=list)
    certifications: List[CertificationItem] = Field(default_factory=list)
    fetched_at: datetime


@runtime_checkable
class ProfileSource(Protocol):
    """Remote reads for each profile section. Rows are plain dicts."""

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def list_skills(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    async def list_employment(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    async def list_education(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    async def list_projects(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    async def list_certifications(self, user_id: str) -> List[Dict[str, Any]]:
        ...


async def fetch_profile_snapshot(
    source: ProfileSource,
    user_id: str,
    clock: Callable[[], datetime] = utc_now,
) -> ProfileSnapshot:
    """Fetch every profile section in parallel and assemble one snapshot."""
    profile, skills, employment, education, projects, certifications = await asyncio.gather(
        source.get_profile(user_id),
        source.list_skills(user_id),
        source.list_employment(user_id),
        source.list_education(user_id),
        source.list_projects(user_id),
        source.list_certifications(user_id),
    )
    return ProfileSnapshot(
        profile=profile or None,
        skills=skills or [],
        employment=employment or [],
        education=education or [],
        projects=projects or [],
        certifications=certifications or [],
        fetched_at=clock(),
    )


def profile_version(snapshot: ProfileSnapshot) -> str:
    """Content fingerprint of a snapshot; ignores when it was fetched."""
    payload = snapshot.model_dump_json(exclude={"fetched_at"})
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


# ----------------------------------------------------------------------
# Selectors
# ----------------------------------------------------------------------

def select_header(snapshot: ProfileSnapshot) -> Optional[Dict[str, str]]:
    if snapshot.profile is None:
        return None
    full_name = snapshot.profile.full_name.strip()
    parts = full_name.split()
    return {
        "first_name": parts[0] if parts else "",
        "last_name": " ".join(parts[1:]),
        "name": full_name or "Your Name",
        "email": snapshot.profile.email,
    }


def select_skills(snapshot: ProfileSnapshot) -> List[SkillItem]:
    return list(snapshot.skills)


def select_skills_by_category(snapshot: ProfileSnapshot) -> List[Dict[str, Any]]:
    """Skill counts per category, largest first, top six."""
    counts = Counter(skill.category or "Other" for skill in snapshot.skills)
    # Counter preserves first-seen order, and sorted() is stable on ties.
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [{"name": name, "value": value} for name, value in ranked[:SKILL_CATEGORY_LIMIT]]


def select_employment(snapshot: ProfileSnapshot) -> List[EmploymentItem]:
    return list(snapshot.employment)


def select_career_events(snapshot: ProfileSnapshot) -> List[Dict[str, Any]]:
    events = [
        {
            "id": emp.id,
            "company": emp.company_name,
            "title": emp.job_title,
            "start_date": emp.start_date,
            "end_date": emp.end_date,
            "is_current": emp.end_date is None,
        }
        for emp in snapshot.employment
    ]
    return sorted(events, key=lambda event: event["start_date"], reverse=True)


def select_counts(snapshot: ProfileSnapshot) -> Dict[str, int]:
    return {
        "employment": len(snapshot.employment),
        "skills": len(snapshot.skills),
        "education": len(snapshot.education),
        "projects": len(snapshot.projects),
        "certifications": len(snapshot.certifications),
    }


def select_recent_activity(snapshot: ProfileSnapshot) -> List[Dict[str, Any]]:
    """
    Mixed recent items across sections, newest first, top ten.

    Takes the first three employment entries and skills and the first two
    education entries and projects. Items without a date (skills always)
    are dated by the snapshot's fetch day.
    """
    fetched_day = snapshot.fetched_at.date()
    items: List[Dict[str, Any]] = []

    for emp in snapshot.employment[:3]:
        items.append(_activity(f"emp-{emp.id}", "employment", emp.job_title, emp.company_name, emp.start_date))
    for skill in snapshot.skills[:3]:
        items.append(_activity(f"skill-{skill.id}", "skill", skill.name, skill.category or "Skill", fetched_day))
    for edu in snapshot.education[:2]:
        items.append(_activity(f"edu-{edu.id}", "education", edu.degree, edu.institution, edu.start_date or fetched_day))
    for proj in snapshot.projects[:2]:
        items.append(_activity(f"proj-{proj.id}", "project", proj.project_name, proj.role or "Project", proj.start_date or fetched_day))

    items.sort(key=lambda item: item["date"], reverse=True)
    return items[:RECENT_ACTIVITY_LIMIT]


def _activity(item_id: str, kind: str, title: str, subtitle: str, when: date) -> Dict[str, Any]:
    return {"id": item_id, "type": kind, "title": title, "subtitle": subtitle, "date": when}


PROFILE_SELECTORS: Dict[str, Callable[[ProfileSnapshot], Any]] = {
    "header": select_header,
    "skills": select_skills,
    "skills_by_category": select_skills_by_category,
    "employment": select_employment,
    "career_events": select_career_events,
    "counts": select_counts,
    "recent_activity": select_recent_activity,
}


def create_profile_cache(
    store: CacheStore,
    source: ProfileSource,
    ttl_ms: Optional[float] = None,
    clock: Callable[[], datetime] = utc_now,
) -> UnifiedDomainCache:
    """Build the unified profile cache over ``source``."""

    async def fetch_all(user_id: str) -> ProfileSnapshot:
        return await fetch_profile_snapshot(source, user_id, clock)

    return UnifiedDomainCache(
        store,
        "profile",
        fetch_all,
        ttl_ms=ttl_ms,
        selectors=PROFILE_SELECTORS,
        key_for=CacheKeys.profile,
    )
