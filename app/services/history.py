"""
Client history reconciliation.

Pure functions that merge the reservation history cached on a diner's device
with the server's authoritative statuses and shape it for display. Nothing in
here touches the database or the network.
"""

import math
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Hashable, Iterable, List, Optional, Tuple

from app.models.reservation import ReservationStatus
from app.schemas.history import HistoryEntry, HistoryGroup
from app.schemas.reservation import ReservationStatusItem

# Puts any accepted entry above every non-accepted one in its slot
ACCEPTED_BONUS_MS = 1_000_000_000_000

PENDING = ReservationStatus.PENDING.value
ACCEPTED = ReservationStatus.ACCEPTED.value
DECLINED = ReservationStatus.DECLINED.value
NO_RESPONSE = ReservationStatus.NO_RESPONSE.value


def _ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)


def _local_date(value: datetime, tz: tzinfo) -> date:
    return value.replace(tzinfo=timezone.utc).astimezone(tz).date()


def normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def basis_time(entry: HistoryEntry) -> Optional[datetime]:
    """Target time when known, creation time otherwise"""
    return entry.target_time or entry.created_at


def _basis_ms(entry: HistoryEntry) -> int:
    return _ms(basis_time(entry)) or 0


def slot_key(entry: HistoryEntry, rounding: timedelta = timedelta(minutes=5)) -> Hashable:
    """
    Identify the real-world booking attempt an entry belongs to:
    restaurant, target time rounded to `rounding`, seats. Falls back to the id.
    """
    name = normalize_name(entry.restaurant_name)
    t = _ms(basis_time(entry))
    if not name or not t or t <= 0:
        return entry.id

    q = int(rounding.total_seconds() * 1000)
    rounded = math.floor(t / q + 0.5) * q
    return (name, rounded, entry.seats)


def slot_score(entry: HistoryEntry) -> int:
    bonus = ACCEPTED_BONUS_MS if entry.status == ACCEPTED else 0
    return bonus + max(_ms(entry.accepted_at) or 0, _basis_ms(entry))


def dedupe_by_slot(
    entries: Iterable[HistoryEntry],
    rounding: timedelta = timedelta(minutes=5),
) -> List[HistoryEntry]:
    """Keep the highest scoring entry per slot; an accepted duplicate always wins"""
    best: Dict[Hashable, Tuple[int, HistoryEntry]] = {}
    for entry in entries:
        key = slot_key(entry, rounding)
        score = slot_score(entry)
        current = best.get(key)
        if current is None or score > current[0]:
            best[key] = (score, entry)
    return [entry for _, entry in best.values()]


def overlay(entry: HistoryEntry, item: Optional[ReservationStatusItem], now: datetime) -> HistoryEntry:
    """Server fields win over cached ones whenever the server supplies them"""
    updates = {}
    status = entry.status
    if item is not None:
        status = item.status or status
        updates["status"] = status
        if item.restaurant_name:
            updates["restaurant_name"] = item.restaurant_name
        if item.seats is not None:
            updates["seats"] = item.seats
        if item.reserved_for:
            updates["reserved_for"] = item.reserved_for
        if item.eta_minutes is not None:
            updates["eta_minutes"] = item.eta_minutes

    if status == ACCEPTED and entry.accepted_at is None:
        responded_at = item.responded_at if item is not None else None
        updates["accepted_at"] = responded_at or now

    eta = updates.get("eta_minutes", entry.eta_minutes)
    if entry.target_time is None and entry.created_at is not None and eta:
        updates["target_time"] = entry.created_at + timedelta(minutes=eta)

    return entry.model_copy(update=updates) if updates else entry


def collapse_ids(entries: Iterable[HistoryEntry], now: datetime) -> Dict[str, HistoryEntry]:
    """One entry per id; the earliest creation time and first acceptance time survive"""
    by_id: Dict[str, HistoryEntry] = {}
    for entry in entries:
        if not entry.id:
            continue
        existing = by_id.get(entry.id)
        if existing is None:
            by_id[entry.id] = entry if entry.created_at else entry.model_copy(update={"created_at": now})
            continue
        created = [t for t in (existing.created_at, entry.created_at) if t is not None]
        by_id[entry.id] = entry.model_copy(update={
            "created_at": min(created) if created else now,
            "accepted_at": existing.accepted_at or entry.accepted_at,
        })
    return by_id


def supersede_no_response(entries: List[HistoryEntry]) -> List[HistoryEntry]:
    """An unanswered request is dropped once a newer one exists for the same restaurant"""
    latest: Dict[str, Tuple[int, str]] = {}
    for entry in entries:
        name = normalize_name(entry.restaurant_name)
        if not name:
            continue
        t = _basis_ms(entry)
        if name not in latest or t > latest[name][0]:
            latest[name] = (t, entry.id)

    kept = []
    for entry in entries:
        name = normalize_name(entry.restaurant_name)
        if name and entry.status == NO_RESPONSE and latest[name][1] != entry.id:
            continue
        kept.append(entry)
    return kept


def within_retention(entry: HistoryEntry, now: datetime, retention: timedelta = timedelta(days=30)) -> bool:
    cutoff = now - retention
    for t in (entry.created_at, entry.target_time, entry.accepted_at):
        if t is not None and t >= cutoff:
            return True
    return entry.target_time is not None and entry.target_time > now


def reconcile_history(
    cached: Iterable[HistoryEntry],
    server: Iterable[ReservationStatusItem],
    now: datetime,
    *,
    retention: timedelta = timedelta(days=30),
    rounding: timedelta = timedelta(minutes=5),
) -> List[HistoryEntry]:
    """
    Merge cached entries with server statuses into the history the device
    should keep, newest first.

    Entries disappear only for reasons the server confirmed (declined),
    because a newer request to the same restaurant replaced an unanswered one,
    because they aged out, or because a better duplicate holds their slot.
    """
    by_server = {str(item.id): item for item in server}
    by_id = collapse_ids(cached, now)

    merged = []
    for entry_id, entry in by_id.items():
        item = by_server.get(entry_id)
        if item is not None and item.status == DECLINED:
            continue
        merged.append(overlay(entry, item, now))

    merged = supersede_no_response(merged)
    merged = [entry for entry in merged if within_retention(entry, now, retention)]
    merged = dedupe_by_slot(merged, rounding)
    merged.sort(key=_basis_ms, reverse=True)
    return merged


def partition(
    entries: Iterable[HistoryEntry],
    now: datetime,
    *,
    tz: tzinfo = timezone.utc,
    current_window: timedelta = timedelta(hours=2),
) -> Tuple[List[HistoryEntry], List[HistoryGroup]]:
    """
    Split history into today's entries and past accepted ones.

    Accepted entries stay current for `current_window` after acceptance, as
    long as they are for today. Past groups are newest day first.
    """
    today = _local_date(now, tz)
    current: List[HistoryEntry] = []
    past: List[HistoryEntry] = []

    for entry in entries:
        if entry.status == DECLINED:
            continue
        basis = basis_time(entry)
        is_today = basis is not None and _local_date(basis, tz) == today

        if entry.status == ACCEPTED:
            accepted = entry.accepted_at or entry.created_at
            recent = accepted is not None and now - accepted < current_window
            if is_today and recent:
                current.append(entry)
            else:
                past.append(entry)
            continue

        if is_today:
            current.append(entry)

    current.sort(key=_basis_ms)

    groups: Dict[Optional[date], List[HistoryEntry]] = {}
    for entry in past:
        basis = basis_time(entry)
        day = _local_date(basis, tz) if basis is not None else None
        groups.setdefault(day, []).append(entry)

    # Unknown day sorts last
    ordered = sorted(
        groups.items(),
        key=lambda kv: (kv[0] is not None, kv[0] or date.min),
        reverse=True,
    )

    return current, [
        HistoryGroup(day=day, items=sorted(items, key=_basis_ms, reverse=True))
        for day, items in ordered
    ]


def needs_polling(entries: Iterable[HistoryEntry]) -> bool:
    """Keep polling while any tracked reservation is still waiting for the restaurant"""
    return any(entry.status == PENDING for entry in entries)
