from __future__ import annotations

import logging
from collections import Counter
from datetime import date
from typing import Any, Optional

from bsm.domain.errors import DuplicateNameError, NotFoundError, TabHasActiveSalesError, ValidationError
from bsm.domain.models import Event, EventStatus, name_key
from bsm.repositories.unit_of_work import now_iso

log = logging.getLogger(__name__)

_MAX_LEN = {"name": 100, "location": 200, "contact": 50, "contact_name": 100}


class EventService:
    def __init__(self, repo, reporting=None):
        self.repo = repo
        self.reporting = reporting

    @staticmethod
    def _text(field: str, value: Optional[str], required: bool) -> Optional[str]:
        value = (value or "").strip()
        if not value:
            if required:
                raise ValidationError(f"Event {field.replace('_', ' ')} is required.")
            return None
        if len(value) > _MAX_LEN[field]:
            raise ValidationError(f"Event {field.replace('_', ' ')} must be at most {_MAX_LEN[field]} characters.")
        return value

    @staticmethod
    def _date(value: Any) -> str:
        if isinstance(value, date):
            return value.isoformat()[:10]
        try:
            return date.fromisoformat(str(value or "").strip()[:10]).isoformat()
        except ValueError as e:
            raise ValidationError(f"Invalid event date: {value!r}") from e

    @staticmethod
    def _status(value: EventStatus | str) -> EventStatus:
        try:
            return EventStatus(value)
        except ValueError as e:
            raise ValidationError(f"Invalid event status: {value!r}") from e

    def _check_unique_name(self, name: str, exclude_id: Optional[int] = None) -> None:
        key = name_key(name)
        if any(e.id != exclude_id and name_key(e.name) == key for e in self.repo.list_events()):
            raise DuplicateNameError(name, kind="event")

    def create(
        self,
        name: str,
        location: str,
        date: Any,
        contact: Optional[str] = None,
        contact_name: Optional[str] = None,
        status: EventStatus | str = EventStatus.PLANNING,
    ) -> Event:
        name = self._text("name", name, True)
        self._check_unique_name(name)
        event_id = self.repo.add_event(
            name,
            self._text("location", location, True),
            self._date(date),
            self._text("contact", contact, False),
            self._text("contact_name", contact_name, False),
            self._status(status).value,
            now_iso(),
        )
        log.info("event_created id=%s name=%s", event_id, name)
        return self.get(event_id)

    def list(self, status: EventStatus | str | None = None) -> list[Event]:
        return self.repo.list_events(self._status(status).value if status is not None else None)

    def list_active(self) -> list[Event]:
        return self.list(EventStatus.ACTIVE)

    def search(self, term: str) -> list[Event]:
        """Events whose name or location contains ``term``, ignoring case. A blank term lists everything."""
        needle = name_key(term)
        events = self.list()
        if not needle:
            return events
        return [e for e in events if needle in name_key(e.name) or needle in name_key(e.location)]

    def summary(self) -> dict[str, int]:
        counts = Counter(e.status.value for e in self.list())
        out = {"total": sum(counts.values())}
        out.update({s.value: counts.get(s.value, 0) for s in EventStatus})
        return out

    def get(self, event_id: int) -> Event:
        event = self.repo.get_event(int(event_id))
        if not event:
            raise NotFoundError(f"Event {event_id} not found.")
        return event

    def update(self, event_id: int, **fields: Any) -> Event:
        current = self.get(event_id)
        unknown = set(fields) - {"name", "location", "date", "contact", "contact_name", "status"}
        if unknown:
            raise ValidationError(f"Unknown event field(s): {', '.join(sorted(unknown))}")

        clean: dict[str, Any] = {}
        for key in ("name", "location"):
            if key in fields:
                clean[key] = self._text(key, fields[key], True)
        if "name" in clean:
            self._check_unique_name(clean["name"], exclude_id=current.id)
        for key in ("contact", "contact_name"):
            if key in fields:
                clean[key] = self._text(key, fields[key], False)
        if "date" in fields:
            clean["date"] = self._date(fields["date"])
        if "status" in fields:
            clean["status"] = self._status(fields["status"]).value

        self.repo.update_event(current.id, clean, now_iso())
        return self.get(current.id)

    def set_status(self, event_id: int, status: EventStatus | str) -> Event:
        event = self.update(event_id, status=status)
        log.info("event_status id=%s status=%s", event.id, event.status.value)
        return event

    def delete(self, event_id: int) -> None:
        """Delete an event with its stock and prices; its sales stay, detached."""
        event = self.get(event_id)
        open_sales = self.repo.count_open_tab_sales(event_id=event.id)
        if open_sales:
            raise TabHasActiveSalesError(
                f"Event '{event.name}' has {open_sales} sale(s) on tabs that are not settled yet."
            )
        self.repo.delete_event(event.id)
        log.warning("event_deleted id=%s name=%s", event.id, event.name)

    def statistics(self, event_id: int):
        if self.reporting is None:
            raise ValidationError("Reporting is not wired into the event service.")
        return self.reporting.event_report(self.get(event_id).id)
