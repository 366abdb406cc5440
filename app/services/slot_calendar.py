from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from ..core.config import settings
from ..core.exceptions import ClosedDay, ValidationError
from ..models.doctor import Doctor

TIME_FORMAT = "%H:%M"


def normalize_time(value: str) -> str:
    """Parse a time of day and return it zero padded as HH:MM."""
    try:
        return datetime.strptime(str(value).strip(), TIME_FORMAT).strftime(TIME_FORMAT)
    except ValueError:
        raise ValidationError(
            f"Invalid time format '{value}'. Use HH:MM format (e.g., 09:30)"
        )


def weekday_name(day: date) -> str:
    return day.strftime("%A")


class SlotCalendar:
    """Derives a doctor's bookable slots for a calendar day."""

    def __init__(
        self,
        slot_minutes: Optional[int] = None,
        default_start: Optional[str] = None,
        default_end: Optional[str] = None,
    ):
        self.slot_minutes = slot_minutes or settings.SLOT_MINUTES
        self.default_start = default_start or settings.DEFAULT_WORKING_HOURS_START
        self.default_end = default_end or settings.DEFAULT_WORKING_HOURS_END

    def works_on(self, doctor: Doctor, day: date) -> bool:
        working_days = {d.strip().lower() for d in (doctor.working_days or [])}
        return weekday_name(day).lower() in working_days

    def generate_slots(self, doctor: Doctor, day: date) -> List[str]:
        """All slots of ``day`` in ascending order, ignoring bookings.

        A slot is included only if it ends by the end of working hours.
        Raises ClosedDay if the doctor does not work that weekday.
        """
        if not self.works_on(doctor, day):
            raise ClosedDay(weekday_name(day))

        start = datetime.strptime(
            normalize_time(doctor.working_hours_start or self.default_start), TIME_FORMAT
        )
        end = datetime.strptime(
            normalize_time(doctor.working_hours_end or self.default_end), TIME_FORMAT
        )
        width = timedelta(minutes=self.slot_minutes)

        slots = []
        current = start
        while current + width <= end:
            slots.append(current.strftime(TIME_FORMAT))
            current += width

        return slots

    def available_slots(
        self,
        doctor: Doctor,
        day: date,
        active_bookings: Iterable[str],
    ) -> List[str]:
        """Slots of ``day`` not held by any of ``active_bookings`` (slot times)."""
        taken = set(active_bookings)
        return [slot for slot in self.generate_slots(doctor, day) if slot not in taken]
