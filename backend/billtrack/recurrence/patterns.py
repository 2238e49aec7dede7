from dataclasses import dataclass


@dataclass(frozen=True)
class CommonPattern:
    name: str
    description: str
    rrule: str


COMMON_PATTERNS: tuple[CommonPattern, ...] = (
    CommonPattern("Daily", "Every day", "FREQ=DAILY"),
    CommonPattern("Weekly", "Every week", "FREQ=WEEKLY"),
    CommonPattern("Bi-weekly", "Every 2 weeks", "FREQ=WEEKLY;INTERVAL=2"),
    CommonPattern("Monthly", "Every month", "FREQ=MONTHLY"),
    CommonPattern("Quarterly", "Every 3 months", "FREQ=MONTHLY;INTERVAL=3"),
    CommonPattern("Semi-annually", "Every 6 months", "FREQ=MONTHLY;INTERVAL=6"),
    CommonPattern("Annually", "Every year", "FREQ=YEARLY"),
    CommonPattern("Weekdays", "Monday through Friday", "FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR"),
    CommonPattern("First of month", "First day of every month", "FREQ=MONTHLY;BYMONTHDAY=1"),
    CommonPattern("Last of month", "Last day of every month", "FREQ=MONTHLY;BYMONTHDAY=-1"),
)
