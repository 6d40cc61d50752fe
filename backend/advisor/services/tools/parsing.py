"""Free-text heuristics shared by the tools: relative dates, sender names, spam."""

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from email.utils import parseaddr
from zoneinfo import ZoneInfo


@dataclass
class DateRange:
    start: datetime | None = None
    end: datetime | None = None

    def contains(self, value: datetime) -> bool:
        if self.start and value < self.start:
            return False
        if self.end and value > self.end:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


def start_of_day(day: datetime) -> datetime:
    return datetime.combine(day.date(), time.min, tzinfo=day.tzinfo)


def end_of_day(day: datetime) -> datetime:
    return datetime.combine(day.date(), time.max, tzinfo=day.tzinfo)


def shift_months(value: datetime, months: int) -> datetime:
    """Move by whole months, clamping the day to the target month's length."""
    index = value.month - 1 + months
    year, month = value.year + index // 12, index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


# --- email search ---

_RELATIVE_RE = re.compile(
    r"(?:last|past|during|this)\s+(\d+)?\s*(day|week|month|year)s?|(\d+)\s*(day|week|month|year)s?\s+ago"
)
_DATE_PHRASE_RE = re.compile(
    r"\b(?:yesterday|today|(?:last|past|during|this)\s+(?:\d+\s*)?(?:day|week|month|year)s?|\d+\s*(?:day|week|month|year)s?\s+ago)\b",
    re.IGNORECASE,
)


def parse_email_date_filter(query: str, now: datetime, tz: ZoneInfo) -> DateRange | None:
    """Derive a received-at window from phrases like "yesterday" or "last 3 weeks"."""
    text = query.lower()
    local_now = now.astimezone(tz)

    if "yesterday" in text:
        day = local_now - timedelta(days=1)
        return DateRange(start_of_day(day), end_of_day(day))
    if "today" in text:
        return DateRange(start_of_day(local_now), None)

    match = _RELATIVE_RE.search(text)
    if not match:
        return None
    number = int(match.group(1) or match.group(3) or 1)
    unit = match.group(2) or match.group(4)
    if unit == "day":
        start = local_now - timedelta(days=number)
    elif unit == "week":
        start = local_now - timedelta(weeks=number)
    elif unit == "month":
        start = shift_months(local_now, -number)
    else:
        start = shift_months(local_now, -12 * number)
    return DateRange(start, None)


def strip_date_phrases(query: str) -> str:
    return re.sub(r"\s{2,}", " ", _DATE_PHRASE_RE.sub(" ", query)).strip()


NAME_STOPWORDS = {
    "what", "who", "from", "by", "wrote", "emailed", "sent", "today", "yesterday",
    "week", "month", "year", "this", "last", "past", "me", "my", "i", "the", "a",
    "an", "about", "regarding", "email", "emails", "any", "all", "did", "get", "got",
    "to", "in", "on", "recent", "latest", "anything", "someone", "have", "has",
}

_NAME_PATTERNS = [
    re.compile(r"(?:what|who)\s+([a-z]+(?:\s+[a-z]+)?)\s+(?:wrote|emailed|sent)", re.IGNORECASE),
    re.compile(r"\b(?:from|by)\s+([a-z]+(?:\s+[a-z]+)?)", re.IGNORECASE),
    re.compile(r"\b([a-z]+(?:\s+[a-z]+)?)\s+(?:wrote|emailed)\b", re.IGNORECASE),
]
_EMAIL_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.IGNORECASE)


def _trim_stopwords(candidate: str) -> str:
    words = candidate.split()
    while words and words[0].lower() in NAME_STOPWORDS:
        words.pop(0)
    while words and words[-1].lower() in NAME_STOPWORDS:
        words.pop()
    return " ".join(words)


def extract_sender_names(query: str) -> list[str]:
    """Candidate sender names or addresses mentioned in an email search query."""
    text = strip_date_phrases(query)
    names: list[str] = []

    for pattern in _NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            name = _trim_stopwords(match.group(1))
            if len(name) >= 3:
                names.append(name)
    names.extend(_EMAIL_RE.findall(text))

    seen: set[str] = set()
    unique = []
    for name in names:
        if name.lower() not in seen:
            seen.add(name.lower())
            unique.append(name)
    return unique


# --- spam ---

SPAM_PATTERNS = [
    re.compile(r"@promo\.|@marketing\.|@newsletter\.|noreply@|no-reply@|donotreply@", re.IGNORECASE),
    re.compile(r"promo@|marketing@|deals@|offers@|newsletter@|update@|notification@", re.IGNORECASE),
    re.compile(r"support@.*\.(com|org|net)>?$", re.IGNORECASE),
]
SPAM_KEYWORDS = [
    "promo", "deal", "offer", "sale", "discount", "newsletter", "unsubscribe",
    "marketing", "advertisement", "notification", "update", "alert", "reminder",
    "noreply", "no-reply", "donotreply", "automated",
]
PROMOTIONAL_TERMS = ("promotional", "promo", "marketing", "newsletter")


def wants_promotional(query: str) -> bool:
    text = query.lower()
    return any(term in text for term in PROMOTIONAL_TERMS)


def is_spam_sender(sender: str) -> bool:
    return any(pattern.search(sender) for pattern in SPAM_PATTERNS)


def is_spam(sender: str, subject: str = "") -> bool:
    sender_lower = sender.lower()
    subject_lower = (subject or "").lower()
    if is_spam_sender(sender_lower):
        return True
    return any(k in sender_lower or k in subject_lower for k in SPAM_KEYWORDS)


# --- addresses ---

def split_address(raw: str) -> tuple[str, str]:
    """Split a From header into (display name, lower-cased address)."""
    name, address = parseaddr(raw or "")
    return name.strip().strip('"'), address.strip().lower()


def normalize_addresses(value) -> list[str]:
    """Attendee addresses from a list, or from a single comma/semicolon separated string.

    Entries without an ``@`` are dropped; duplicates keep their first position.
    """
    if value is None:
        return []
    if isinstance(value, str):
        value = re.split(r"[,;]", value)
    elif not isinstance(value, (list, tuple)):
        return []
    addresses: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        _, address = split_address(item)
        if "@" in address and address not in addresses:
            addresses.append(address)
    return addresses


def sender_display_name(raw: str) -> str:
    """The display name of a From header, or a title-cased mailbox name ("sara.smith" -> "Sara Smith")."""
    name, address = split_address(raw)
    if name:
        return name
    if not address:
        return "Unknown"
    return " ".join(w.capitalize() for w in re.split(r"[._]", address.split("@")[0]) if w)


# --- calendar search ---

GENERAL_CALENDAR_TERMS = ("upcoming", "future", "scheduled", "planned", "all", "any", "my", "events")


def parse_boundary(value: str, now: datetime, tz: ZoneInfo, end: bool = False) -> datetime:
    """Parse an explicit date argument: an ISO timestamp, "today" or "tomorrow".

    Raises ValueError on anything else.
    """
    text = value.strip().lower()
    local_now = now.astimezone(tz)
    if text in ("today", "tomorrow"):
        day = local_now if text == "today" else local_now + timedelta(days=1)
        return end_of_day(day) if end else start_of_day(day)
    return parse_datetime(value, tz)


def parse_datetime(value: str, tz: ZoneInfo) -> datetime:
    """Parse an ISO 8601 string. Naive values are taken in ``tz``; raises ValueError."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid date: {value!r}")
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def parse_calendar_range(query: str, now: datetime, tz: ZoneInfo) -> tuple[DateRange | None, bool]:
    """Resolve a relative range from free text.

    Returns ``(range, recognized)`` where ``recognized`` means a date phrase was found.
    """
    text = query.lower()
    local_now = now.astimezone(tz)

    if "today" in text:
        return DateRange(start_of_day(local_now), end_of_day(local_now)), True
    if "tomorrow" in text:
        day = local_now + timedelta(days=1)
        return DateRange(start_of_day(day), end_of_day(day)), True
    if "this week" in text:
        # Weeks run Sunday to Saturday
        week_start = start_of_day(local_now - timedelta(days=(local_now.weekday() + 1) % 7))
        return DateRange(week_start, end_of_day(week_start + timedelta(days=6))), True
    if "this month" in text:
        month_start = start_of_day(local_now.replace(day=1))
        month_end = end_of_day(shift_months(month_start, 1) - timedelta(days=1))
        return DateRange(month_start, month_end), True
    if any(term in text for term in ("upcoming", "future", "scheduled")):
        return DateRange(now, None), False
    return None, False


def is_general_calendar_query(query: str, recognized_phrase: bool) -> bool:
    text = query.lower()
    words = set(re.findall(r"[a-z]+", text))
    return recognized_phrase or any(term in words for term in GENERAL_CALENDAR_TERMS)
