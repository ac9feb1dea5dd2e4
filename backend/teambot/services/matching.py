import re
import unicodedata
from dataclasses import dataclass, field

from rapidfuzz.distance import Levenshtein

RESENT_PATTERN = re.compile(r"^TO (\d{9,10}/\d{4})")


@dataclass(frozen=True)
class MatchPolicy:
    resent_repair: bool = True
    hosts_fallback: bool = True
    similarity_threshold: float | None = None  # None = exact positional match


@dataclass(frozen=True)
class RosterSnapshot:
    names: list[str] = field(default_factory=list)          # sheet row 1, column order
    accounts: dict[str, str] = field(default_factory=dict)  # bank account -> name


def normalize(name: str) -> str:
    """Strip diacritics, collapse whitespace and lower-case."""
    decomposed = unicodedata.normalize("NFD", name or "")
    stripped = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return " ".join(unicodedata.normalize("NFC", stripped).split()).lower()


def repair_resent_account(message: str) -> str | None:
    """Account embedded in a forwarded payment's message, e.g. ``TO 123456789/0800``."""
    m = RESENT_PATTERN.match(message or "")
    return m.group(1) if m else None


def similarity(a: str, b: str) -> float:
    return Levenshtein.normalized_similarity(normalize(a), normalize(b))


def match(candidate: str, roster: list[str], threshold: float | None = None) -> int | None:
    """
    Column index of ``candidate`` in ``roster``.

    Without a threshold the first exact name wins. With one, the highest
    similarity strictly above it wins and ties go to the earlier column.
    """
    if threshold is None:
        for i, name in enumerate(roster):
            if name == candidate:
                return i
        return None

    best_index, best_score = None, threshold
    for i, name in enumerate(roster):
        score = similarity(candidate, name)
        if score > best_score:
            best_index, best_score = i, score
    return best_index


@dataclass(frozen=True)
class Resolution:
    account: str
    name: str
    column: int | None
    resent: bool = False
    unattributed: bool = False


def resolve(payer_account: str, message: str, roster: RosterSnapshot,
            hosts_name: str, policy: MatchPolicy = MatchPolicy()) -> Resolution:
    """Work out who paid and which roster column receives the amount."""
    account = payer_account
    resent = False
    if policy.resent_repair:
        repaired = repair_resent_account(message)
        if repaired:
            account, resent = repaired, True

    name = roster.accounts.get(account)
    name, column, unattributed = locate(name, roster.names, hosts_name, policy)
    return Resolution(account=account, name=name, column=column,
                      resent=resent, unattributed=unattributed)


def locate(name: str | None, names: list[str], hosts_name: str,
           policy: MatchPolicy = MatchPolicy()) -> tuple[str, int | None, bool]:
    """
    Roster column for a resolved name as ``(name, column, unattributed)``.

    Unknown names, and known names without a column of their own, go to the
    hosts bucket. ``column`` is None only when that is missing too.
    """
    if name:
        column = match(name, names, policy.similarity_threshold)
        if column is not None:
            return name, column, False

    if not policy.hosts_fallback:
        return name or "", None, True
    return hosts_name, match(hosts_name, names, policy.similarity_threshold), True
