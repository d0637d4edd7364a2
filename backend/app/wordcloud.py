from __future__ import annotations

from typing import Any, Dict, List

from .errors import WordRejected
from .models import Phase, Session, WordBank, WordEntry
from .utils import normalize_word


def is_profane(word: str, denylist: frozenset) -> bool:
    return word in denylist or any(token in denylist for token in word.split())


def submit_word(
    session: Session,
    nickname: str,
    raw: str,
    *,
    limit: int = 5,
    max_length: int = 32,
    denylist: frozenset = frozenset(),
) -> int:
    """Record one word from ``nickname`` and return the running submission total.

    Raises ``WordRejected`` with the rejection reason; a rejected word leaves the
    bank untouched.
    """
    if session.phase != Phase.WORDCLOUD:
        raise WordRejected(WordRejected.NOT_WORDCLOUD)

    word = normalize_word(raw)
    if not word or len(word) > max_length:
        raise WordRejected(WordRejected.INVALID)

    bank = session.word_bank
    if bank.per_player.get(nickname, 0) >= limit:
        raise WordRejected(WordRejected.LIMIT_REACHED)
    if is_profane(word, denylist):
        raise WordRejected(WordRejected.PROFANE)

    entry = bank.entries.get(word)
    if entry is None:
        entry = bank.entries[word] = WordEntry(text=word)
    entry.count += 1
    entry.contributors[nickname] = entry.contributors.get(nickname, 0) + 1
    bank.per_player[nickname] = bank.per_player.get(nickname, 0) + 1
    return bank.total_submissions


def cloud_view(bank: WordBank) -> List[Dict[str, Any]]:
    entries = sorted(bank.entries.values(), key=lambda e: (-e.count, e.text))
    if not entries:
        return []
    top = entries[0].count
    return [{"text": e.text, "count": e.count, "weight": round(e.count / top, 2)} for e in entries]


def cloud_payload(bank: WordBank) -> Dict[str, Any]:
    return {"words": cloud_view(bank), "total_submissions": bank.total_submissions}
