import asyncio
import httpx
import logging
import re
import unicodedata
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from config import Config
from models import EnEvidence, ZhEvidence
from services.candidates import HAN_RE, han_only, primary_subtag, strip_trailing_punct

TONE_MARKS = {
    "ā": ("a", "1"), "á": ("a", "2"), "ǎ": ("a", "3"), "à": ("a", "4"),
    "ē": ("e", "1"), "é": ("e", "2"), "ě": ("e", "3"), "è": ("e", "4"),
    "ī": ("i", "1"), "í": ("i", "2"), "ǐ": ("i", "3"), "ì": ("i", "4"),
    "ō": ("o", "1"), "ó": ("o", "2"), "ǒ": ("o", "3"), "ò": ("o", "4"),
    "ū": ("u", "1"), "ú": ("u", "2"), "ǔ": ("u", "3"), "ù": ("u", "4"),
    "ǖ": ("v", "1"), "ǘ": ("v", "2"), "ǚ": ("v", "3"), "ǜ": ("v", "4"),
    "ü": ("v", None),
}

NUMBERED_PINYIN_RE = re.compile(r"^[a-z]+[1-5]?$")
MAX_PINYIN_LENGTH = 6
ENGLISH_WORD_RE = re.compile(r"^[a-z-]+$", re.IGNORECASE)
READING_MAP_KEY = "hanzi_to_pinyin"


class LookupCache:
    """
    Populate-once async cache. Concurrent first lookups of a key share a
    single load; a loader returning None is not cached.
    """

    def __init__(self):
        self._values: Dict[Hashable, Any] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def get(self, key: Hashable) -> Any:
        return self._values.get(key)

    async def get_or_populate(self, key: Hashable, loader: Callable[[], Awaitable[Any]]) -> Any:
        if key in self._values:
            return self._values[key]
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            try:
                if key not in self._values:
                    value = await loader()
                    if value is not None:
                        self._values[key] = value
                return self._values.get(key)
            finally:
                # Locks only live while a load is in flight
                if self._locks.get(key) is lock:
                    del self._locks[key]

    def clear(self) -> None:
        self._values.clear()
        self._locks.clear()


# Process-wide; static data, never invalidated
reading_cache = LookupCache()
shard_cache = LookupCache()


class PhoneticDataSource:
    """Reads the character reading map and the per-base homophone shards."""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or Config.PHONETIC_DATA_URL).rstrip("/")
        self.transport = transport
        self.timeout = httpx.Timeout(Config.LOOKUP_TIMEOUT)

    async def _get(self, path: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.get(f"{self.base_url}/{path}")

    async def fetch_reading_map(self) -> Optional[Dict[str, List[Dict[str, Any]]]]:
        path = "hanzi_to_pinyin.json"
        try:
            response = await self._get(path)
            if not response.is_success:
                logging.warning(f"Phonetic data {path} returned {response.status_code}")
                return None
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logging.warning(f"Phonetic data {path} unavailable: {e}")
            return None
        return data if isinstance(data, dict) else None

    async def fetch_shard(self, base: str) -> Optional[Dict[str, List[str]]]:
        """
        Homophone shard for one base. A shard the server does not have is
        returned (and cached) as empty; a network failure returns None so
        the next lookup retries.
        """
        path = f"pinyin-index/{base}.json"
        try:
            response = await self._get(path)
        except httpx.HTTPError as e:
            logging.warning(f"Phonetic data {path} unavailable: {e}")
            return None
        if not response.is_success:
            logging.warning(f"Phonetic data {path} returned {response.status_code}")
            return {}
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

def detect_single_pinyin(text: str) -> Optional[str]:
    """
    Numbered form of a single pinyin syllable ("mǎ" -> "ma3", "hao3" -> "hao3"),
    or None when the text is not one.
    """
    t = unicodedata.normalize("NFC", (text or "").strip().lower())
    if not t or re.search(r"\s", t):
        return None

    letters = []
    tone = None
    for ch in t:
        if ch in TONE_MARKS:
            vowel, mark = TONE_MARKS[ch]
            letters.append(vowel)
            if mark:
                if tone:
                    return None
                tone = mark
        else:
            letters.append(ch)
    numbered = "".join(letters)
    if tone:
        if numbered[-1:].isdigit():
            return None
        numbered += tone

    if not NUMBERED_PINYIN_RE.match(numbered) or len(numbered) > MAX_PINYIN_LENGTH:
        return None
    return numbered


def _distinct(values) -> List[str]:
    return list(dict.fromkeys(values))


class ZhEvidenceBuilder:
    def __init__(
        self,
        source: Optional[PhoneticDataSource] = None,
        readings: Optional[LookupCache] = None,
        shards: Optional[LookupCache] = None,
    ):
        self.source = source or PhoneticDataSource()
        self.readings = readings if readings is not None else reading_cache
        self.shards = shards if shards is not None else shard_cache

    async def lookup_readings(self, char: str) -> List[Dict[str, Any]]:
        reading_map = await self.readings.get_or_populate(READING_MAP_KEY, self.source.fetch_reading_map)
        records = (reading_map or {}).get(char) or []
        return [r for r in records if isinstance(r, dict)]

    async def lookup_shard(self, base: str) -> List[str]:
        shard = await self.shards.get_or_populate(base, lambda: self.source.fetch_shard(base))
        chars = (shard or {}).get(base) or []
        return [c for c in chars if isinstance(c, str)]

    async def build(self, candidates: List[str], language: str) -> Optional[ZhEvidence]:
        """Homophone evidence for a single Han character or pinyin syllable."""
        if primary_subtag(language) != "zh":
            return None
        top = candidates[0].strip() if candidates else ""
        if not top:
            return None

        top = han_only(top) or top
        try:
            if len(HAN_RE.findall(top)) == 1:
                return await self._single_char(top)
            pinyin = detect_single_pinyin(top)
            if pinyin:
                return await self._single_pinyin(top, pinyin)
        except Exception as e:
            logging.warning(f"Mandarin evidence unavailable for {top!r}: {e}", exc_info=True)
        return None

    async def _single_char(self, char: str) -> ZhEvidence:
        readings = await self.lookup_readings(char)
        bases = _distinct(str(r.get("sound") or "").lower() for r in readings if r.get("sound"))
        tones = _distinct(str(r["tone"]) for r in readings if r.get("tone"))

        homophones: Dict[str, None] = {}
        for base in bases:
            for c in await self.lookup_shard(base):
                homophones[c] = None

        return ZhEvidence(
            mode="singleChar",
            input=char,
            bases=bases,
            homophones=list(homophones),
            toneLabel="/".join(tones) if tones else None,
        )

    async def _single_pinyin(self, token: str, pinyin: str) -> ZhEvidence:
        base = pinyin.rstrip("12345")
        tone = pinyin[-1] if pinyin[-1].isdigit() else None
        return ZhEvidence(
            mode="singlePinyin",
            input=token,
            bases=[base],
            homophones=await self.lookup_shard(base),
            toneLabel=tone,
        )


class EnEvidenceBuilder:
    """Number-word duals plus rhyme-service homophones for a single English token."""

    def __init__(
        self,
        number_url: Optional[str] = None,
        datamuse_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.number_url = number_url or Config.NUM_NORMALIZE_URL
        self.datamuse_url = datamuse_url or Config.DATAMUSE_URL
        self.transport = transport
        self.timeout = httpx.Timeout(Config.LOOKUP_TIMEOUT)
        self.limit = Config.MAX_EN_HOMOPHONES

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def number_forms(self, token: str) -> Tuple[Optional[str], Optional[str]]:
        """(digitForm, wordForm) from the number-normalization service; (None, None) on failure."""
        try:
            async with self._client() as client:
                response = await client.get(
                    self.number_url, params={"text": token}, headers={"Accept": "application/json"}
                )
            if not response.is_success:
                logging.warning(f"Number normalization returned {response.status_code}")
                return None, None
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logging.warning(f"Number normalization unavailable: {e}")
            return None, None
        if not isinstance(body, dict):
            return None, None
        digit_form = body.get("digitForm")
        word_form = body.get("wordForm")
        return (str(digit_form) if digit_form else None, str(word_form) if word_form else None)

    async def datamuse_homophones(self, word: str) -> List[str]:
        try:
            async with self._client() as client:
                response = await client.get(
                    self.datamuse_url,
                    params={"rel_hom": word, "max": self.limit},
                    headers={"Accept": "application/json"},
                )
            if not response.is_success:
                logging.warning(f"Datamuse returned {response.status_code}")
                return []
            items = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logging.warning(f"Datamuse unavailable: {e}")
            return []
        if not isinstance(items, list):
            return []
        words = (str(item.get("word") or "").strip() for item in items if isinstance(item, dict))
        return [w for w in words if w]

    async def build(self, candidates: List[str], language: str) -> Optional[EnEvidence]:
        if primary_subtag(language) != "en":
            return None
        top = candidates[0].strip() if candidates else ""
        if not top or re.search(r"\s", top):
            return None
        top = strip_trailing_punct(top)
        if not top:
            return None

        digit_form, word_form = await self.number_forms(top)
        if word_form:
            query = word_form
        elif ENGLISH_WORD_RE.match(top):
            query = top.lower()
        else:
            query = None
        related = await self.datamuse_homophones(query) if query else []

        homophones = dict.fromkeys(w.lower() for w in related)
        for form in (word_form, digit_form):
            if form:
                homophones[form.lower()] = None
        homophones.pop(top.lower(), None)

        if not homophones:
            return None
        return EnEvidence(input=top, homophones=list(homophones)[: self.limit])
