"""Font resolution for drawtext.

Resolution order for a (family, weight) request:

1. in-memory cache
2. local search: metadata index, fonts directory, system font directories
3. web font catalog download (once per family/weight/script)
4. script-aware fallback chain: bundled fallback fonts, system fonts, and
   finally a download of the default Unicode-safe family

Decorative Latin-only families skip steps 2-3 for non-Latin text. A local hit
for a family not known to cover the text's script falls through to step 3,
which asks the catalog for a subset containing the sample text.
"""

import asyncio
import hashlib
import json
import logging
import os
import re
import shutil
from pathlib import Path
from typing import Iterable
from urllib.parse import quote, quote_plus

import httpx

from adrender.config import Settings, get_settings
from adrender.render.elements import FontFile

logger = logging.getLogger(__name__)

FONT_EXTENSIONS = (".ttf", ".otf")

WEIGHT_NAMES: dict[int, str] = {
    100: "Thin",
    200: "ExtraLight",
    300: "Light",
    400: "Regular",
    500: "Medium",
    600: "SemiBold",
    700: "Bold",
    800: "ExtraBold",
    900: "Black",
}

_WEIGHT_ALIASES: dict[str, int] = {
    "thin": 100,
    "hairline": 100,
    "extralight": 200,
    "ultralight": 200,
    "light": 300,
    "normal": 400,
    "regular": 400,
    "book": 400,
    "medium": 500,
    "semibold": 600,
    "demibold": 600,
    "bold": 700,
    "extrabold": 800,
    "ultrabold": 800,
    "black": 900,
    "heavy": 900,
}

# Characters requested from the catalog so one download covers common text
SAMPLE_CHARACTERS = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
    " !\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~"
    "ÀÁÂÃÄÅÆÇÈÉÊËÌÍÎÏÐÑÒÓÔÕÖØÙÚÛÜÝÞßàáâãäåæçèéêëìíîïðñòóôõöøùúûüýþÿ"
    "АБВГДЕЁЖЗИЙКЛМНОПРСТУФХЦЧШЩЪЫЬЭЮЯабвгдеёжзийклмнопрстуфхцчшщъыьэюя"
)

# Decorative families that only ship Latin glyphs
LATIN_ONLY_FAMILIES = (
    "bangers", "creepster", "pacifico", "lobster", "kaushan", "dancing",
    "caveat", "courgette", "gloria", "neucha", "permanent", "marker",
    "lucky", "bungee", "monoton", "concert", "carter", "alfa", "passion",
    "audiowide",
)

# Families with extended Unicode coverage
UNICODE_FAMILIES = (
    "noto", "roboto", "opensans", "dejavusans", "liberationsans", "ubuntu",
    "sourcesans", "firasans", "inter", "lato", "montserrat", "nunito",
    "ptserif", "ptsans", "merriweather", "playfair", "libre", "source",
    "fira", "karla", "barlow", "heebo", "ibm", "cascadia",
)

FALLBACK_FONTS: dict[str, tuple[str, ...]] = {
    "cyrillic": ("NotoSans-Regular", "NotoSans-Bold", "Roboto-Regular", "OpenSans-Regular"),
    "arabic": ("NotoSansArabic-Regular", "NotoSans-Regular"),
    "cjk": ("NotoSansSC-Regular", "NotoSansJP-Regular", "NotoSansTC-Regular", "NotoSans-Regular"),
    "devanagari": ("NotoSansDevanagari-Regular", "NotoSans-Regular"),
    "latin": ("OpenSans-Regular", "Roboto-Regular", "Barlow-Regular", "Nunito-Regular"),
}

SYSTEM_FALLBACK_FILES = ("Helvetica.ttc", "LiberationSans-Regular.ttf", "DejaVuSans.ttf")

_SCRIPT_RANGES: tuple[tuple[str, str], ...] = (
    ("cyrillic", r"[\u0400-\u04FF]"),
    ("arabic", r"[\u0600-\u06FF]"),
    ("cjk", r"[\u4E00-\u9FFF\u3040-\u30FF\uAC00-\uD7AF]"),
    ("devanagari", r"[\u0900-\u097F]"),
)

_SAFE_PATH_RE = re.compile(r"[^a-zA-Z0-9/\-_.]")
_CSS_URL_PATTERNS = (
    re.compile(r"url\((https?://[^)]+\.(?:ttf|otf))\)"),
    re.compile(r"url\((https?://[^)]+\.woff2)\)"),
    re.compile(r"url\((https?://[^)]+)\)"),
)


def normalize_weight(weight: str | int | float | None) -> int:
    """Map CSS weights (numbers or names) onto 100..900."""
    if weight is None:
        return 400
    raw = str(weight).strip().lower().replace("-", "").replace(" ", "")
    if raw in _WEIGHT_ALIASES:
        return _WEIGHT_ALIASES[raw]
    try:
        value = float(raw)
    except ValueError:
        return 400
    return int(min(900, max(100, round(value / 100) * 100)))


def normalize_family(family: str | None) -> str:
    """Strip CSS quoting and keep the first family of a stack."""
    if not family:
        return ""
    first = str(family).split(",")[0]
    return first.strip().strip("'\"").strip()


def detect_script(text: str | None) -> str:
    if not text:
        return "latin"
    for script, pattern in _SCRIPT_RANGES:
        if re.search(pattern, text):
            return script
    return "latin"


def _compact(family: str) -> str:
    return re.sub(r"[\s_\-]+", "", family).lower()


def is_latin_only(family: str) -> bool:
    key = _compact(family)
    return any(name in key for name in LATIN_ONLY_FAMILIES)


def supports_script(family: str, script: str) -> bool:
    """Whether ``family`` is known to have glyphs for ``script``.

    Unknown families are trusted for Latin only.
    """
    if script == "latin":
        return True
    if is_latin_only(family):
        return False
    key = _compact(family)
    return any(key.startswith(name) or name in key for name in UNICODE_FAMILIES)


def candidate_filenames(family: str, weight: int, italic: bool = False) -> list[str]:
    """Deterministic filename patterns for a family/weight, most specific first."""
    name = WEIGHT_NAMES.get(weight, "Regular")
    spellings = []
    for fam in (family.replace(" ", ""), family, family.replace(" ", "_"), family.replace(" ", "-")):
        if fam not in spellings:
            spellings.append(fam)

    stems: list[str] = []
    for fam in spellings:
        if italic:
            stems += [f"{fam}-{name}Italic", f"{fam}-{name}-Italic", f"{fam} {name} Italic"]
            if weight == 400:
                stems.append(f"{fam}-Italic")
        stems += [
            f"{fam}-{name}-UTF8",
            f"{fam}-{name}",
            f"{fam}-{name.lower()}",
            f"{fam}_{name}",
            f"{fam} {name}",
            f"{fam}{name}",
            f"{fam}{weight}",
        ]
        if weight == 400:
            stems.append(fam)

    names = [f"{stem}{ext}" for stem in stems for ext in FONT_EXTENSIONS]
    names += [f"{fam}-Regular{ext}" for fam in spellings for ext in FONT_EXTENSIONS]
    unique: dict[str, str] = {}
    for n in names:
        unique.setdefault(n.lower(), n)
    return list(unique.values())


class FontCache:
    """Resolved fonts keyed by (family, weight, italic, script).

    One instance is meant to live for the whole process and be shared by
    every render job; entries are immutable once stored. Also remembers
    which (family, weight, script) combinations were already tried against
    the catalog so a failing download is not repeated.
    """

    def __init__(self) -> None:
        self._fonts: dict[tuple[str, int, bool, str], FontFile] = {}
        self._attempted: set[tuple[str, int, str]] = set()
        self._locks: dict[tuple[str, int, bool, str], asyncio.Lock] = {}

    def get(self, key: tuple[str, int, bool, str]) -> FontFile | None:
        return self._fonts.get(key)

    def put(self, key: tuple[str, int, bool, str], font: FontFile) -> None:
        self._fonts[key] = font

    def lock(self, key: tuple[str, int, bool, str]) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def mark_download_attempt(self, family: str, weight: int, script: str = "latin") -> bool:
        """Record a catalog attempt. Returns False if one was already made."""
        key = (family.lower(), weight, script)
        if key in self._attempted:
            return False
        self._attempted.add(key)
        return True

    def clear(self) -> None:
        self._fonts.clear()
        self._attempted.clear()

    def __len__(self) -> int:
        return len(self._fonts)


class FontResolver:
    """Resolve font families to local font files usable by ffmpeg."""

    def __init__(
        self,
        cache: FontCache,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        self.cache = cache
        self.settings = settings or get_settings()
        self._client = client
        self.fonts_dir = Path(self.settings.fonts_dir)
        self.fallback_dir = Path(self.settings.fonts_fallback_dir)
        self._system_index: dict[str, str] | None = None

    # =========================================================================
    # Public API
    # =========================================================================

    async def resolve(
        self,
        family: str,
        weight: str | int = 400,
        sample_text: str | None = None,
        italic: bool = False,
    ) -> FontFile | None:
        family = normalize_family(family) or self.settings.default_font_family
        weight_num = normalize_weight(weight)
        script = detect_script(sample_text)
        key = (family.lower(), weight_num, italic, script)

        cached = self.cache.get(key)
        if cached is not None:
            return cached

        async with self.cache.lock(key):
            cached = self.cache.get(key)
            if cached is not None:
                return cached

            font: FontFile | None = None
            if is_latin_only(family) and script != "latin":
                logger.info(f"[FONT] {family} has no {script} coverage, using fallback chain")
            else:
                font = await asyncio.to_thread(self._search_local, family, weight_num, italic)
                if font is not None and not supports_script(family, script):
                    logger.info(f"[FONT] Local {font.path} may lack {script} glyphs, trying catalog")
                    font = None
                if font is None:
                    font = await self._download(family, weight_num, sample_text, script)

            if font is None:
                font = await self._fallback(script, weight_num)
                if font is None:
                    logger.warning(f"[FONT] Could not resolve {family} {weight_num} ({script})")
                    return None

            self.cache.put(key, font)
            logger.debug(f"[FONT] Resolved {family} {weight_num} ({script}) -> {font.path}")
            return font

    async def resolve_for_ffmpeg(
        self,
        family: str,
        weight: str | int = 400,
        sample_text: str | None = None,
        italic: bool = False,
    ) -> str | None:
        """Resolve a font and return a path safe to pass to drawtext."""
        font = await self.resolve(family, weight, sample_text, italic)
        if font is None:
            return None
        return await asyncio.to_thread(self.prepare_for_ffmpeg, font)

    async def preload(self, requests: Iterable[tuple[str, str | int, str | None]]) -> None:
        """Resolve several (family, weight, text) requests concurrently."""
        unique = {(normalize_family(f), normalize_weight(w), detect_script(t)): (f, w, t) for f, w, t in requests}
        await asyncio.gather(*(self.resolve(f, w, t) for f, w, t in unique.values()))

    def prepare_for_ffmpeg(self, font: FontFile) -> str:
        """Copy fonts with unsafe path characters into a sanitized directory."""
        path = str(Path(font.path).resolve())
        if not _SAFE_PATH_RE.search(path):
            return path

        target_dir = (self.fonts_dir / "ffmpeg").resolve()
        source = Path(path)
        safe_stem = re.sub(r"[^A-Za-z0-9]", "", source.stem) or "Font"
        digest = hashlib.sha1(path.encode("utf-8")).hexdigest()[:8]
        target = target_dir / f"{safe_stem}_{digest}_ffmpeg{source.suffix.lower()}"
        if _SAFE_PATH_RE.search(str(target)):
            # Sanitized directory itself is unusable; hand back the original
            logger.warning(f"[FONT] Font directory {target_dir} contains special characters")
            return path
        if not target.exists():
            target_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
            logger.info(f"[FONT] Copied {path} -> {target}")
        return str(target)

    # =========================================================================
    # Local search
    # =========================================================================

    def _index_dir(self, directory: Path) -> dict[str, str]:
        index: dict[str, str] = {}
        if not directory.is_dir():
            return index
        for root, _dirs, files in os.walk(directory):
            for name in files:
                index.setdefault(name.lower(), os.path.join(root, name))
        return index

    def _system_fonts(self) -> dict[str, str]:
        if self._system_index is None:
            self._system_index = {}
            for directory in self.settings.system_font_dirs:
                for name, path in self._index_dir(Path(directory)).items():
                    self._system_index.setdefault(name, path)
        return self._system_index

    def _from_metadata(self, family: str, weight: int) -> FontFile | None:
        """Look up the family->weight->file index shipped with bundled fonts."""
        metadata_path = Path(self.settings.fonts_metadata_path)
        if not metadata_path.is_file():
            return None
        try:
            entries = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[FONT] Unreadable font metadata {metadata_path}: {e}")
            return None

        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict) or str(entry.get("family", "")).lower() != family.lower():
                continue
            files = entry.get("files")
            if not isinstance(files, dict) or not files:
                logger.warning(f"[FONT] Metadata entry for {family} has no usable files")
                return None
            weights = {normalize_weight(w): p for w, p in files.items()}
            chosen = weight if weight in weights else min(weights, key=lambda w: abs(w - weight))
            rel = str(weights[chosen]).lstrip("/")
            path = Path(self.settings.public_dir) / rel
            if not path.is_file():
                path = metadata_path.parent / Path(rel).name
            if path.is_file():
                return FontFile(path=str(path), family=family, weight=chosen)
            return None
        return None

    def _search_local(self, family: str, weight: int, italic: bool = False) -> FontFile | None:
        font = self._from_metadata(family, weight)
        if font is not None:
            return font

        candidates = candidate_filenames(family, weight, italic)
        for index in (self._index_dir(self.fonts_dir), self._system_fonts()):
            for name in candidates:
                path = index.get(name.lower())
                if path:
                    return FontFile(path=path, family=family, weight=weight)
        return None

    # =========================================================================
    # Catalog download
    # =========================================================================

    def _catalog_url(self, family: str, weight: int, sample_text: str | None) -> str:
        text = SAMPLE_CHARACTERS + (sample_text or "")
        unique_text = "".join(dict.fromkeys(text))
        return (
            f"{self.settings.font_catalog_url}?family={quote_plus(family)}:wght@{weight}"
            f"&text={quote(unique_text, safe='')}&display=swap"
        )

    async def _download(
        self, family: str, weight: int, sample_text: str | None = None, script: str = "latin"
    ) -> FontFile | None:
        if not self.cache.mark_download_attempt(family, weight, script):
            return None

        client = self._client or httpx.AsyncClient(timeout=self.settings.download_timeout_seconds)
        try:
            response = await client.get(self._catalog_url(family, weight, sample_text))
            response.raise_for_status()
            font_url = None
            for pattern in _CSS_URL_PATTERNS:
                match = pattern.search(response.text)
                if match:
                    font_url = match.group(1)
                    break
            if font_url is None:
                logger.warning(f"[FONT] Catalog returned no font URL for {family} {weight}")
                return None

            font_response = await client.get(font_url)
            font_response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"[FONT] Download failed for {family} {weight}: {e}")
            return None
        finally:
            if self._client is None:
                await client.aclose()

        ext = ".woff2" if font_url.split("?")[0].endswith(".woff2") else ".otf" if ".otf" in font_url else ".ttf"
        suffix = "" if script == "latin" else f"-{script}"
        target = self.fonts_dir / f"{family.replace(' ', '')}-{WEIGHT_NAMES[weight]}-UTF8{suffix}{ext}"
        try:
            self.fonts_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, font_response.content)
        except OSError as e:
            logger.warning(f"[FONT] Could not store {target}: {e}")
            return None

        logger.info(f"[FONT] Downloaded {family} {weight} -> {target}")
        return FontFile(path=str(target), family=family, weight=weight)

    # =========================================================================
    # Fallback chain
    # =========================================================================

    async def _fallback(self, script: str, weight: int) -> FontFile | None:
        names = FALLBACK_FONTS.get(script, FALLBACK_FONTS["latin"])
        font = await asyncio.to_thread(self._find_fallback_file, names)
        if font is not None:
            logger.info(f"[FONT] Using fallback {font.path} for {script}")
            return font

        default_family = self.settings.default_font_family
        font = await asyncio.to_thread(self._search_local, default_family, 400)
        if font is None:
            font = await self._download(default_family, 400)
        if font is not None:
            logger.info(f"[FONT] Using default family {default_family} for {script}")
        return font

    def _find_fallback_file(self, names: Iterable[str]) -> FontFile | None:
        local_indexes = (self._index_dir(self.fallback_dir), self._index_dir(self.fonts_dir))
        for stem in names:
            for index in local_indexes:
                for ext in FONT_EXTENSIONS:
                    path = index.get(f"{stem}{ext}".lower())
                    if path:
                        return FontFile(path=path, family=stem.split("-")[0], weight=400)

        system = self._system_fonts()
        for filename in SYSTEM_FALLBACK_FILES:
            path = system.get(filename.lower())
            if path:
                return FontFile(path=path, family=Path(filename).stem.split("-")[0], weight=400)
        return None
