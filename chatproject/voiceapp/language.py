# voiceapp/language.py
"""
Speech policy helpers: language guess, voice table, voice ladder, chunking.

These are heuristics, kept as plain functions so the playback controller can
take replacements without caring how they decide.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

CHUNK_LIMIT = 200

SWAHILI_MARKERS = ("habari", "jambo", "asante", "karibu", "nini", "vipi", "sana", "mimi", "wewe", "kwa")
_FRENCH_CHARS = re.compile(r"[àâäéèêëïîôùûüÿç]", re.IGNORECASE)
_SPANISH_CHARS = re.compile(r"[áéíóúñ¿¡]", re.IGNORECASE)


@dataclass(frozen=True)
class VoiceConfig:
    language_code: str
    voice_name: str
    gender: str  # MALE | FEMALE | NEUTRAL


LANGUAGE_VOICES = {
    "en": VoiceConfig("en-US", "en-US-Neural2-J", "MALE"),
    "sw": VoiceConfig("sw-KE", "sw-KE-Standard-A", "MALE"),
    "es": VoiceConfig("es-ES", "es-ES-Neural2-B", "MALE"),
    "fr": VoiceConfig("fr-FR", "fr-FR-Neural2-B", "MALE"),
}


def detect_language(text: str) -> str:
    lowered = text.lower()
    if sum(1 for word in SWAHILI_MARKERS if word in lowered) >= 2:
        return "sw"
    if _FRENCH_CHARS.search(text):
        return "fr"
    if _SPANISH_CHARS.search(text):
        return "es"
    return "en"


def voice_for_language(language: str) -> VoiceConfig:
    return LANGUAGE_VOICES.get(language, LANGUAGE_VOICES["en"])


# ---------------- On-device voices ----------------
@dataclass(frozen=True)
class Voice:
    name: str
    lang: str
    default: bool = False
    voice_uri: str = ""


KNOWN_GOOD_VOICES = (
    "Google US English",
    "Google UK English Female",
    "Google español",
    "Google français",
    "Microsoft Aria Online (Natural) - English (United States)",
    "Microsoft Jenny Online (Natural) - English (United States)",
    "Samantha",
    "Karen",
    "Daniel",
)
_QUALITY_TAGS = ("natural", "premium")


def _lang_prefix(lang: str) -> str:
    return (lang or "").replace("_", "-").split("-")[0].lower()


def select_voice(voices: Sequence[Voice], language: str) -> Optional[Voice]:
    """
    Priority ladder: known good voice in the user's language, then a
    natural/premium one, the platform default, any voice in the language,
    any English voice, and finally whatever comes first.
    """
    if not voices:
        return None
    prefix = _lang_prefix(language)
    in_language = [v for v in voices if _lang_prefix(v.lang) == prefix]

    rungs = (
        [v for v in in_language if v.name in KNOWN_GOOD_VOICES],
        [v for v in in_language if any(tag in v.name.lower() for tag in _QUALITY_TAGS)],
        [v for v in in_language if v.default],
        in_language,
        [v for v in voices if _lang_prefix(v.lang) == "en"],
    )
    for candidates in rungs:
        if candidates:
            return candidates[0]
    return voices[0]


# ---------------- Chunking ----------------
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> List[str]:
    return [s for s in _SENTENCE_END.split(text.strip()) if s]


def split_into_chunks(text: str, limit: int = CHUNK_LIMIT) -> List[str]:
    """
    Pack whole sentences into chunks of at most ``limit`` characters.
    A sentence longer than ``limit`` is kept whole as its own chunk.
    """
    text = text.strip()
    if len(text) <= limit:
        return [text] if text else []

    chunks: List[str] = []
    current = ""
    for sentence in split_sentences(text):
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= limit:
            current = candidate
            continue
        if current:
            chunks.append(current)
        current = sentence
    if current:
        chunks.append(current)
    return chunks
