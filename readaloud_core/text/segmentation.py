"""
Segmentation
============

Splits block text into words, sentences and phrases for read-aloud
highlighting at different granularities.

Sentences come from NLTK's Punkt tokenizer. The pretrained model is used when
its data is installed (a quiet download is attempted once); otherwise an
untrained Punkt tokenizer seeded with the abbreviations below is used.
"""

import logging
import re
from functools import lru_cache
from typing import Callable, List

import nltk
from nltk.tokenize import sent_tokenize
from nltk.tokenize.punkt import PunktParameters, PunktSentenceTokenizer

logger = logging.getLogger(__name__)

PUNKT_RESOURCE = "tokenizers/punkt_tab"
PUNKT_PACKAGE = "punkt_tab"

# Common abbreviations that end with a period but do not end a sentence
ABBREVIATIONS = frozenset({
    "mr", "mrs", "ms", "dr", "prof", "sr", "jr", "st", "vs", "etc", "e.g",
    "i.e", "fig", "no", "vol", "pp", "ch", "approx", "dept", "inc", "ltd",
})

WORD = re.compile(r"[\w][\w'’\-]*", re.UNICODE)
PHRASE_BREAK = re.compile(r"(?<=[,;:])\s+|\s+(?=[-–]\s)")


def _punkt_installed() -> bool:
    try:
        nltk.data.find(PUNKT_RESOURCE)
        return True
    except LookupError:
        pass
    try:
        nltk.download(PUNKT_PACKAGE, quiet=True)
        nltk.data.find(PUNKT_RESOURCE)
        return True
    except Exception as e:
        logger.info(f"Punkt model unavailable, using untrained tokenizer ({e})")
        return False


@lru_cache(maxsize=1)
def sentence_tokenizer() -> Callable[[str], List[str]]:
    """The Punkt sentence splitter, resolved once per process."""
    if _punkt_installed():
        return sent_tokenize

    params = PunktParameters()
    params.abbrev_types = set(ABBREVIATIONS)
    return PunktSentenceTokenizer(params).tokenize


def _ends_with_abbreviation(sentence: str) -> bool:
    last_word = sentence.rsplit(" ", 1)[-1].rstrip(".").lower()
    return last_word in ABBREVIATIONS or (len(last_word) == 1 and last_word.isalpha())


def segment_words(text: str) -> List[str]:
    return WORD.findall(text or "")


def segment_sentences(text: str) -> List[str]:
    """Punkt sentences, rejoined where a split landed after an abbreviation or initial."""
    text = " ".join((text or "").split())
    if not text:
        return []

    sentences: List[str] = []
    for sentence in sentence_tokenizer()(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        if sentences and _ends_with_abbreviation(sentences[-1]):
            sentences[-1] = f"{sentences[-1]} {sentence}"
        else:
            sentences.append(sentence)
    return sentences


def segment_phrases(text: str) -> List[str]:
    """Sentences further split at commas, semicolons, colons and dashes."""
    phrases: List[str] = []
    for sentence in segment_sentences(text):
        for part in PHRASE_BREAK.split(sentence):
            part = part.strip()
            if part:
                phrases.append(part)
    return phrases
