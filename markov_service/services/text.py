"""
Default text collaborators for the Markov model.

Regex tokenizer / untokenizer and a punctuation-based sentence splitter.
Models accept replacements for all three, so these only need to round-trip
ordinary prose.
"""
from __future__ import annotations

import re
from typing import List, Sequence

TOKEN_RE = re.compile(r"\w+(?:['’-]\w+)*|\.\.\.|[^\w\s]")
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
MULTI_SPACE_RE = re.compile(r" {2,}")

# no space before these
CLOSERS = {".", ",", "!", "?", ";", ":", "%", ")", "]", "}", "..."}
# no space after these
OPENERS = {"(", "[", "{", "$", "#"}
QUOTES = {'"', "“", "”"}


def tokenize(text: str) -> List[str]:
    """Split text into word and punctuation tokens."""
    return TOKEN_RE.findall(text)


def untokenize(tokens: Sequence[str]) -> str:
    """
    Join tokens back into surface text.

    Punctuation attaches to the preceding word, opening brackets to the
    following one, and double quotes alternate between opening and closing.
    """
    parts: List[str] = []
    no_space = True
    in_quote = False

    for tok in tokens:
        if tok in QUOTES:
            if in_quote:
                parts.append(tok)
                no_space = False
            else:
                if not no_space:
                    parts.append(" ")
                parts.append(tok)
                no_space = True
            in_quote = not in_quote
            continue

        if not no_space and tok not in CLOSERS:
            parts.append(" ")
        parts.append(tok)
        no_space = tok in OPENERS

    return MULTI_SPACE_RE.sub(" ", "".join(parts)).strip()


def split_sentences(text: str) -> List[str]:
    """Split raw text on sentence-final punctuation followed by whitespace."""
    return [s.strip() for s in SENTENCE_SPLIT_RE.split(text.strip()) if s.strip()]
