"""Helpers for bracket-prefixed feedback titles such as ``[Bug] [UI] Crash``."""
import re
from dataclasses import dataclass, field

LEADING_BRACKET_TOKEN = re.compile(r'^\s*\[([^\]]+)\]\s*')


@dataclass
class LeadingBracketParseResult:
    tokens: list[str] = field(default_factory=list)
    remainder: str = ""


def extract_leading_bracket_tokens(text: str) -> LeadingBracketParseResult:
    """Split leading ``[token]`` groups from the rest of the text."""
    remainder = text.lstrip()
    tokens: list[str] = []

    while True:
        match = LEADING_BRACKET_TOKEN.match(remainder)
        if not match or not match.group(0):
            break
        tokens.append(match.group(1).strip())
        remainder = remainder[match.end():]

    return LeadingBracketParseResult(tokens=tokens, remainder=remainder.lstrip())


def strip_leading_bracket_prefixes(text: str) -> str:
    return extract_leading_bracket_tokens(text).remainder

