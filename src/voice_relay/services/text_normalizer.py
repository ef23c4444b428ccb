"""Strip text down to what speech synthesis should actually read aloud."""

from __future__ import annotations

# Inclusive code point ranges of pictographs and symbols.
_PICTOGRAPH_RANGES: tuple[tuple[int, int], ...] = (
    (0x1F600, 0x1F64F),  # Emoticons
    (0x1F300, 0x1F5FF),  # Misc Symbols and Pictographs
    (0x1F680, 0x1F6FF),  # Transport and Map
    (0x1F900, 0x1F9FF),  # Supplemental Symbols and Pictographs
    (0x1F1E6, 0x1F1FF),  # Regional indicators (flags)
    (0x2600, 0x27BF),  # Misc Symbols + Dingbats
    (0x1F3FB, 0x1F3FF),  # Skin tone modifiers
    (0x200D, 0x200D),  # Zero width joiner
    (0xFE0F, 0xFE0F),  # Variation selector-16
)

# File, group, record and unit separators count as whitespace for str.isspace.
_SEPARATOR_CONTROLS = frozenset("\x1c\x1d\x1e\x1f")


def _is_pictograph(char: str) -> bool:
    code = ord(char)
    return any(low <= code <= high for low, high in _PICTOGRAPH_RANGES)


def remove_pictographs(text: str) -> str:
    return "".join(char for char in text if not _is_pictograph(char))


def remove_punctuation(text: str) -> str:
    """Keep only letters, decimal digits and whitespace."""
    return "".join(
        char
        for char in text
        if char.isalpha()
        or char.isdecimal()
        or (char.isspace() and char not in _SEPARATOR_CONTROLS)
    )


def normalize(text: str) -> str:
    return remove_punctuation(remove_pictographs(text))


__all__ = ["normalize", "remove_pictographs", "remove_punctuation"]
