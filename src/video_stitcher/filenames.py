"""Cross-platform filename sanitizing, byte-budget truncation and disambiguation.

Output names must be valid on every platform the batch may be copied to, so the
illegal character set is the union of what Windows, macOS and Linux reject.
Lengths are measured in UTF-8 bytes because filesystem limits are byte limits:
a name of 100 CJK characters is 300 bytes.
"""

import os
import random
import re
import string
from pathlib import Path
from typing import List, Tuple, Union

# Union of every platform's illegal characters, plus '#' which breaks URLs and
# several media tools.
ILLEGAL_CHARS_REGEX = re.compile(r'[<>:"/\\|?*#\x00-\x1f\x7f]')

CHAR_REPLACEMENTS = {
    "<": "(",
    ">": ")",
}

MAX_FILENAME_BYTES = 255
DEFAULT_TAIL_BYTES = 20
ELLIPSIS = "..."
MAX_COUNTER = 10000

WINDOWS_RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)


def byte_length(text: str) -> int:
    """Length of ``text`` once encoded as UTF-8."""
    return len(text.encode("utf-8"))


def truncate_by_bytes(text: str, max_bytes: int) -> str:
    """Right-truncate ``text`` to at most ``max_bytes`` without splitting a character."""
    if max_bytes <= 0:
        return ""
    if byte_length(text) <= max_bytes:
        return text

    result = []
    used = 0
    for char in text:
        size = byte_length(char)
        if used + size > max_bytes:
            break
        result.append(char)
        used += size
    return "".join(result)


def _tail_by_bytes(text: str, max_bytes: int) -> str:
    """Longest suffix of ``text`` that fits in ``max_bytes``."""
    used = 0
    start = len(text)
    for i in range(len(text) - 1, -1, -1):
        size = byte_length(text[i])
        if used + size > max_bytes:
            break
        used += size
        start = i
    return text[start:]


def split_extension(name: str) -> Tuple[str, str]:
    """Split ``name`` into (stem, extension). A leading dot is not an extension."""
    idx = name.rfind(".")
    if idx > 0:
        return name[:idx], name[idx:]
    return name, ""


def _replace_illegal(text: str, replacement: str) -> str:
    return ILLEGAL_CHARS_REGEX.sub(lambda m: CHAR_REPLACEMENTS.get(m.group(0), replacement), text)


def _clean_stem(stem: str, replacement: str) -> str:
    name = _replace_illegal(stem, replacement)

    if replacement:
        escaped = re.escape(replacement)
        name = re.sub(f"(?:{escaped}){{2,}}", replacement, name)
        name = re.sub(f"^(?:{escaped}|[.\\s])+|(?:{escaped}|[.\\s])+$", "", name)
    else:
        name = name.strip(". \t\r\n")

    if not name:
        name = "unnamed"

    if name.split(".")[0].upper() in WINDOWS_RESERVED_NAMES:
        name = "file_" + name
    return name


def _clean_extension(body: str, replacement: str) -> str:
    body = _replace_illegal(body, replacement)
    if replacement:
        escaped = re.escape(replacement)
        body = re.sub(f"(?:{escaped}){{2,}}", replacement, body)
        return re.sub(f"^(?:{escaped}|\\s)+|(?:{escaped}|\\s)+$", "", body)
    return body.strip()


def sanitize(name: str, replacement: str = "_", preserve_extension: bool = True) -> str:
    """Turn an arbitrary string into a filename legal on every platform.

    The result is a fixed point: ``sanitize(sanitize(x)) == sanitize(x)``.

    Args:
        name: Raw name (may contain path separators, control characters, ...)
        replacement: Character substituted for illegal characters
        preserve_extension: Keep the text after the last dot as an extension

    Returns:
        A non-empty, legal filename
    """
    if not name or not isinstance(name, str):
        return "unnamed"

    name = name.strip()
    if not preserve_extension:
        return _clean_stem(name, replacement)

    stem, ext = split_extension(name)
    if not ext:
        return _clean_stem(stem, replacement)

    ext_body = _clean_extension(ext[1:], replacement)
    if not ext_body:
        # Nothing legal left after the dot; the stem is the whole name now.
        return sanitize(stem, replacement, preserve_extension)

    return _clean_stem(stem, replacement) + "." + ext_body


def truncate_to_byte_budget(
    name: str,
    max_bytes: int = MAX_FILENAME_BYTES,
    reserved_suffix_bytes: int = 0,
    tail_bytes: int = DEFAULT_TAIL_BYTES,
    ellipsis: str = ELLIPSIS,
) -> str:
    """Shorten ``name`` so it fits in ``max_bytes - reserved_suffix_bytes`` bytes.

    Overlong names keep a prefix and a short tail joined by ``ellipsis`` so that
    trailing sequence numbers stay visible. The extension is kept unless it would
    take up half the budget on its own.
    """
    budget = max_bytes - reserved_suffix_bytes
    if budget <= 0:
        return ""
    if byte_length(name) <= budget:
        return name

    stem, ext = split_extension(name)
    if byte_length(ext) * 2 >= budget:
        stem, ext = name, ""

    available = budget - byte_length(ext)
    ellipsis_bytes = byte_length(ellipsis)

    if available <= tail_bytes + ellipsis_bytes:
        return truncate_by_bytes(stem, available) + ext

    prefix_bytes = (available - ellipsis_bytes - tail_bytes) // 2
    suffix_bytes = available - ellipsis_bytes - prefix_bytes

    prefix = truncate_by_bytes(stem, prefix_bytes)
    tail = _tail_by_bytes(stem[len(prefix):], suffix_bytes)
    return prefix + ellipsis + tail + ext


def combine(
    name_a: str,
    name_b: str,
    separator: str = "__",
    suffix: str = "",
    extension: str = ".mp4",
    max_bytes: int = MAX_FILENAME_BYTES,
) -> str:
    """Join two source names into one output filename within ``max_bytes``.

    Each half gets an equal share of the budget left after the separator,
    suffix and extension are reserved.
    """
    safe_a = sanitize(name_a, preserve_extension=False)
    safe_b = sanitize(name_b, preserve_extension=False)
    suffix = _replace_illegal(suffix, "_")

    reserved = byte_length(separator) + byte_length(suffix) + byte_length(extension)
    each = max(0, (max_bytes - reserved) // 2)
    ellipsis_bytes = byte_length(ELLIPSIS)

    if byte_length(safe_a) > each:
        safe_a = truncate_by_bytes(safe_a, each - ellipsis_bytes) + ELLIPSIS
    if byte_length(safe_b) > each:
        safe_b = truncate_by_bytes(safe_b, each - ellipsis_bytes) + ELLIPSIS

    combined = safe_a + separator + safe_b + suffix
    if byte_length(combined) + byte_length(extension) > max_bytes:
        room = max_bytes - byte_length(extension) - ellipsis_bytes
        combined = truncate_by_bytes(combined, room) + ELLIPSIS
    return combined + extension


def validate_filename(filename: str) -> List[str]:
    """Return a list of problems with ``filename``; empty means it is valid."""
    if not filename or not isinstance(filename, str):
        return ["filename is empty"]

    problems = []
    size = byte_length(filename)
    if size > MAX_FILENAME_BYTES:
        problems.append(f"filename too long ({size} bytes, max {MAX_FILENAME_BYTES})")

    illegal = sorted(set(ILLEGAL_CHARS_REGEX.findall(filename)))
    if illegal:
        problems.append("contains illegal characters: " + ", ".join(repr(c) for c in illegal))

    base = filename.split(".")[0].upper()
    if base in WINDOWS_RESERVED_NAMES:
        problems.append(f"{base!r} is a reserved device name")

    if filename != filename.strip():
        problems.append("leading or trailing whitespace")
    if filename.endswith("."):
        problems.append("ends with a period")
    return problems


def unique_filename(output_dir: Union[str, Path], filename: str) -> str:
    """Return ``filename`` or ``<stem>_<n><ext>`` so that it does not exist in ``output_dir``."""
    output_dir = Path(output_dir)
    stem, ext = split_extension(filename)

    if not (output_dir / filename).exists():
        return filename

    for counter in range(1, MAX_COUNTER + 1):
        candidate = f"{stem}_{counter}{ext}"
        if not (output_dir / candidate).exists():
            return candidate

    alphabet = string.ascii_lowercase + string.digits
    while True:
        token = "".join(random.choice(alphabet) for _ in range(6))
        candidate = f"{stem}_{token}{ext}"
        if not (output_dir / candidate).exists():
            return candidate


def generate_filename(
    output_dir: Union[str, Path],
    base_name: str,
    suffix: str = "",
    extension: str = ".mp4",
    reserve_suffix_bytes: int = 4,
    max_bytes: int = MAX_FILENAME_BYTES,
) -> str:
    """Sanitize, suffix, truncate and disambiguate ``base_name`` for ``output_dir``.

    The returned name does not exist in ``output_dir`` at the time of the call.
    Concurrent writers must still go through :class:`SafeOutput`, which
    re-checks at commit time.
    """
    safe = sanitize(base_name, preserve_extension=False)
    if suffix:
        safe += _replace_illegal(suffix, "_")

    safe = truncate_to_byte_budget(
        safe,
        max_bytes=max_bytes - byte_length(extension),
        reserved_suffix_bytes=reserve_suffix_bytes,
        tail_bytes=10,
    )
    return unique_filename(output_dir, safe + extension)


def stem_of(path: Union[str, Path]) -> str:
    """File name without directory or extension."""
    return os.path.splitext(os.path.basename(str(path)))[0]
