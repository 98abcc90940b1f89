"""Validator — decide whether VIRT names, labels and targets are acceptable.

Every predicate here is total and side-effect free: it returns ``False``
for anything it does not recognise instead of raising. Callers run these
checks before untrusted input reaches storage or the network.
"""

from __future__ import annotations

import re

SCHEME = "virt://"

RESERVED_TAGS = ("vc", "vmc", "at", "lit")

# Hosts served from bundled assets, mapped to their index document.
SYSTEM_HOSTS = {
    "register.at": "registration.html",
    "lookin.at": "search.html",
    "v12browser.vc": "sales.html",
}

REGISTRATION_NAME = SCHEME + "register.at"

LABEL_MIN_LENGTH = 3
LABEL_MAX_LENGTH = 63

_LABEL_RE = re.compile(r"^[a-z0-9-]{%d,%d}$" % (LABEL_MIN_LENGTH, LABEL_MAX_LENGTH))
_HTTPS_RE = re.compile(r"^https://.+")
_IPV4_RE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}(:\d{1,5})?$")
_BARE_HOST_RE = re.compile(r"^[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_BARE_WORD_RE = re.compile(r"^[a-zA-Z0-9.-]+$")
_UNSAFE_LABEL_CHARS = re.compile(r"[^a-z0-9-]")


def _host_and_path(name: str) -> tuple[str, str]:
    """Split a ``virt://`` name into its lowercased host and its path."""
    rest = name[len(SCHEME):] if name.startswith(SCHEME) else name
    host, slash, path = rest.partition("/")
    return host.lower(), slash + path


def is_system_name(name: str) -> bool:
    """Return True if *name* addresses one of the built-in system hosts."""
    if not isinstance(name, str) or not name.startswith(SCHEME):
        return False
    host, _ = _host_and_path(name)
    return host in SYSTEM_HOSTS


def is_reserved_tag(tag: str) -> bool:
    return isinstance(tag, str) and tag in RESERVED_TAGS


def has_reserved_tag(name: str) -> bool:
    """Return True if the host of *name* is ``<label>.<tag>`` for a reserved tag."""
    if not isinstance(name, str):
        return False
    host, _ = _host_and_path(name)
    label, dot, tag = host.rpartition(".")
    return bool(dot and label) and is_reserved_tag(tag)


def is_acceptable_name(name: str) -> bool:
    """Return True for ``virt://`` names that are system names or carry a reserved tag."""
    if not isinstance(name, str) or not name.startswith(SCHEME):
        return False
    return is_system_name(name) or has_reserved_tag(name)


def is_secure_web_url(url: str) -> bool:
    return isinstance(url, str) and bool(_HTTPS_RE.match(url))


def is_ip_endpoint(target: str) -> bool:
    """Return True for a dotted-quad IPv4 literal with an optional ``:port``."""
    return isinstance(target, str) and bool(_IPV4_RE.match(target))


def is_acceptable_target(target: str) -> bool:
    """Return True if *target* is an HTTPS URL or a bare IPv4 endpoint."""
    return is_secure_web_url(target) or is_ip_endpoint(target)


def is_valid_label(label: str) -> bool:
    return isinstance(label, str) and bool(_LABEL_RE.match(label))


def split_name(name: str) -> tuple[str, str, str]:
    """Split ``virt://label.tag/path`` into ``(label, tag, path)``.

    The path keeps its leading slash and is ``""`` when absent. Raises
    ``ValueError`` when the host does not carry a reserved tag.
    """
    if not has_reserved_tag(name):
        raise ValueError(f"Not a reserved VIRT name: {name!r}")
    host, path = _host_and_path(name)
    label, _, tag = host.rpartition(".")
    return label, tag, path


def sanitize_label(text: str) -> str:
    """Lowercase *text* and drop every character not allowed in a label."""
    return _UNSAFE_LABEL_CHARS.sub("", text.lower())


def normalize_address(text: str) -> str:
    """Turn address-bar input into a navigable ``virt://`` or ``https://`` URL.

    - ``virt://...`` and ``https://...`` pass through (trimmed)
    - ``example.com`` becomes ``https://example.com``
    - a bare word such as ``youtube`` becomes ``https://youtube.com``

    Raises ``ValueError`` for empty input or anything else.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValueError("Invalid URL: must be non-empty string")

    address = text.strip()
    if address.startswith(SCHEME) or address.startswith("https://"):
        return address
    if _BARE_HOST_RE.match(address):
        return f"https://{address}"
    if _BARE_WORD_RE.match(address):
        return f"https://{address}.com"
    raise ValueError(f"Invalid URL format: {address!r}")
