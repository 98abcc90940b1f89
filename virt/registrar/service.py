"""Registrar service — the operations behind the VIRT registry API.

Ownership is anonymous: registering a name issues a random secret key that
is returned exactly once. Only a salted PBKDF2 digest of it is stored, and
every update or delete must present the key again. A lost key cannot be
recovered or rotated, and the name then stays registered as it is.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from typing import Optional

from virt.config import Settings
from virt.naming.validator import RESERVED_TAGS, is_acceptable_target, is_reserved_tag, is_valid_label
from virt.registrar.audit import AuditLog
from virt.registrar.errors import Conflict, InvalidInput, InvalidTag, NotFound, RegistrarError, Unauthorized
from virt.registry.models import DESCRIPTION_MAX_LENGTH, TITLE_MAX_LENGTH, NameRecord
from virt.registry.store import NameStore

logger = logging.getLogger(__name__)

SECRET_PREFIX = "v12-"
HASH_ALGORITHM = "pbkdf2_sha256"

GITHUB_PREFIX = "https://github.com/"
RAW_GITHUB_PREFIX = "https://raw.githubusercontent.com/"

SEARCH_LIMIT = 20

REGISTER_MESSAGE = "SAVE THIS KEY! If you lose it, you cannot update your site."


# ---------------------------------------------------------------------------
# Request / response records
# ---------------------------------------------------------------------------


@dataclass
class RegisterRequest:
    label: Optional[str] = None
    tag: Optional[str] = None
    target: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: list[str] = field(default_factory=list)
    body_text: Optional[str] = None


@dataclass
class RegisterResult:
    """Outcome of a registration. ``secret_key`` is never available again."""

    name: str
    secret_key: str
    message: str = REGISTER_MESSAGE
    success: bool = True


@dataclass
class UpdateRequest:
    label: Optional[str] = None
    tag: Optional[str] = None
    secret: Optional[str] = None
    target: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


@dataclass
class UpdateResult:
    label: str
    tag: str
    target: str
    title: str
    description: str
    last_accessed: str
    message: str = "Name updated successfully"
    success: bool = True


@dataclass
class DeleteRequest:
    label: Optional[str] = None
    tag: Optional[str] = None
    secret: Optional[str] = None


@dataclass
class LookupResult:
    label: str
    tag: str
    target: str
    raw_base: str
    title: str = ""
    description: str = ""
    verified: bool = False
    created_at: str = ""
    last_accessed: str = ""


@dataclass
class CheckResult:
    label: str
    tag: str
    available: bool
    message: str


@dataclass
class SearchHit:
    label: str
    tag: str
    title: str = ""
    description: str = ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def generate_secret() -> str:
    """Return a fresh human-readable secret key such as ``v12-1f3a...``."""
    return f"{SECRET_PREFIX}{secrets.token_hex(8)}"


def hash_secret(secret: str, iterations: int = 200_000) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt>$<hash>`` for *secret*."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", secret.encode(), bytes.fromhex(salt), iterations)
    return f"{HASH_ALGORITHM}${iterations}${salt}${digest.hex()}"


def verify_secret(secret: str, encoded: str) -> bool:
    """Check *secret* against a digest produced by :func:`hash_secret`."""
    if not isinstance(secret, str) or not secret:
        return False
    try:
        algorithm, iterations, salt, expected = encoded.split("$")
        if algorithm != HASH_ALGORITHM:
            return False
        digest = hashlib.pbkdf2_hmac("sha256", secret.encode(), bytes.fromhex(salt), int(iterations))
    except ValueError:
        return False
    return hmac.compare_digest(digest.hex(), expected)


def raw_base_for(target: str) -> str:
    """Rewrite a GitHub page URL into its raw-content base URL.

    ``https://github.com/u/r/blob/main/site`` becomes
    ``https://raw.githubusercontent.com/u/r/main/site/``. Targets on any other
    host come back unchanged, so applying the rewrite twice is a no-op.
    """
    if not target.startswith(GITHUB_PREFIX):
        return target
    rewritten = RAW_GITHUB_PREFIX + target[len(GITHUB_PREFIX):]
    rewritten = rewritten.replace("/blob/", "/", 1)
    return rewritten.rstrip("/") + "/"


def _require(**values: Optional[str]) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise InvalidInput(f"Missing required fields: {', '.join(missing)}")


def _require_tag(tag: str) -> None:
    if not is_reserved_tag(tag):
        raise InvalidTag(f"Invalid tag {tag!r}. Must be one of: {', '.join(RESERVED_TAGS)}")


def _check_metadata(title: Optional[str], description: Optional[str]) -> None:
    if title is not None and len(title) > TITLE_MAX_LENGTH:
        raise InvalidInput(f"Title must be at most {TITLE_MAX_LENGTH} characters")
    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        raise InvalidInput(f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters")


def _check_target(target: str) -> None:
    if not is_acceptable_target(target):
        raise InvalidInput("Target must be a valid HTTPS URL or IP address")


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class RegistrarService:
    """Registry operations with secret-key ownership and an audit trail."""

    def __init__(
        self,
        store: NameStore,
        audit: Optional[AuditLog] = None,
        pbkdf2_iterations: int = 200_000,
    ) -> None:
        self.store = store
        self.audit = audit
        self.pbkdf2_iterations = pbkdf2_iterations

    @classmethod
    def open(cls, settings: Settings) -> "RegistrarService":
        """Open the store and audit log under ``settings.data_dir``.

        Raises :class:`~virt.registrar.errors.StorageUnavailable` when the
        store cannot be opened.
        """
        store = NameStore(settings.data_dir)
        audit = AuditLog(settings.data_dir / "audit")
        return cls(store, audit, pbkdf2_iterations=settings.pbkdf2_iterations)

    def close(self) -> None:
        """Persist pending access times."""
        self.store.flush()

    def _audit(self, action: str, name: str, error: Optional[RegistrarError] = None, **details) -> None:
        # Called after the mutation is committed; write failures are only logged.
        if self.audit is None:
            return
        try:
            self.audit.record(
                action,
                name,
                success=error is None,
                reason=error.code if error else "",
                details=details,
            )
        except OSError:
            logger.exception("Could not write audit entry for %s of %s", action, name)

    # -- queries -------------------------------------------------------------

    def check(self, label: Optional[str], tag: Optional[str]) -> CheckResult:
        """Report whether ``label.tag`` is still free."""
        _require(label=label, tag=tag)
        _require_tag(tag)
        label = label.lower()
        available = not self.store.exists(label, tag)
        return CheckResult(
            label=label,
            tag=tag,
            available=available,
            message="Name is available" if available else "Name is already registered",
        )

    def lookup(self, label: Optional[str], tag: Optional[str]) -> LookupResult:
        """Resolve ``label.tag`` to its target and refresh ``last_accessed``."""
        _require(label=label, tag=tag)
        _require_tag(tag)
        label = label.lower()
        record = self.store.touch(label, tag)
        if record is None:
            raise NotFound(f"{label}.{tag} is not registered")

        return LookupResult(
            label=record.label,
            tag=record.tag.value,
            target=record.target,
            raw_base=raw_base_for(record.target),
            title=record.title,
            description=record.description,
            verified=record.verified,
            created_at=record.created_at,
            last_accessed=record.last_accessed,
        )

    def search(self, query: Optional[str], limit: int = SEARCH_LIMIT) -> list[SearchHit]:
        """Search titles, keywords, descriptions and body text."""
        if not query or not query.strip():
            raise InvalidInput("Query parameter required")
        limit = max(1, min(limit, SEARCH_LIMIT))
        return [
            SearchHit(label=r.label, tag=r.tag.value, title=r.title, description=r.description)
            for r in self.store.search(query, limit=limit)
        ]

    # -- mutations -----------------------------------------------------------

    def register(self, request: RegisterRequest) -> RegisterResult:
        """Create a new name and return its secret key, once."""
        _require(label=request.label, tag=request.tag, target=request.target)
        _require_tag(request.tag)
        label = request.label.lower()
        if not is_valid_label(label):
            raise InvalidInput("Label must be 3-63 characters of a-z, 0-9 and '-'")
        _check_target(request.target)
        _check_metadata(request.title, request.description)

        secret_key = generate_secret()
        record = NameRecord(
            label=label,
            tag=request.tag,
            target=request.target,
            secret_digest=hash_secret(secret_key, self.pbkdf2_iterations),
            title=request.title or "",
            description=request.description or "",
            keywords=list(request.keywords or []),
            body_text=request.body_text or "",
        )

        try:
            self.store.insert(record)
        except Conflict as exc:
            self._audit("register", record.name, exc)
            raise

        self._audit("register", record.name, target=record.target)
        logger.info("Registered %s -> %s", record.name, record.target)
        return RegisterResult(name=record.name, secret_key=secret_key)

    def update(self, request: UpdateRequest) -> UpdateResult:
        """Apply the provided fields to an owned name.

        ``None`` leaves a field untouched; an empty title or description
        clears it. An empty target is ignored.
        """
        _require(label=request.label, tag=request.tag, secret=request.secret)
        _require_tag(request.tag)
        label = request.label.lower()
        name = f"{label}.{request.tag}"
        if request.target:
            _check_target(request.target)
        _check_metadata(request.title, request.description)

        with self.store.transaction(label, request.tag) as record:
            self._authorize("update", name, record, request.secret)
            changed = []
            if request.target:
                record.target = request.target
                changed.append("target")
            if request.title is not None:
                record.title = request.title
                changed.append("title")
            if request.description is not None:
                record.description = request.description
                changed.append("description")
            record.touch()
            self.store.save(record)

        self._audit("update", name, fields=changed)
        logger.info("Updated %s (%s)", name, ", ".join(changed) or "no fields")
        return UpdateResult(
            label=record.label,
            tag=record.tag.value,
            target=record.target,
            title=record.title,
            description=record.description,
            last_accessed=record.last_accessed,
        )

    def delete(self, request: DeleteRequest) -> None:
        """Permanently remove an owned name."""
        _require(label=request.label, tag=request.tag, secret=request.secret)
        _require_tag(request.tag)
        label = request.label.lower()
        name = f"{label}.{request.tag}"

        with self.store.transaction(label, request.tag) as record:
            self._authorize("delete", name, record, request.secret)
            self.store.remove(record.id)

        self._audit("delete", name)
        logger.info("Deleted %s", name)

    def _authorize(self, action: str, name: str, record: Optional[NameRecord], secret: str) -> None:
        if record is None:
            error: RegistrarError = NotFound(f"{name} is not registered")
        elif not verify_secret(secret, record.secret_digest):
            error = Unauthorized("Invalid secret key")
        else:
            return
        self._audit(action, name, error)
        logger.warning("Rejected %s of %s: %s", action, name, error.code)
        raise error
