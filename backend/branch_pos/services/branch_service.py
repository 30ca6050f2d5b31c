"""
Branch Registry Service: head-office branch records and the config-changed event.

The router never reads the Branch table directly. It asks the provider for an
immutable BranchConfig and subscribes to the config-changed event, which this
service fires whenever a connection field of a branch is edited.

INVARIANTS:
1. Connection edits go through update_branch_connection() so subscribers
   (the router) hear about them.
2. Inactive branches are reported as not found; no handle is built for them.
3. Callbacks fire after the head-office commit, never before.

USAGE:
    from branch_pos.services import branch_service

    branch = branch_service.create_branch(code="B001", name="Downtown")
    branch_service.update_branch_connection(branch.id, engine="postgresql", db_server="10.0.0.5")
"""

from __future__ import annotations

import logging
import threading

from ..extensions import db
from ..constants import DatabaseEngine, SslMode
from ..errors import NotFoundError, NotFoundKind, ValidationError
from ..models import Branch
from .branch_config import BranchConfig, ConfigChangedCallback, parse_additional_params

logger = logging.getLogger(__name__)


CONNECTION_FIELDS = (
    "engine",
    "db_server",
    "db_port",
    "db_name",
    "db_username",
    "db_password",
    "db_additional_params",
    "ssl_mode",
    "trust_server_certificate",
)

SETTINGS_FIELDS = ("name", "name_ar", "tax_rate_bps", "currency", "language", "timezone", "is_active")


class HeadOfficeBranchConfigProvider:
    """BranchConfigProvider backed by the head-office Branch table."""

    def __init__(self):
        self._callbacks: list[ConfigChangedCallback] = []
        self._lock = threading.Lock()

    def get_config(self, branch_id: int) -> BranchConfig:
        branch = db.session.get(Branch, branch_id)
        if branch is None or not branch.is_active:
            raise NotFoundError(NotFoundKind.BRANCH, details={"branch_id": branch_id})
        return branch.to_config()

    def subscribe(self, callback: ConfigChangedCallback) -> None:
        with self._lock:
            if callback not in self._callbacks:
                self._callbacks.append(callback)

    def notify_config_changed(self, branch_id: int) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback(branch_id)


config_provider = HeadOfficeBranchConfigProvider()


def _validate_connection_values(values: dict) -> dict:
    errors = {}
    cleaned = dict(values)

    if "engine" in values:
        try:
            cleaned["engine"] = DatabaseEngine(values["engine"]).value
        except ValueError:
            errors["engine"] = f"must be one of {[e.value for e in DatabaseEngine]}"

    if "ssl_mode" in values:
        try:
            cleaned["ssl_mode"] = SslMode(values["ssl_mode"]).value
        except ValueError:
            errors["ssl_mode"] = f"must be one of {[m.value for m in SslMode]}"

    port = values.get("db_port")
    if port is not None:
        if isinstance(port, bool) or not isinstance(port, int) or not (0 < port < 65536):
            errors["db_port"] = "must be an integer between 1 and 65535"

    if values.get("db_additional_params"):
        try:
            parse_additional_params(values["db_additional_params"])
        except ValueError as exc:
            errors["db_additional_params"] = str(exc)

    if errors:
        raise ValidationError("Invalid branch connection settings", details=errors)
    return cleaned


def _validate_settings_values(values: dict) -> None:
    errors = {}
    rate = values.get("tax_rate_bps")
    if rate is not None and (isinstance(rate, bool) or not isinstance(rate, int) or not (0 <= rate <= 10000)):
        errors["tax_rate_bps"] = "must be an integer between 0 and 10000"
    if "name" in values and not (values["name"] or "").strip():
        errors["name"] = "is required"
    if errors:
        raise ValidationError("Invalid branch settings", details=errors)


def get_branch(branch_id: int) -> Branch:
    branch = db.session.get(Branch, branch_id)
    if branch is None:
        raise NotFoundError(NotFoundKind.BRANCH, details={"branch_id": branch_id})
    return branch


def list_branches(*, include_inactive: bool = False) -> list[Branch]:
    query = db.session.query(Branch)
    if not include_inactive:
        query = query.filter(Branch.is_active.is_(True))
    return query.order_by(Branch.code.asc()).all()


def create_branch(*, code: str, name: str, **fields) -> Branch:
    """
    Register a new branch. Connection fields default to a SQLite database under
    BRANCH_DATA_DIR.
    """
    code = (code or "").strip()
    if not code:
        raise ValidationError("Branch code is required", details={"code": "is required"})
    unknown = set(fields) - set(CONNECTION_FIELDS) - set(SETTINGS_FIELDS)
    if unknown:
        raise ValidationError("Unknown branch fields", details={"fields": sorted(unknown)})

    values = _validate_connection_values({k: v for k, v in fields.items() if k in CONNECTION_FIELDS})
    settings = {k: v for k, v in fields.items() if k in SETTINGS_FIELDS}
    _validate_settings_values({"name": name, **settings})

    if db.session.query(Branch.id).filter_by(code=code).first() is not None:
        raise ValidationError("Branch code already exists", details={"code": code})

    branch = Branch(code=code, name=name.strip(), **values, **settings)
    db.session.add(branch)
    db.session.commit()
    logger.info("Registered branch %s (%s, %s)", branch.id, branch.code, branch.engine)
    return branch


def update_branch_connection(branch_id: int, **changes) -> Branch:
    """
    Edit a branch's connection settings and fire the config-changed event.

    The event is fired only when a value actually changed.
    """
    unknown = set(changes) - set(CONNECTION_FIELDS)
    if unknown:
        raise ValidationError("Unknown connection fields", details={"fields": sorted(unknown)})

    values = _validate_connection_values(changes)
    branch = get_branch(branch_id)

    changed = False
    for key, value in values.items():
        if getattr(branch, key) != value:
            setattr(branch, key, value)
            changed = True

    if not changed:
        return branch

    db.session.commit()
    logger.info("Branch %s connection settings changed", branch_id)
    config_provider.notify_config_changed(branch_id)
    return branch


def update_branch_settings(branch_id: int, **changes) -> Branch:
    """Edit non-connection settings (tax rate, currency, locale). Cached handles stay valid."""
    unknown = set(changes) - set(SETTINGS_FIELDS)
    if unknown:
        raise ValidationError("Unknown branch settings", details={"fields": sorted(unknown)})
    _validate_settings_values(changes)

    branch = get_branch(branch_id)
    for key, value in changes.items():
        setattr(branch, key, value)
    db.session.commit()

    if changes.get("is_active") is False:
        # A deactivated branch must not keep serving through a cached handle
        config_provider.notify_config_changed(branch_id)
    return branch
