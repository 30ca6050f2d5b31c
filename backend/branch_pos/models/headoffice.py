from __future__ import annotations

from ..extensions import db
from ..constants import DatabaseEngine, SslMode
from ..errors import BranchConnectionError, ConnectionErrorKind
from ..services.branch_config import BranchConfig
from branch_pos.time_utils import to_utc_z


class Branch(db.Model):
    """
    Head-office registry entry for one retail branch.

    ISOLATION: Each branch owns its own database, possibly on a different
    engine. This row only describes how to reach it; no branch business data
    lives in the head-office database.

    CONNECTION FIELDS: engine, db_server, db_port, db_name, db_username,
    db_password, db_additional_params, ssl_mode, trust_server_certificate.
    Editing any of them must go through branch_service.update_branch_connection
    so cached handles are invalidated.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_branches_code"),
        db.Index("ix_branches_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Short code used in invoice numbers (e.g., "B001")
    code = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    name_ar = db.Column(db.String(200), nullable=True)

    engine = db.Column(db.String(16), nullable=False, default=DatabaseEngine.SQLITE.value)
    db_server = db.Column(db.String(255), nullable=True)
    db_port = db.Column(db.Integer, nullable=True)
    db_name = db.Column(db.String(100), nullable=True)
    db_username = db.Column(db.String(100), nullable=True)
    db_password = db.Column(db.String(255), nullable=True)
    db_additional_params = db.Column(db.String(500), nullable=True)

    # TLS: ssl_mode for PostgreSQL/MySQL, trust_server_certificate for SQL Server
    ssl_mode = db.Column(db.String(16), nullable=False, default=SslMode.DISABLE.value)
    trust_server_certificate = db.Column(db.Boolean, nullable=False, default=False)

    # Basis points (e.g., 1500 = 15%)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="USD")
    language = db.Column(db.String(10), nullable=False, default="en")
    timezone = db.Column(db.String(100), nullable=False, default="UTC")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r} engine={self.engine}>"

    def to_config(self) -> BranchConfig:
        """Snapshot for the router. Raises BranchConnectionError(UNSUPPORTED_ENGINE) for unknown values."""
        try:
            engine = DatabaseEngine(self.engine)
            ssl_mode = SslMode(self.ssl_mode)
        except ValueError as exc:
            raise BranchConnectionError(
                ConnectionErrorKind.UNSUPPORTED_ENGINE,
                f"Branch {self.code} has an unsupported connection setting: {exc}",
                details={"branch_id": self.id, "engine": self.engine, "ssl_mode": self.ssl_mode},
            ) from exc

        return BranchConfig(
            branch_id=self.id,
            code=self.code,
            engine=engine,
            server=self.db_server,
            port=self.db_port,
            database=self.db_name,
            username=self.db_username,
            password=self.db_password,
            additional_params=self.db_additional_params,
            ssl_mode=ssl_mode,
            trust_server_certificate=bool(self.trust_server_certificate),
            tax_rate_bps=self.tax_rate_bps or 0,
            currency=self.currency,
        )

    def to_dict(self) -> dict:
        # Credentials are never serialized
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "name_ar": self.name_ar,
            "engine": self.engine,
            "db_server": self.db_server,
            "db_port": self.db_port,
            "db_name": self.db_name,
            "db_username": self.db_username,
            "ssl_mode": self.ssl_mode,
            "trust_server_certificate": self.trust_server_certificate,
            "tax_rate_bps": self.tax_rate_bps,
            "currency": self.currency,
            "language": self.language,
            "timezone": self.timezone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
