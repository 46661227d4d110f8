"""Pydantic models describing the spamsync runtime configuration."""
from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import field_validator, model_validator


MIN_BATCH_SIZE = 25
MIN_RECONNECT_MS = 300_000


class ValidationError(ValueError):
    """Raised when configuration data does not satisfy the schema."""


class ImapSettings(BaseModel):
    """Connection parameters for the tracked IMAP account.

    Unknown keys are ignored so configuration files written for other IMAP
    clients (``authTimeout``, ``tlsOptions`` ...) keep loading.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    host: str
    port: int = Field(default=993, gt=0, lt=65536)
    tls: bool = True
    user: str
    password: str = Field(validation_alias=AliasChoices("password", "credentials"))
    keepalive: bool = True
    reconnect_after_ms: int = Field(default=180_000, ge=0, alias="reconnectAfterMs")
    timeout: float = Field(default=60.0, gt=0)

    @property
    def reconnect_after_s(self) -> float:
        """Lease duration in seconds, never shorter than five minutes."""

        return max(MIN_RECONNECT_MS, self.reconnect_after_ms) / 1000


class PathsSettings(BaseModel):
    """Server-side mailbox paths for the three tracked roles."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    ham: str = ""
    spam: str = ""
    inbox: str = "INBOX"

    @model_validator(mode="after")
    def _require_paths(self) -> "PathsSettings":
        for role in ("ham", "spam", "inbox"):
            if not getattr(self, role).strip():
                raise ValidationError(f"paths.{role} must name a mailbox")
        return self


class SpamAssassinSettings(BaseModel):
    """Score thresholds, batch sizing and executables for SpamAssassin."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    min_spam_score: float = Field(default=5.0, alias="minSpamScore")
    max_ham_score: float = Field(default=2.5, alias="maxHamScore")
    batch_size: int = Field(default=250, alias="batchSize")
    spamc: str = "spamc"
    sa_learn: str = Field(default="sa-learn", alias="saLearn")

    @field_validator("batch_size")
    @classmethod
    def _clamp_batch_size(cls, value: int) -> int:
        return max(MIN_BATCH_SIZE, value)

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "SpamAssassinSettings":
        if self.min_spam_score <= self.max_ham_score:
            raise ValidationError("minSpamScore must be greater than maxHamScore")
        return self


class RuntimeConfig(BaseModel):
    """Root configuration loaded from ``config.json``.

    What:
      Immutable, fully-defaulted view of everything the daemon needs at
      startup.

    Why:
      Resolving defaults and checking invariants once, before any component is
      built, means a broken configuration aborts startup instead of surfacing
      as a failed round hours later.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    imap: ImapSettings
    paths: PathsSettings
    spamassassin: SpamAssassinSettings = Field(default_factory=SpamAssassinSettings)
    track_interval_ms: int = Field(default=20_000, ge=0, alias="trackIntervalMs")
    max_mail_size_in_bytes: int = Field(default=256_000, gt=0, alias="maxMailSizeInBytes")
    state_dir: str = Field(default="data", alias="stateDir")

    @property
    def track_interval_s(self) -> float:
        return self.track_interval_ms / 1000
