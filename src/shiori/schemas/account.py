"""Pydantic schemas for accounts."""
from pydantic import BaseModel, ConfigDict, Field, model_validator


class AccountConfig(BaseModel):
    """UI preferences stored as JSON on the account row."""

    model_config = ConfigDict(extra="ignore")

    show_id: bool = False
    list_mode: bool = False
    hide_thumbnail: bool = False
    hide_excerpt: bool = False
    theme: str = "follow"
    keep_metadata: bool = False
    use_archive: bool = False
    create_ebook: bool = False
    make_public: bool = False


class AccountDTO(BaseModel):
    """Account as returned to clients. The password hash never leaves the store."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    owner: bool = False
    config: AccountConfig = Field(default_factory=AccountConfig)


class AccountCreate(BaseModel):
    """Schema for creating an account (admin only)."""

    username: str = ""
    password: str = ""
    owner: bool = False
    config: AccountConfig | None = None


class AccountUpdate(BaseModel):
    """Partial update of an account (admin only). At least one field is required."""

    username: str | None = None
    password: str | None = None
    owner: bool | None = None
    config: AccountConfig | None = None

    @model_validator(mode="after")
    def require_change(self) -> "AccountUpdate":
        """Reject empty updates."""
        if self.model_fields_set.isdisjoint({"username", "password", "owner", "config"}):
            raise ValueError("no fields to update")
        return self


class AccountSelfUpdate(BaseModel):
    """Update of the caller's own account; changing the password needs the old one."""

    old_password: str | None = None
    new_password: str | None = None
    config: AccountConfig | None = None

    @model_validator(mode="after")
    def require_old_password(self) -> "AccountSelfUpdate":
        """A new password must be accompanied by the current one."""
        if self.new_password and not self.old_password:
            raise ValueError("old_password is required to change the password")
        return self
