"""Shared exceptions for service layer operations."""


class NotFoundError(Exception):
    """Raised when a requested row does not exist."""

    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message)


class AlreadyExistsError(Exception):
    """Raised when a create or rename would violate a uniqueness constraint."""

    def __init__(self, message: str = "Already exists") -> None:
        super().__init__(message)


class ValidationError(Exception):
    """
    Raised when caller-supplied data is invalid.

    `errors` maps field names to messages and is surfaced to HTTP clients as
    `error_params`.
    """

    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        self.errors = errors or {}
        super().__init__(message)


class UnauthorizedError(Exception):
    """Raised when credentials or a token are missing or invalid."""

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class BookmarkNotFoundError(NotFoundError):
    """Raised when a bookmark id or URL is unknown."""

    def __init__(self, bookmark_id: int | None = None, url: str | None = None) -> None:
        self.bookmark_id = bookmark_id
        self.url = url
        super().__init__("Bookmark not found")


class BookmarkAlreadyExistsError(AlreadyExistsError):
    """Raised when creating a bookmark whose canonical URL is already stored."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"Bookmark with URL '{url}' already exists")


class TagNotFoundError(NotFoundError):
    """Raised when a tag id is unknown."""

    def __init__(self, tag_id: int | None = None, tag_ids: list[int] | None = None) -> None:
        self.tag_id = tag_id
        self.tag_ids = tag_ids or ([] if tag_id is None else [tag_id])
        super().__init__("Tag not found")


class TagAlreadyExistsError(AlreadyExistsError):
    """Raised when creating or renaming a tag to a name that already exists."""

    def __init__(self, tag_name: str) -> None:
        self.tag_name = tag_name
        super().__init__(f"Tag '{tag_name}' already exists")


class AccountNotFoundError(NotFoundError):
    """Raised when an account id or username is unknown."""

    def __init__(self, account_id: int | None = None, username: str | None = None) -> None:
        self.account_id = account_id
        self.username = username
        super().__init__("Account not found")


class AccountAlreadyExistsError(AlreadyExistsError):
    """Raised when creating or renaming an account to a taken username."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"Username '{username}' already exists")


class InvalidCredentialsError(UnauthorizedError):
    """Raised when a username/password pair does not match."""

    def __init__(self) -> None:
        super().__init__("Invalid username or password")


class InvalidURLError(ValidationError):
    """Raised when a URL cannot be canonicalized (missing scheme or host)."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        super().__init__(f"Invalid URL '{url}': {reason}", {"url": reason})
