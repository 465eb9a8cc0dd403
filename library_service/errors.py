"""
Error taxonomy shared by every service.

Each error carries the HTTP status the API layer answers with and a stable
``code`` (the class name) so clients and tests can match on it.
"""


class LibraryError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    @property
    def code(self):
        return type(self).__name__

    def to_dict(self):
        return {"message": self.message, "code": self.code}


# ----------------- 400 -----------------

class ValidationError(LibraryError):
    status_code = 400


class MissingField(ValidationError):
    pass


class BookValidationError(ValidationError):
    EMPTY_TITLE = "Book title cannot be empty"
    EMPTY_AUTHOR = "Book author cannot be empty"
    EMPTY_ISBN = "ISBN cannot be empty"
    EMPTY_GENRE = "Genre must be specified"
    EMPTY_PUBLICATION_DATE = "Publication date must be provided"
    NEGATIVE_COPIES = "Total copies cannot be negative"


class UserValidationError(ValidationError):
    EMPTY_NAME = "User name cannot be empty"
    EMPTY_EMAIL = "User email cannot be empty"
    INVALID_EMAIL_FORMAT = "User email format is invalid"
    EMPTY_PHONE = "User phone number cannot be empty"
    INVALID_PHONE = "Invalid phone number"
    SHORT_PASSWORD = "Password must be at least 8 characters"


class BorrowingValidationError(ValidationError):
    """A borrow request broke one of the lending rules."""


class RoleNotEligible(BorrowingValidationError):
    pass


class HasOverdueBooks(BorrowingValidationError):
    pass


class BorrowLimitReached(BorrowingValidationError):
    pass


class BookUnavailable(BorrowingValidationError):
    pass


class AlreadyBorrowed(BorrowingValidationError):
    pass


# ----------------- 401 / 403 -----------------

class AuthenticationError(LibraryError):
    status_code = 401


class AuthorizationError(LibraryError):
    status_code = 403


class NotAuthorized(AuthorizationError):
    pass


class NotLibrarian(AuthorizationError):
    pass


# ----------------- 404 -----------------

class NotFoundError(LibraryError):
    status_code = 404


class UserNotFound(NotFoundError):
    pass


class BookNotFound(NotFoundError):
    pass


class BorrowingNotFound(NotFoundError):
    pass


# ----------------- 409 -----------------

class ConflictError(LibraryError):
    status_code = 409


class DuplicateIsbn(ConflictError):
    pass


class DuplicateEmail(ConflictError):
    pass


class AlreadyReturned(ConflictError):
    pass


class BookInUse(ConflictError):
    pass


class UserHasActiveBorrowings(ConflictError):
    pass


class RoleChangeNotAllowed(ConflictError):
    pass


# ----------------- 500 -----------------

class StoreError(LibraryError):
    status_code = 500


class StoreUnavailable(StoreError):
    pass
