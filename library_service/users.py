import logging

from sqlalchemy import select

from .auth import hash_password
from .borrowing import load_librarian, load_user
from .errors import (
    DuplicateEmail,
    NotAuthorized,
    NotLibrarian,
    RoleChangeNotAllowed,
    UserHasActiveBorrowings,
    UserValidationError,
)
from .models import Role, User
from .records import UserRecord
from .store import (
    DEFAULT_RETRIES,
    count_active_borrowings,
    count_borrowings_for_user,
    run_in_transaction,
)
from .validation import clean_user_update, validate_registration

logger = logging.getLogger(__name__)


def _normalize_email(email):
    return str(email).strip().lower()


class UserService:
    def __init__(self, session_factory, retries=DEFAULT_RETRIES):
        self.session_factory = session_factory
        self.retries = retries

    def _run(self, work):
        return run_in_transaction(
            self.session_factory, work, retries=self.retries, conflict_message="Email already exists"
        )

    def _insert(self, session, data, role):
        email = _normalize_email(data["email"])
        taken = session.execute(select(User.id).where(User.email == email)).scalar_one_or_none()
        if taken is not None:
            raise DuplicateEmail("Email already exists")
        user = User(
            name=str(data["name"]).strip(),
            email=email,
            password_hash=hash_password(str(data["password"])),
            phone=str(data["phone"]).strip(),
            role=role,
        )
        session.add(user)
        session.flush()
        return UserRecord.from_model(user)

    def register_patron(self, data):
        validate_registration(data)
        record = self._run(lambda session: self._insert(session, data, Role.PATRON))
        logger.info("Registered patron %s", record.id)
        return record

    def create_librarian(self, data):
        """Bootstrap path for the first librarian (used by the CLI)."""
        validate_registration(data)
        record = self._run(lambda session: self._insert(session, data, Role.LIBRARIAN))
        logger.info("Created librarian %s", record.id)
        return record

    def create_user(self, actor_id, data):
        validate_registration(data)
        role = str(data.get("role") or Role.PATRON).strip().upper()
        if role not in Role.ALL:
            raise UserValidationError(f"Invalid role: {data.get('role')}")

        def work(session):
            load_librarian(session, actor_id, "Only librarians can create users")
            return self._insert(session, data, role)

        record = self._run(work)
        logger.info("Librarian %s created %s %s", actor_id, role, record.id)
        return record

    def find_credentials(self, email):
        """Return (UserRecord, password_hash) or (None, None)."""

        def work(session):
            user = session.execute(
                select(User).where(User.email == _normalize_email(email))
            ).scalar_one_or_none()
            if user is None:
                return None, None
            return UserRecord.from_model(user), user.password_hash

        return self._run(work)

    def _check_access(self, actor, user_id):
        if actor.id != user_id and actor.role != Role.LIBRARIAN:
            raise NotAuthorized("You can only access your own profile")

    def get_user(self, actor_id, user_id):
        def work(session):
            actor = load_user(session, actor_id)
            self._check_access(actor, user_id)
            return UserRecord.from_model(load_user(session, user_id))

        return self._run(work)

    def update_user(self, actor_id, user_id, data):
        changes = clean_user_update(data)

        def work(session):
            actor = load_user(session, actor_id)
            self._check_access(actor, user_id)
            user = load_user(session, user_id)

            role = changes.pop("role", None)
            if role is not None and role != user.role:
                if actor.role != Role.LIBRARIAN:
                    raise NotLibrarian("Only librarians can change roles")
                if role == Role.LIBRARIAN and count_borrowings_for_user(session, user.id) > 0:
                    raise RoleChangeNotAllowed(
                        "A user with borrowing records cannot become a librarian"
                    )
                user.role = role

            email = changes.pop("email", None)
            if email is not None:
                email = _normalize_email(email)
                if email != user.email:
                    taken = session.execute(
                        select(User.id).where(User.email == email)
                    ).scalar_one_or_none()
                    if taken is not None:
                        raise DuplicateEmail("Email already exists")
                    user.email = email

            password = changes.pop("password", None)
            if password is not None:
                user.password_hash = hash_password(password)

            for field, value in changes.items():
                setattr(user, field, value)

            session.flush()
            return UserRecord.from_model(user)

        record = self._run(work)
        logger.info("User %s updated by %s", record.id, actor_id)
        return record

    def delete_user(self, actor_id, user_id):
        def work(session):
            load_librarian(session, actor_id, "Only librarians can delete users")
            user = load_user(session, user_id)
            if count_active_borrowings(session, user.id) > 0:
                raise UserHasActiveBorrowings("User has active borrowings and cannot be deleted")
            session.delete(user)

        self._run(work)
        logger.info("User %s deleted by %s", user_id, actor_id)
