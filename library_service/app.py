import os
import logging
from functools import wraps

import click
from flask import Flask, Response, g, jsonify, request
from flask_cors import CORS

from .auth import AuthService, TokenService
from .borrowing import BorrowingService
from .catalog import BookService
from .config import Config
from .errors import AuthenticationError, LibraryError, StoreError, ValidationError
from .overdue import OverdueTracker
from .store import create_session_factory, create_store_engine
from .users import UserService

# ---------------------------------------------------------
# Logging
# ---------------------------------------------------------
logging.basicConfig(level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# Flask + DB setup
# ---------------------------------------------------------

app = Flask(__name__)
app.config.from_object(Config)
CORS(app)

engine = create_store_engine(
    app.config["SQLALCHEMY_DATABASE_URI"], echo=app.config["SQLALCHEMY_ECHO"]
)
# Creates tables if not present
SessionLocal = create_session_factory(engine)

retries = app.config["STORE_RETRIES"]
tokens = TokenService(
    app.config["JWT_SECRET"],
    algorithm=app.config["JWT_ALGORITHM"],
    exp_minutes=app.config["JWT_EXP_MINUTES"],
)
user_service = UserService(SessionLocal, retries=retries)
auth_service = AuthService(user_service, tokens)
book_service = BookService(SessionLocal, retries=retries)
borrowing_service = BorrowingService(
    SessionLocal,
    loan_period_days=app.config["LOAN_PERIOD_DAYS"],
    max_active_borrowings=app.config["MAX_ACTIVE_BORROWINGS"],
    retries=retries,
)
overdue_tracker = OverdueTracker(SessionLocal, retries=retries)


# ---------------------------------------------------------
# Helpers
# ---------------------------------------------------------

def require_auth(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            raise AuthenticationError("Authentication required")
        g.user_id = tokens.decode_token(header[len("Bearer "):].strip())
        return func(*args, **kwargs)

    return wrapper


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_field(data, name):
    """Optional integer from a JSON body; None when absent."""
    value = data.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


@app.errorhandler(LibraryError)
def handle_library_error(exc):
    if isinstance(exc, StoreError):
        logger.error("Store error on %s %s: %s", request.method, request.path, exc.message)
        return jsonify({"message": "Internal server error", "code": exc.code}), exc.status_code

    logger.warning("%s on %s %s: %s", exc.code, request.method, request.path, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


# ---------------------------------------------------------
# Health
# ---------------------------------------------------------

@app.get("/api/health")
def health_check():
    return jsonify({"status": "ok", "service": "library_service"}), 200


# ---------------------------------------------------------
# Authentication
# ---------------------------------------------------------

@app.post("/api/v1/auth/register")
def register():
    user, token = auth_service.register(json_body())
    return jsonify({"token": token, "user": user.to_dict()}), 201


@app.post("/api/v1/auth/authenticate")
def authenticate():
    data = json_body()
    token = auth_service.authenticate(data.get("email"), data.get("password"))
    return jsonify({"token": token})


# ---------------------------------------------------------
# Users
# ---------------------------------------------------------

@app.post("/api/users")
@require_auth
def create_user():
    user = user_service.create_user(g.user_id, json_body())
    return jsonify(user.to_dict()), 201


@app.get("/api/users/<int:user_id>")
@require_auth
def get_user(user_id):
    return jsonify(user_service.get_user(g.user_id, user_id).to_dict())


@app.put("/api/users/<int:user_id>")
@require_auth
def update_user(user_id):
    return jsonify(user_service.update_user(g.user_id, user_id, json_body()).to_dict())


@app.delete("/api/users/<int:user_id>")
@require_auth
def delete_user(user_id):
    user_service.delete_user(g.user_id, user_id)
    return "", 204


@app.get("/api/users/<int:user_id>/eligibility")
@require_auth
def user_eligibility(user_id):
    # same self-or-librarian access as the profile read
    user_service.get_user(g.user_id, user_id)
    eligible = borrowing_service.validator.is_eligible(user_id)
    return jsonify({"user_id": user_id, "eligible": eligible})


# ---------------------------------------------------------
# Books
# ---------------------------------------------------------

@app.post("/api/books")
@require_auth
def add_book():
    book = book_service.add_book(g.user_id, json_body())
    return jsonify(book.to_dict()), 201


@app.get("/api/books/search")
@require_auth
def search_books():
    try:
        page = int(request.args.get("page", 0))
        size = int(request.args.get("size", 10))
    except ValueError:
        raise ValidationError("page and size must be integers")

    result = book_service.search_books(
        title=request.args.get("title"),
        author=request.args.get("author"),
        isbn=request.args.get("isbn"),
        genre=request.args.get("genre"),
        page=page,
        size=size,
    )
    result["content"] = [b.to_dict() for b in result["content"]]
    return jsonify(result)


@app.get("/api/books/availability")
@require_auth
def book_availability():
    return jsonify(book_service.availability_snapshot())


@app.get("/api/books/<int:book_id>")
@require_auth
def get_book(book_id):
    return jsonify(book_service.get_book(book_id).to_dict())


@app.put("/api/books/<int:book_id>")
@require_auth
def update_book(book_id):
    return jsonify(book_service.update_book(g.user_id, book_id, json_body()).to_dict())


@app.delete("/api/books/<int:book_id>")
@require_auth
def delete_book(book_id):
    book_service.delete_book(g.user_id, book_id)
    return "", 204


# ---------------------------------------------------------
# Borrowings
# ---------------------------------------------------------

@app.post("/api/borrowings")
@require_auth
def borrow_book():
    book_id = int_field(json_body(), "book_id")
    borrowing = borrowing_service.borrow(g.user_id, book_id)
    return jsonify(borrowing.to_dict()), 201


@app.post("/api/borrowings/return")
@require_auth
def return_book():
    borrowing_id = int_field(json_body(), "borrowing_id")
    if borrowing_id is None:
        raise ValidationError("borrowing_id is required")
    borrowing = borrowing_service.return_book(g.user_id, borrowing_id)
    return jsonify(borrowing.to_dict())


@app.get("/api/borrowings/history")
@require_auth
def borrowing_history():
    history = borrowing_service.get_user_borrowing_history(g.user_id)
    return jsonify([b.to_dict() for b in history])


@app.get("/api/borrowings/history/all")
@require_auth
def all_borrowing_history():
    history = borrowing_service.get_all_borrowing_history(g.user_id)
    return jsonify([b.to_dict() for b in history])


@app.get("/api/borrowings/overdue-books")
@require_auth
def overdue_books():
    return jsonify([b.to_dict() for b in overdue_tracker.get_overdue_books()])


@app.get("/api/borrowings/overdue-books/report")
@require_auth
def overdue_report():
    report = overdue_tracker.generate_overdue_report(g.user_id)
    return Response(report, mimetype="text/plain")


# ---------------------------------------------------------
# CLI
# ---------------------------------------------------------

@app.cli.command("create-librarian")
@click.argument("name")
@click.argument("email")
@click.argument("password")
@click.argument("phone")
def create_librarian_command(name, email, password, phone):
    """Create a librarian account (there is no HTTP path to the first one)."""
    try:
        user = user_service.create_librarian(
            {"name": name, "email": email, "password": password, "phone": phone}
        )
    except LibraryError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"Created librarian {user.id} <{user.email}>")


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=True)
