# seed_demo.py
#
# Seeds a running library service over HTTP. Create the librarian first:
#   flask --app library_service.app create-librarian "Lena Librarian" \
#       librarian@example.com librarian-pass 5550000000
import os

import requests

BASE_URL = os.getenv("LIBRARY_BASE_URL", "http://localhost:5000")
LIBRARIAN_EMAIL = os.getenv("LIBRARIAN_EMAIL", "librarian@example.com")
LIBRARIAN_PASSWORD = os.getenv("LIBRARIAN_PASSWORD", "librarian-pass")

BOOKS = [
    {
        "isbn": "978-0132350884",
        "title": "Clean Code",
        "author": "Robert C. Martin",
        "genre": "technology",
        "publication_date": "2008-08-01",
    },
    {
        "isbn": "978-0201616224",
        "title": "The Pragmatic Programmer",
        "author": "Andrew Hunt, David Thomas",
        "genre": "technology",
        "publication_date": "1999-10-20",
    },
    {
        "isbn": "978-0441172719",
        "title": "Dune",
        "author": "Frank Herbert",
        "genre": "fiction",
        "publication_date": "1965-08-01",
    },
    {
        "isbn": "978-0062316097",
        "title": "Sapiens",
        "author": "Yuval Noah Harari",
        "genre": "history",
        "publication_date": "2015-02-10",
    },
    {
        "isbn": "978-0547928227",
        "title": "The Hobbit",
        "author": "J.R.R. Tolkien",
        "genre": "fantasy",
        "publication_date": "1937-09-21",
    },
    {
        "isbn": "978-1501127625",
        "title": "Steve Jobs",
        "author": "Walter Isaacson",
        "genre": "biography",
        "publication_date": "2011-10-24",
    },
    {
        "isbn": "978-0553380163",
        "title": "A Brief History of Time",
        "author": "Stephen Hawking",
        "genre": "science",
        "publication_date": "1988-04-01",
    },
]

PATRONS = [
    {
        "name": "Alice Reader",
        "email": "alice@example.com",
        "password": "alice-pass",
        "phone": "5551112222",
    },
    {
        "name": "Bob Borrower",
        "email": "bob@example.com",
        "password": "bob-pass-123",
        "phone": "5553334444",
    },
]


def check_service(url):
    """Hit /api/health and return True/False."""
    health_url = f"{url.rstrip('/')}/api/health"
    try:
        r = requests.get(health_url, timeout=3)
        print(f"[CHECK] {health_url} -> {r.status_code}")
        return r.ok
    except requests.RequestException as e:
        print(f"[ERROR] service not reachable at {health_url}: {e}")
        return False


def login(email, password):
    resp = requests.post(
        f"{BASE_URL}/api/v1/auth/authenticate",
        json={"email": email, "password": password},
        timeout=5,
    )
    if not resp.ok:
        print(f"  login {email}: {resp.status_code} {resp.text.strip()}")
        return None
    return resp.json()["token"]


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


def seed_books(token):
    print("\n== Seeding books ==")
    book_ids = []
    for i, book in enumerate(BOOKS, start=1):
        payload = dict(book)
        # vary copies per title to make availability more interesting
        payload["total_copies"] = 1 + (i % 3)  # 1-3 copies

        try:
            resp = requests.post(
                f"{BASE_URL}/api/books",
                headers=auth_headers(token),
                json=payload,
                timeout=5,
            )
            print(f"  [{i:02}] {book['title']} -> {resp.status_code}")
            if resp.ok:
                book_ids.append(resp.json()["id"])
            else:
                print(f"      Body: {resp.text.strip()}")
        except requests.RequestException as e:
            print(f"  [{i:02}] {book['title']} -> FAILED: {e}")
    return book_ids


def register_patrons():
    print("\n== Registering patrons ==")
    tokens = []
    for p in PATRONS:
        try:
            resp = requests.post(f"{BASE_URL}/api/v1/auth/register", json=p, timeout=5)
            print(f"  {p['email']}: {resp.status_code}")
            if resp.ok:
                tokens.append(resp.json()["token"])
            else:
                # already registered on a previous run
                token = login(p["email"], p["password"])
                if token:
                    tokens.append(token)
        except requests.RequestException as e:
            print(f"  {p['email']}: FAILED -> {e}")
    return tokens


def borrow(token, book_id):
    resp = requests.post(
        f"{BASE_URL}/api/borrowings",
        headers=auth_headers(token),
        json={"book_id": book_id},
        timeout=5,
    )
    print(f"  borrow book {book_id} -> {resp.status_code} {resp.text.strip()}")


def main():
    print("Checking library service...")
    if not check_service(BASE_URL):
        print(f"\nLibrary service is not reachable at {BASE_URL}.")
        return

    librarian_token = login(LIBRARIAN_EMAIL, LIBRARIAN_PASSWORD)
    if not librarian_token:
        print("\nCould not log in as librarian. Run the create-librarian command first.")
        return

    book_ids = seed_books(librarian_token)
    patron_tokens = register_patrons()

    print("\n== Sample borrowings ==")
    for token, book_id in zip(patron_tokens, book_ids):
        borrow(token, book_id)

    print("\nDone.")
    print("Try hitting (with a Bearer token):")
    print(f"  {BASE_URL}/api/books/availability")
    print(f"  {BASE_URL}/api/borrowings/overdue-books/report")


if __name__ == "__main__":
    main()
