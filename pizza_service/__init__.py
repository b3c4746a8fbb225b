"""JWT Pizza service - Backend.

Core concepts:
- Users hold role assignments (admin, franchisee, diner). Franchisee roles are
  scoped to a single franchise.
- A session is an issued JWT whose signature segment is persisted in `auth_tokens`.
  The row's existence is what makes the session valid; logout deletes it.
- Orders snapshot menu prices at insert time.

See scripts/ for running the API and bootstrapping a database.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
