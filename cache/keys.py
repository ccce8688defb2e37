"""
cache/keys.py -- Key namespaces shared by every cache reader and writer.

Keys are "<entity>:<scope>:<id>" so one delete_prefix() call can drop every
derived listing for a user or a project. Keep builders here; a key spelled
inline in a use case is a key some invalidation path will miss.
"""

from __future__ import annotations


def user_profile(user_id: int) -> str:
    return f"user:profile:{user_id}"


USER_LISTINGS = "user:all:"


def user_listing() -> str:
    return f"{USER_LISTINGS}list"


def project(project_id: int) -> str:
    return f"project:{project_id}"


PROJECT_LISTINGS = "project:user:"


def project_listings_for(user_id: int) -> str:
    """Prefix covering every cached project listing computed for user_id."""
    return f"{PROJECT_LISTINGS}{user_id}:"


def project_listing(user_id: int, status: str | None = None, visibility: str | None = None) -> str:
    return f"{project_listings_for(user_id)}{status or 'all'}:{visibility or 'all'}"


def task(task_id: int) -> str:
    return f"task:{task_id}"


def task_listings_for(project_id: int) -> str:
    return f"task:project:{project_id}:"


def task_listing(project_id: int) -> str:
    return f"{task_listings_for(project_id)}all"
