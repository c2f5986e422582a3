"""Pydantic schemas for the bundled searchable record types."""

from pydantic import BaseModel, Field


class Post(BaseModel):
    """Blog-style post record."""

    id: int
    title: str = Field(min_length=1, max_length=200)
    body: str = ""


class Person(BaseModel):
    """Person profile record."""

    id: int
    name: str = Field(min_length=1, max_length=200)
    biography: str = ""
    email: str | None = None


def project_post(post: Post) -> dict[str, str]:
    """Posts are indexed by their own title and body."""
    return {"title": post.title, "body": post.body}


def project_person(person: Person) -> dict[str, str]:
    """People are indexed by name and biography; email is not searchable."""
    return {"title": person.name, "body": person.biography}
