from typing import Optional
from datetime import datetime
from .utils import now_utc, new_id
from sqlmodel import SQLModel, Field


class Todo(SQLModel, table=True):
    """One row of the `todos` table.

    parent_id points at another todo; NULL means the todo is a root. It is a
    plain indexed column with no foreign key: a parent may be missing (the
    child then shows as a root) and descendants are deleted concurrently.
    The cascade helpers still delete children before their parent.
    """
    __tablename__ = 'todos'

    id: str = Field(default_factory=new_id, primary_key=True)
    text: str
    completed: bool = Field(default=False, index=True)
    # Free-form assignee name; not required to match an AssignableUser row.
    assigned_to: Optional[str] = Field(default=None, index=True)
    parent_id: Optional[str] = Field(default=None, index=True)
    # Name typed by whoever signed off the completion.
    signature: Optional[str] = None
    notes: Optional[str] = None
    # True for todos that live in an assignee's backlog rather than the main list.
    in_backlog: bool = Field(default=False, index=True)
    created_at: datetime | None = Field(default_factory=now_utc, index=True)


class AssignableUser(SQLModel, table=True):
    """Allowed-list of collaborator names offered for assignment."""
    __tablename__ = 'assignable_users'

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(sa_column_kwargs={"unique": True, "index": True})


class UserStatus(SQLModel, table=True):
    """Per-user "where I left off" note. user_name is the upsert conflict target."""
    __tablename__ = 'user_status'

    id: str = Field(default_factory=new_id, primary_key=True)
    user_name: str = Field(sa_column_kwargs={"unique": True, "index": True})
    status_text: str = ''
    updated_at: datetime | None = Field(default_factory=now_utc, index=True)


TABLES: dict[str, type[SQLModel]] = {
    'todos': Todo,
    'assignable_users': AssignableUser,
    'user_status': UserStatus,
}
