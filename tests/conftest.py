import os
import shutil
import tempfile
from datetime import datetime, timezone

import pytest

from tagq.config import TagqConfig
from tagq.db import Database
from tagq.schema import SchemaSnapshot


def ms(day: str) -> int:
    """Epoch milliseconds for an ISO date (UTC midnight)."""
    moment = datetime.fromisoformat(day).replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


# Fixed "now" for relative dates
NOW = datetime(2025, 4, 25, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_dir():
    """Temporary directory removed after the test."""
    path = tempfile.mkdtemp(prefix="tagq_test_")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def clean_tagq_env(monkeypatch, temp_dir):
    """No TAGQ_* variables, an empty HOME, and an empty working directory."""
    for key in list(os.environ):
        if key.startswith("TAGQ_"):
            monkeypatch.delenv(key)
    home = os.path.join(temp_dir, "home")
    os.makedirs(home)
    monkeypatch.setenv("HOME", home)
    work = os.path.join(temp_dir, "work")
    os.makedirs(work)
    monkeypatch.chdir(work)
    return temp_dir


@pytest.fixture
def temp_db(temp_dir):
    """An empty database file."""
    return Database(path=os.path.join(temp_dir, "test.db"), config=TagqConfig())


@pytest.fixture
def contact_snapshot():
    """manager -> employee -> contact, built in memory."""
    snapshot = SchemaSnapshot()
    snapshot.add_tag("c", "contact")
    snapshot.add_field("c", "Email")
    snapshot.add_field("c", "Phone")
    snapshot.add_tag("e", "employee")
    snapshot.add_field("e", "Department")
    snapshot.add_field("e", "StartDate")
    snapshot.add_tag("m", "manager")
    snapshot.add_field("m", "Team")
    snapshot.add_parent("e", "c")
    snapshot.add_parent("m", "e")
    return snapshot


def _add_schema(db: Database):
    db.add_tag("todo-tag", "todo")
    for name in ("Status", "Due Date", "Item Count", "Is Urgent", "Notes"):
        db.add_tag_field("todo-tag", name)

    db.add_tag("meeting-tag", "meeting")
    db.add_tag_field("meeting-tag", "Notes")
    db.add_tag_field("meeting-tag", "Attendee Count")

    db.add_tag("contact-tag", "contact")
    db.add_tag_field("contact-tag", "Email")
    db.add_tag_field("contact-tag", "Phone")
    db.add_tag("employee-tag", "employee")
    db.add_tag_field("employee-tag", "Department")
    db.add_tag_field("employee-tag", "StartDate")
    db.add_tag("manager-tag", "manager")
    db.add_tag_field("manager-tag", "Team")
    db.add_tag_parent("employee-tag", "contact-tag")
    db.add_tag_parent("manager-tag", "employee-tag")


TODOS = [
    # id, name, created, fields
    ("t1", "Write report", "2025-01-10", {
        "Status": "Done", "Due Date": "2025-01-15", "Item Count": "3",
        "Is Urgent": "true", "Notes": "quarterly review draft",
    }),
    ("t2", "Fix bug", "2025-02-01", {
        "Status": "Done", "Due Date": "2025-02-10", "Item Count": "10",
        "Is Urgent": "false", "Notes": "login page crash",
    }),
    ("t3", "Plan sprint", "2025-02-15", {
        "Status": "In Progress", "Due Date": "2025-03-01", "Item Count": "5",
        "Is Urgent": "yes",
    }),
    ("t4", "Review PR", "2025-03-05", {
        "Status": "In Progress", "Due Date": "2025-03-03", "Item Count": "1",
        "Notes": "Quarterly numbers",
    }),
    ("t5", "Research", "2025-04-20", {
        "Status": "Backlog",
    }),
]


@pytest.fixture
def workspace_db(temp_db):
    """
    Database with five todos, one meeting, a manager and an employee.

    Todo Status values: Done, Done, In Progress, In Progress, Backlog.
    """
    db = temp_db
    _add_schema(db)

    for node_id, name, created, fields in TODOS:
        db.add_node(node_id, name, created=ms(created))
        db.apply_tag(node_id, "todo-tag")
        for field_name, value in fields.items():
            db.set_field(node_id, field_name, value)

    db.add_node("m1", "Standup", created=ms("2025-03-20"))
    db.apply_tag("m1", "meeting-tag")
    db.set_field("m1", "Notes", "quarterly planning")
    db.set_field("m1", "Attendee Count", "8")

    db.add_node("p1", "Alice", created=ms("2024-06-01"))
    db.apply_tag("p1", "manager-tag")
    db.set_field("p1", "Team", "Platform")
    db.set_field("p1", "Email", ["alice@example.com", "alice@work.example.com"])
    db.set_field("p1", "Department", "Engineering")

    db.add_node("p2", "Bob", created=ms("2024-07-01"))
    db.apply_tag("p2", "employee-tag")
    db.set_field("p2", "Email", "bob@example.org")
    db.set_field("p2", "Department", "Sales")

    # Untagged
    db.add_node("x1", "Loose note", created=ms("2025-01-01"))
    return db
