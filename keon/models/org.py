"""
KEON Task Manager
Organisation domain model.

Models:
    - Department: team a request targets; has an optional manager
    - Profile: acting user (identity comes from the upstream auth provider)
    - Category / Subcategory: request classification, subcategories point at
      a default process template
"""

from datetime import datetime, timezone

from keon.models import db


class Department(db.Model):
    """A team that receives requests and distributes their tasks."""

    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False, unique=True)
    manager_id = db.Column(
        db.Integer,
        db.ForeignKey("profiles.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "manager_id": self.manager_id,
        }

    def __repr__(self):
        return f"<Department {self.id}: {self.name}>"


class Profile(db.Model):
    """
    Application profile of an authenticated user.

    ``department_id`` drives department-level validation and the
    pending-assignment inbox; ``can_manage_templates`` grants template edits
    on templates created by someone else.
    """

    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True)
    display_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    can_manage_templates = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    department = db.relationship("Department", foreign_keys=[department_id])

    def to_dict(self):
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "department_id": self.department_id,
            "can_manage_templates": self.can_manage_templates,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Profile {self.id}: {self.display_name}>"


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)

    subcategories = db.relationship(
        "Subcategory", backref="category", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {"id": self.id, "name": self.name}


class Subcategory(db.Model):
    __tablename__ = "subcategories"

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(150), nullable=False)
    default_process_template_id = db.Column(
        db.Integer,
        db.ForeignKey("process_templates.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
        comment="Process template used when a request is filed under this subcategory",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "category_id": self.category_id,
            "name": self.name,
            "default_process_template_id": self.default_process_template_id,
        }
