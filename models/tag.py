from database import db


class TaskTag(db.Model):
    """Free-form label attached to a task.

    Tags are plain strings scoped to their task; filtering by tag joins on
    this table instead of scanning a serialized list.
    """

    __tablename__ = "task_tags"

    __table_args__ = (
        db.UniqueConstraint("task_id", "name", name="uq_task_tag_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("task.id"), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False, index=True)

    task = db.relationship("Task", back_populates="tag_links")

    def __repr__(self):
        return f"<TaskTag #{self.name}>"
