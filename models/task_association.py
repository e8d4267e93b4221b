""" Many to Many associations between Tasks and Users

A Task can have several helpers and mentioned users
participants is the denormalized union used for access checks and fan-out:
creator, owner, helpers, mentions and every step owner.
"""
from sqlalchemy import Table, Column, Integer, ForeignKey
from database import db

task_helpers = Table(
    "task_helpers",
    db.Model.metadata,
    Column("task_id", Integer, ForeignKey("task.id"), primary_key=True),
    Column("user_id", Integer, ForeignKey("user.id"), primary_key=True),
)

task_mentions = Table(
    "task_mentions",
    db.Model.metadata,
    Column("task_id", Integer, ForeignKey("task.id"), primary_key=True),
    Column("user_id", Integer, ForeignKey("user.id"), primary_key=True),
)

task_participants = Table(
    "task_participants",
    db.Model.metadata,
    Column("task_id", Integer, ForeignKey("task.id"), primary_key=True),
    Column("user_id", Integer, ForeignKey("user.id"), primary_key=True),
)
