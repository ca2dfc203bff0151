"""Operators and the human tasks raised for changes we cannot push to Xero."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class OperatorRole(str, Enum):
    SUPERADMIN = "SUPERADMIN"
    FINANCE = "FINANCE"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    STAFF = "STAFF"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class Operator(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: Optional[str] = None
    role: str = Field(default=OperatorRole.STAFF.value, index=True)
    is_active: bool = True
    telegram_chat_id: Optional[int] = None


class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: str = ""
    priority: str = TaskPriority.MEDIUM.value
    status: str = Field(default=TaskStatus.TODO.value, index=True)
    due_date: Optional[datetime] = None
    assignee_id: Optional[int] = Field(default=None, foreign_key="operator.id")
    assigner_id: Optional[str] = None
    entity: Optional[str] = Field(default=None, index=True)  # LogEntity value
    log_id: Optional[str] = Field(default=None, foreign_key="synclog.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TaskNotification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    operator_id: int = Field(foreign_key="operator.id", index=True)
    task_id: int = Field(foreign_key="task.id")
    type: str = "TASK_ASSIGNED"
    message: str
    is_read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
