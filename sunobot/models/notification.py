from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from sunobot.models.reminder import ReminderModel


class PermissionEnum(str, Enum):
    DEFAULT = "default"
    """User was never asked, no notification is sent."""
    DENIED = "denied"
    """User refused notifications."""
    GRANTED = "granted"
    """User accepted notifications."""


class PermissionModel(BaseModel):
    permission: PermissionEnum


class ReminderNotificationModel(BaseModel, frozen=True):
    body: str
    owner: str
    reminder_id: UUID
    title: str

    @classmethod
    def from_reminder(cls, reminder: ReminderModel) -> "ReminderNotificationModel":
        return cls(
            body=f"Dosage: {reminder.dosage or 'Not specified'}.",
            owner=reminder.owner,
            reminder_id=reminder.reminder_id,
            title=f"Time for your medicine: {reminder.medicine_name}",
        )

    def to_text(self) -> str:
        """
        Plain text rendering, for channels without a title (e.g. SMS).
        """
        return f"{self.title}\n{self.body}"
