"""Pipeline outcome notifications."""

from .contract import NotificationChannel, NotificationsStage, build_pipeline_summary, pipeline_status

__all__ = ["NotificationChannel", "NotificationsStage", "build_pipeline_summary", "pipeline_status"]
