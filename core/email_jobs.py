"""
Email Processor — delivers email-queue jobs.

File paths on the job are read and attached as base64. Attached files are
deleted after a successful send, after the final failed attempt, or when an
admin removes the job, unless the job's metadata sets ``cleanup`` to false.
"""
from __future__ import annotations

import base64
import structlog
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from channels.email_sender import EmailSender
from core.errors import PermanentFailure
from job_queue.consumer import is_retryable
from job_queue.message_queue import QueueJob
from models.schemas import EmailAttachment, EmailJobData

logger = structlog.get_logger()

CONTENT_TYPES = {
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".csv": "text/csv",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".json": "application/json",
    ".zip": "application/zip",
}


def content_type_for(path: str) -> str:
    return CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def load_attachment(path: str) -> EmailAttachment:
    file = Path(path)
    if not file.exists():
        raise PermanentFailure(f"File not found: {path}")
    return EmailAttachment(
        filename=file.name,
        content=base64.b64encode(file.read_bytes()).decode("ascii"),
        content_type=content_type_for(path),
    )


def cleanup_files(paths: list[str]) -> int:
    removed = 0
    for path in paths:
        try:
            file = Path(path)
            if file.exists():
                file.unlink()
                removed += 1
                logger.info("report_file_removed", path=path)
        except OSError as e:
            logger.warning("report_file_cleanup_failed", path=path, error=str(e))
    return removed


def discard_job_files(job: QueueJob) -> int:
    """Delete the files of an email job dropped before delivery."""
    try:
        data = EmailJobData.model_validate(job.data)
    except ValidationError as e:
        logger.warning("email_job_files_unreadable", job_id=job.job_id, error=str(e))
        return 0
    if not data.file_paths or not data.metadata.cleanup:
        return 0
    return cleanup_files(data.file_paths)


class EmailProcessor:

    def __init__(self, sender: EmailSender):
        self.sender = sender

    async def __call__(self, job: QueueJob) -> dict[str, Any]:
        return await self.process(job)

    async def process(self, job: QueueJob) -> dict[str, Any]:
        data = EmailJobData.model_validate(job.data)
        logger.info("email_job_processing", job_id=job.job_id, type=data.type.value,
                    recipients=len(data.to))
        try:
            attachments = list(data.attachments)
            attachments.extend(load_attachment(p) for p in data.file_paths)
            message_id = await self.sender.send(
                to=data.to,
                subject=data.subject,
                html=data.html,
                text=data.text,
                attachments=attachments or None,
            )
        except Exception as e:
            final = not is_retryable(e) or job.attempts_made + 1 >= job.opts.attempts
            if data.file_paths and data.metadata.cleanup and final:
                cleanup_files(data.file_paths)
            raise

        if data.file_paths and data.metadata.cleanup:
            cleanup_files(data.file_paths)
        return {
            "status": "completed",
            "email_id": message_id,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
