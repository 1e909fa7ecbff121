import logging
import os
from datetime import datetime
from flask import current_app, has_app_context

DEFAULT_AUDIT_LOG_FILE = os.path.join("logs", "audit.log")


def _audit_log_file():
    if has_app_context():
        return current_app.config.get("AUDIT_LOG_FILE") or DEFAULT_AUDIT_LOG_FILE
    return DEFAULT_AUDIT_LOG_FILE


def log_event(event_type, user_id=None, ip=None, description=None, level="INFO", organization_id=None):
    """
    Appends a security or audit-related event to the audit log file.

    Parameters:
        event_type (str): The type of the event (e.g., LOGIN_SUCCESS, PHASE_CHANGE_APPROVED).
        user_id (int|None): The acting user, if known.
        ip (str|None): IP address, if available.
        description (str|None): Additional context.
        level (str): Log level (e.g., INFO, WARNING, ERROR).
        organization_id (int|None): Tenant the event belongs to.
    """
    path = _audit_log_file()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S')
    log_entry = (
        f"[{timestamp}] [{level.upper()}] EVENT: {event_type} | ORG: {organization_id or 'N/A'} | "
        f"USER: {user_id or 'N/A'} | IP: {ip or 'N/A'} | DESC: {description or 'N/A'}\n"
    )

    with open(path, "a") as log_file:
        log_file.write(log_entry)

    if has_app_context():
        current_app.logger.log(getattr(logging, level.upper(), logging.INFO), log_entry.strip())
