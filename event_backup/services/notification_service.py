# event_backup/services/notification_service.py
"""
Operator notification for alarms diverted to the dead-letter queue.

Bundle: recent log lines, the capture stage screenshots, and the alarm JSON.
Every part is best-effort; a missing part is left out, never fatal.
Sent through SES as a raw MIME message so the bundle travels as attachments.
"""

import html
import os
from datetime import datetime, timedelta, timezone
from email.mime.application import MIMEApplication
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote

from botocore.exceptions import BotoCoreError, ClientError

from event_backup.config import settings
from event_backup.schemas.alarm import AlarmEvent
from event_backup.services import storage_keys
from event_backup.utils.errors import StorageError
from event_backup.utils.json_parser import pretty_json
from event_backup.utils.logger import LOG_DATEFMT, LOG_FILE, get_logger

logger = get_logger(__name__)

LOG_WINDOW_MINUTES = 30
MAX_LOG_LINES = 100
LOG_PLACEHOLDER = "Unable to retrieve recent logs: "


class RecentLogSource:
    """
    Recent log lines: CloudWatch for serverless deployments (FUNCTION_NAME set),
    otherwise the tail of the local rotating log file.
    """

    def __init__(self, logs_client=None, function_name: Optional[str] = None,
                 log_file: str = LOG_FILE,
                 now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.logs_client = logs_client
        self.function_name = function_name
        self.log_file = log_file
        self.now = now

    def fetch(self) -> str:
        try:
            if self.function_name and self.logs_client is not None:
                lines = self._from_cloudwatch()
            else:
                lines = self._from_file()
        except (ClientError, BotoCoreError, OSError) as e:
            logger.warning(f"[NOTIFY] Could not read recent logs: {e}")
            return f"{LOG_PLACEHOLDER}{e}"
        if not lines:
            return f"{LOG_PLACEHOLDER}no log entries in the last {LOG_WINDOW_MINUTES} minutes"
        return "\n".join(lines)

    def _from_cloudwatch(self) -> List[str]:
        end = self.now()
        start = end - timedelta(minutes=LOG_WINDOW_MINUTES)
        response = self.logs_client.filter_log_events(
            logGroupName=f"/aws/lambda/{self.function_name}",
            startTime=int(start.timestamp() * 1000),
            endTime=int(end.timestamp() * 1000),
            limit=MAX_LOG_LINES,
        )
        return [e.get("message", "").rstrip() for e in response.get("events", [])]

    def _from_file(self) -> List[str]:
        if not os.path.exists(self.log_file):
            raise OSError(f"log file {self.log_file} not found")
        # The file handler stamps lines in local time
        cutoff = (self.now() - timedelta(minutes=LOG_WINDOW_MINUTES)).astimezone().replace(tzinfo=None)
        with open(self.log_file, encoding="utf-8", errors="replace") as f:
            lines = f.readlines()[-MAX_LOG_LINES * 5:]

        recent = []
        for line in lines:
            stamp = line.split(" | ", 1)[0]
            try:
                logged_at = datetime.strptime(stamp, LOG_DATEFMT)
            except ValueError:
                # Continuation line (traceback); keep it with its entry
                if recent:
                    recent.append(line.rstrip())
                continue
            if logged_at >= cutoff:
                recent.append(line.rstrip())
        return recent[-MAX_LOG_LINES:]


class NotificationService:
    def __init__(self, ses_client, object_store, log_source: RecentLogSource,
                 support_email: Optional[str] = None):
        self.ses_client = ses_client
        self.object_store = object_store
        self.log_source = log_source
        self.support_email = support_email

    def collect_screenshots(self, alarm: AlarmEvent) -> List[Tuple[str, bytes]]:
        trigger = alarm.first_trigger
        if trigger is None or not alarm.timestamp:
            return []
        prefix = storage_keys.key_prefix(trigger, alarm.timestamp)
        found = []
        for stage in storage_keys.SCREENSHOT_STAGES:
            key = storage_keys.screenshot_key(prefix, stage)
            try:
                data = self.object_store.get_binary(key)
            except StorageError as e:
                logger.warning(f"[NOTIFY] Could not fetch {stage} screenshot: {e}")
                continue
            if data:
                found.append((storage_keys.basename(key), data))
        logger.info(f"[NOTIFY] Collected {len(found)} screenshot(s) for the notification")
        return found

    def notify_failure(self, alarm: AlarmEvent, reason: str,
                       message_id: Optional[str] = None, retry_attempt: Optional[str] = None) -> bool:
        """Returns True when an email was handed to SES."""
        if not self.support_email:
            logger.info("[NOTIFY] Support email not configured, skipping failure notification")
            return False

        trigger = alarm.first_trigger
        event_id = trigger.eventId if trigger else "Unknown"
        subject = f"Unifi Protect Video Download Failure - Event {event_id}"

        alarm_json = pretty_json(alarm.model_dump(exclude_none=True))
        recent_logs = self.log_source.fetch()
        screenshots = self.collect_screenshots(alarm)

        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = self.support_email
        msg["To"] = self.support_email
        msg.attach(MIMEText(build_email_html(alarm, reason, message_id, retry_attempt, alarm_json), "html"))

        json_part = MIMEApplication(alarm_json.encode("utf-8"), _subtype="json")
        json_part.add_header("Content-Disposition", "attachment", filename="alarm_event.json")
        msg.attach(json_part)

        log_part = MIMEText(recent_logs, "plain", "utf-8")
        log_part.add_header("Content-Disposition", "attachment", filename="recent_logs.txt")
        msg.attach(log_part)

        for filename, data in screenshots:
            image = MIMEImage(data, _subtype="png")
            image.add_header("Content-Disposition", "attachment", filename=filename)
            msg.attach(image)

        try:
            response = self.ses_client.send_raw_email(
                Source=self.support_email,
                Destinations=[self.support_email],
                RawMessage={"Data": msg.as_string()},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"[NOTIFY] Failed to send failure notification email: {e}")
            return False
        logger.info(f"[NOTIFY] Email sent to {self.support_email} with MessageId: {response.get('MessageId')}")
        return True


def _cloudwatch_url() -> Optional[str]:
    if not settings.FUNCTION_NAME:
        return None
    region = settings.AWS_REGION
    group = quote(f"/aws/lambda/{settings.FUNCTION_NAME}", safe="")
    return f"https://{region}.console.aws.amazon.com/cloudwatch/home?region={region}#logsV2:log-groups/log-group/{group}"


def build_email_html(alarm: AlarmEvent, reason: str, message_id: Optional[str],
                     retry_attempt: Optional[str], alarm_json: str) -> str:
    trigger = alarm.first_trigger
    event_id = trigger.eventId if trigger else "Unknown"
    device = (trigger.deviceName or trigger.device) if trigger else "Unknown Device"
    event_time = (
        datetime.fromtimestamp(alarm.timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        if alarm.timestamp else "Unknown"
    )
    logs_url = _cloudwatch_url()
    logs_link = (
        f"<li><a href='{logs_url}' target='_blank'>CloudWatch Logs</a> - detailed execution logs</li>"
        if logs_url else ""
    )
    esc = html.escape

    return f"""<!DOCTYPE html>
<html><head><style>
body {{ font-family: Arial, sans-serif; margin: 20px; }}
table {{ border-collapse: collapse; width: 100%; margin: 20px 0; }}
th, td {{ border: 1px solid #ddd; padding: 12px; text-align: left; }}
th {{ background-color: #f2f2f2; }}
.failure {{ color: #d32f2f; font-weight: bold; }}
.info {{ background-color: #e3f2fd; padding: 15px; border-radius: 5px; margin: 15px 0; }}
</style></head><body>
<h1>Unifi Protect Video Download Failure</h1>
<p class='failure'>A video download has failed and been sent to the Dead Letter Queue for retry.</p>
<h2>Failure Details</h2>
<table>
<tr><th>Failure Reason</th><td class='failure'>{esc(reason)}</td></tr>
<tr><th>SQS Message ID</th><td>{esc(message_id or "Unknown")}</td></tr>
<tr><th>Retry Attempt Time</th><td>{esc(retry_attempt or "Unknown")}</td></tr>
</table>
<h2>Event Information</h2>
<table>
<tr><th>Event ID</th><td>{esc(event_id)}</td></tr>
<tr><th>Device</th><td>{esc(device)}</td></tr>
<tr><th>Event Time</th><td>{event_time}</td></tr>
<tr><th>Event Path</th><td>{esc(alarm.eventPath or "Not available")}</td></tr>
</table>
<div class='info'><ul>
{logs_link}
<li>Recent logs and stage screenshots are attached to this email</li>
</ul></div>
<h2>Alarm Event JSON</h2>
<pre style='background-color: #f5f5f5; padding: 15px; border-radius: 5px; overflow-x: auto;'>{esc(alarm_json)}</pre>
<div class='info'>
<h3>Next Steps</h3>
<ol>
<li>Review the attached logs for detailed error information</li>
<li>Check the attached screenshots for the state of the Protect viewer</li>
<li>Verify the event path is valid and the video is available</li>
<li>Replay the message from the dead-letter queue once the cause is fixed</li>
</ol>
</div>
</body></html>"""
