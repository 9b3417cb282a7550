"""In-memory AWS fakes and a fully wired service graph for the test suite."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import io
import json
from datetime import date

import pytest
from botocore.exceptions import ClientError

from event_backup.dependencies import Services
from event_backup.schemas.alarm import AlarmEvent
from event_backup.services.alarm_service import AlarmService
from event_backup.services.credentials_service import CredentialsCache, CredentialsService
from event_backup.services.dead_letter_service import DeadLetterService
from event_backup.services.device_registry import DeviceRegistry
from event_backup.services.event_dispatcher import EventDispatcher
from event_backup.services.notification_service import NotificationService
from event_backup.services.object_store import ObjectStore
from event_backup.services.queue_service import QueueService
from event_backup.services.retrieval_service import RetrievalService
from event_backup.services.video_capture import CaptureFailed

BUCKET = "test-bucket"
PROCESSING_URL = "https://sqs.test/123/alarm-processing"
DLQ_URL = "https://sqs.test/123/alarm-processing-dlq"
SUMMARY_URL = "https://sqs.test/123/summary-events"
SECRET_ARN = "arn:aws:secretsmanager:us-east-1:123:secret:unifi"
SUPPORT_EMAIL = "ops@example.com"

EVENT_ID = "evt123"
DEVICE = "AABBCCDDEEFF"
TIMESTAMP = 1700000000000          # 2023-11-14T22:13:20Z
TODAY = date(2023, 11, 14)


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


# ── S3 ───────────────────────────────────────────────────────────────────────
class FakePaginator:
    def __init__(self, s3):
        self.s3 = s3

    def paginate(self, Bucket, Prefix):
        self.s3.listed_prefixes.append(Prefix)
        yield {"Contents": [{"Key": k} for k in self.s3._keys(Prefix)]}


class FakeS3:
    def __init__(self):
        self.objects = {}           # key -> {"Body", "ContentType", "StorageClass"}
        self.get_calls = []
        self.put_calls = []
        self.listed_prefixes = []
        self.list_calls = []
        self.presign_calls = []
        self.fail_put = {}          # key suffix -> error code
        self.fail_get = {}

    def _keys(self, prefix):
        return sorted(k for k in self.objects if k.startswith(prefix))

    def _failure(self, table, key):
        for suffix, code in table.items():
            if key.endswith(suffix):
                return client_error(code)
        return None

    def put_object(self, Bucket, Key, Body, ContentType=None, StorageClass=None):
        self.put_calls.append(Key)
        error = self._failure(self.fail_put, Key)
        if error:
            raise error
        self.objects[Key] = {"Body": Body, "ContentType": ContentType, "StorageClass": StorageClass}

    def get_object(self, Bucket, Key):
        self.get_calls.append(Key)
        error = self._failure(self.fail_get, Key)
        if error:
            raise error
        if Key not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key]["Body"])}

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise client_error("404", "HeadObject")
        return {"ContentLength": len(self.objects[Key]["Body"])}

    def head_bucket(self, Bucket):
        return {}

    def list_objects_v2(self, Bucket, Prefix, MaxKeys=1000):
        self.list_calls.append((Prefix, MaxKeys))
        return {"Contents": [{"Key": k} for k in self._keys(Prefix)[:MaxKeys]]}

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        self.presign_calls.append({"operation": operation, "Params": Params, "ExpiresIn": ExpiresIn})
        return f"https://{Params['Bucket']}.s3.test/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    # helpers
    def seed(self, key, body=b"x"):
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.objects[key] = {"Body": body, "ContentType": None, "StorageClass": "STANDARD_IA"}

    def json_at(self, key):
        return json.loads(self.objects[key]["Body"])


# ── SQS ──────────────────────────────────────────────────────────────────────
class FakeSQS:
    def __init__(self):
        self.sent = []
        self.deleted = []
        self.inbox = []
        self.depths = {}
        self.fail_urls = set()

    def send_message(self, QueueUrl, MessageBody, DelaySeconds=0, MessageAttributes=None):
        if QueueUrl in self.fail_urls:
            raise client_error("AWS.SimpleQueueService.NonExistentQueue", "SendMessage")
        message_id = f"msg-{len(self.sent) + 1}"
        self.sent.append({
            "QueueUrl": QueueUrl,
            "MessageBody": MessageBody,
            "DelaySeconds": DelaySeconds,
            "MessageAttributes": MessageAttributes or {},
            "MessageId": message_id,
        })
        return {"MessageId": message_id}

    def sent_to(self, url):
        return [m for m in self.sent if m["QueueUrl"] == url]

    def receive_message(self, QueueUrl, MaxNumberOfMessages=10, WaitTimeSeconds=0, MessageAttributeNames=None):
        batch, self.inbox = self.inbox[:MaxNumberOfMessages], self.inbox[MaxNumberOfMessages:]
        return {"Messages": batch} if batch else {}

    def delete_message(self, QueueUrl, ReceiptHandle):
        self.deleted.append(ReceiptHandle)

    def get_queue_attributes(self, QueueUrl, AttributeNames):
        if QueueUrl in self.fail_urls:
            raise client_error("AccessDenied", "GetQueueAttributes")
        return {"Attributes": {"ApproximateNumberOfMessages": str(self.depths.get(QueueUrl, 0))}}


# ── SES / Secrets Manager ────────────────────────────────────────────────────
class FakeSES:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_raw_email(self, Source, Destinations, RawMessage):
        if self.fail:
            raise client_error("MessageRejected", "SendRawEmail")
        self.sent.append({"Source": Source, "Destinations": Destinations, "Data": RawMessage["Data"]})
        return {"MessageId": f"ses-{len(self.sent)}"}


class FakeSecrets:
    def __init__(self, secret=None):
        self.secret = secret if secret is not None else {
            "hostname": "protect.local",
            "username": "backup",
            "password": "s3cret",
        }
        self.calls = 0

    def get_secret_value(self, SecretId):
        self.calls += 1
        body = self.secret if isinstance(self.secret, str) else json.dumps(self.secret)
        return {"SecretString": body}


class FakeCapture:
    """Stands in for the browser orchestrator; returns a preset outcome."""

    def __init__(self, outcome=None):
        self.outcome = outcome or CaptureFailed("not configured in test")
        self.targets = []

    def capture(self, target):
        self.targets.append(target)
        outcome = self.outcome
        if callable(outcome):
            return outcome(target)
        return outcome


class FakeLogSource:
    def __init__(self, text="2023-11-14 22:15:00 | INFO | test | capture started"):
        self.text = text

    def fetch(self):
        return self.text


# ── Fixtures ─────────────────────────────────────────────────────────────────
@pytest.fixture
def s3():
    return FakeS3()


@pytest.fixture
def sqs():
    return FakeSQS()


@pytest.fixture
def ses():
    return FakeSES()


@pytest.fixture
def secrets():
    return FakeSecrets()


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def registry():
    return DeviceRegistry.from_entries([
        {"deviceName": "Front Door", "deviceMac": "AA:BB:CC:DD:EE:FF", "archiveButtonX": 1100, "archiveButtonY": 260},
        {"deviceName": "Driveway", "deviceMac": "112233445566"},
    ])


@pytest.fixture
def make_alarm():
    def _make(event_id=EVENT_ID, device=DEVICE, timestamp=TIMESTAMP, key="motion",
              event_path="/protect/events/event/evt123", **trigger_extra):
        trigger = {"key": key, "device": device, "eventId": event_id, **trigger_extra}
        data = {
            "name": "Backup Alarm",
            "sources": [{"device": device, "type": "include"}],
            "conditions": [{"type": "is", "source": key}],
            "triggers": [trigger],
            "timestamp": timestamp,
        }
        if event_path:
            data["eventPath"] = event_path
        return AlarmEvent.model_validate(data)
    return _make


def build_test_services(s3, sqs, ses, secrets, capture, registry,
                        bucket=BUCKET, processing_url=PROCESSING_URL,
                        support_email=SUPPORT_EMAIL) -> Services:
    object_store = ObjectStore(s3, bucket)
    queue_service = QueueService(sqs, processing_url, DLQ_URL, SUMMARY_URL)
    credentials_service = CredentialsService(secrets, SECRET_ARN, CredentialsCache())
    alarm_service = AlarmService(
        object_store, queue_service, credentials_service, registry, capture, processing_delay=120
    )
    notification_service = NotificationService(ses, object_store, FakeLogSource(), support_email=support_email)
    dead_letter_service = DeadLetterService(queue_service, notification_service)
    return Services(
        object_store=object_store,
        queue_service=queue_service,
        credentials_service=credentials_service,
        device_registry=registry,
        alarm_service=alarm_service,
        retrieval_service=RetrievalService(object_store, queue_service, registry, today=lambda: TODAY),
        dead_letter_service=dead_letter_service,
        dispatcher=EventDispatcher(alarm_service, queue_service, dead_letter_service),
    )


@pytest.fixture
def services(s3, sqs, ses, secrets, capture, registry):
    return build_test_services(s3, sqs, ses, secrets, capture, registry)


@pytest.fixture
def sqs_record():
    def _record(body, message_id="m-1"):
        return {"messageId": message_id, "receiptHandle": f"rh-{message_id}", "body": body, "eventSource": "aws:sqs"}
    return _record
