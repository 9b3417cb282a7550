# event_backup/dependencies.py
"""
Service wiring. The graph is built once per process from the AWS clients and
settings; FastAPI routers, the serverless handler and the worker all share it.
Tests install their own graph with `set_services()`.
"""

from dataclasses import dataclass
from typing import Optional

from event_backup import clients
from event_backup.config import settings
from event_backup.services.alarm_service import AlarmService
from event_backup.services.credentials_service import CredentialsCache, CredentialsService
from event_backup.services.dead_letter_service import DeadLetterService
from event_backup.services.device_registry import DeviceRegistry
from event_backup.services.event_dispatcher import EventDispatcher
from event_backup.services.notification_service import NotificationService, RecentLogSource
from event_backup.services.object_store import ObjectStore
from event_backup.services.queue_service import QueueService
from event_backup.services.retrieval_service import RetrievalService
from event_backup.services.video_capture import VideoCaptureOrchestrator


@dataclass
class Services:
    object_store: ObjectStore
    queue_service: QueueService
    credentials_service: CredentialsService
    device_registry: DeviceRegistry
    alarm_service: AlarmService
    retrieval_service: RetrievalService
    dead_letter_service: DeadLetterService
    dispatcher: EventDispatcher


# Survives warm invocations; the only cross-invocation state besides the clients
credentials_cache = CredentialsCache()


def build_services(s3, sqs, secrets, ses, logs=None,
                   session_factory=None, cache: Optional[CredentialsCache] = None) -> Services:
    object_store = ObjectStore(s3, settings.STORAGE_BUCKET)
    queue_service = QueueService(
        sqs,
        processing_queue_url=settings.ALARM_PROCESSING_QUEUE_URL,
        dead_letter_queue_url=settings.ALARM_PROCESSING_DLQ_URL,
        summary_queue_url=settings.SUMMARY_EVENT_QUEUE_URL,
    )
    credentials_service = CredentialsService(
        secrets, settings.UNIFI_CREDENTIALS_SECRET_ARN, cache or credentials_cache
    )
    device_registry = DeviceRegistry.from_entries(settings.device_registry_entries)
    orchestrator = VideoCaptureOrchestrator(
        object_store, credentials_service, session_factory=session_factory
    )
    alarm_service = AlarmService(
        object_store, queue_service, credentials_service, device_registry, orchestrator
    )
    notification_service = NotificationService(
        ses,
        object_store,
        RecentLogSource(logs_client=logs, function_name=settings.FUNCTION_NAME),
        support_email=settings.SUPPORT_EMAIL,
    )
    dead_letter_service = DeadLetterService(queue_service, notification_service)
    return Services(
        object_store=object_store,
        queue_service=queue_service,
        credentials_service=credentials_service,
        device_registry=device_registry,
        alarm_service=alarm_service,
        retrieval_service=RetrievalService(object_store, queue_service, device_registry),
        dead_letter_service=dead_letter_service,
        dispatcher=EventDispatcher(alarm_service, queue_service, dead_letter_service),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services(
            clients.s3_client(),
            clients.sqs_client(),
            clients.secrets_client(),
            clients.ses_client(),
            clients.logs_client() if settings.FUNCTION_NAME else None,
        )
    return _services


def set_services(services: Optional[Services]):
    global _services
    _services = services


def get_alarm_service() -> AlarmService:
    return get_services().alarm_service


def get_retrieval_service() -> RetrievalService:
    return get_services().retrieval_service


def reset_state() -> None:
    set_services(None)
    credentials_cache.clear()
