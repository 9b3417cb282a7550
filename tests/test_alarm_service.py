"""Unit tests for the alarm processing pipeline (webhook and deferred modes)."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import base64
import io
import json

import pytest
from PIL import Image

from conftest import BUCKET, DLQ_URL, PROCESSING_URL, SUMMARY_URL, build_test_services
from event_backup.services.alarm_service import decode_thumbnail, make_thumbnail, validate
from event_backup.services.video_capture import CaptureFailed, CaptureNoVideo, CaptureSuccess
from event_backup.utils import responses
from event_backup.utils.errors import (
    ConfigurationError,
    CredentialsError,
    NoVideoDownloadedError,
    ValidationError,
)

EVENT_KEY = "2023-11-14/evt123_AABBCCDDEEFF_1700000000000.json"
VIDEO_KEY = "2023-11-14/evt123_AABBCCDDEEFF_1700000000000.mp4"
THUMB_KEY = "2023-11-14/evt123_AABBCCDDEEFF_1700000000000.jpg"


def png_bytes(width=64, height=48):
    out = io.BytesIO()
    Image.new("RGB", (width, height), (10, 20, 30)).save(out, format="PNG")
    return out.getvalue()


def downloaded_clip(tmp_path, name="clip.mp4", data=b"video-bytes"):
    path = tmp_path / name
    path.write_bytes(data)
    return str(path)


class TestValidate:
    def test_none_rejected(self):
        with pytest.raises(ValidationError, match="valid body object"):
            validate(None)

    def test_empty_triggers_rejected(self, make_alarm):
        alarm = make_alarm()
        alarm.triggers = []
        with pytest.raises(ValidationError, match="triggers"):
            validate(alarm)

    def test_non_positive_timestamp_rejected(self, make_alarm):
        with pytest.raises(ValidationError):
            validate(make_alarm(timestamp=0))

    def test_valid_alarm_passes(self, make_alarm):
        validate(make_alarm())


class TestEnqueueAndRespond:
    def test_queues_with_delay_and_attributes(self, services, sqs, make_alarm):
        response = services.alarm_service.process_alarm_sync(make_alarm())

        assert response.status_code == 200
        assert response.body["msg"] == "Alarm event has been queued for processing"
        assert response.body["eventId"] == "evt123"
        assert response.body["device"] == "AABBCCDDEEFF"
        assert response.body["processingDelay"] == 120
        assert response.body["messageId"] == "msg-1"
        assert response.body["estimatedProcessingTime"].endswith(" UTC")

        [sent] = sqs.sent
        assert sent["QueueUrl"] == PROCESSING_URL
        assert sent["DelaySeconds"] == 120
        attrs = sent["MessageAttributes"]
        assert attrs["EventId"] == {"DataType": "String", "StringValue": "evt123"}
        assert attrs["Device"] == {"DataType": "String", "StringValue": "AABBCCDDEEFF"}
        assert attrs["Timestamp"] == {"DataType": "Number", "StringValue": "1700000000000"}
        assert json.loads(sent["MessageBody"])["triggers"][0]["eventId"] == "evt123"

    def test_invalid_alarm_has_no_side_effects(self, services, s3, sqs, capture, make_alarm):
        alarm = make_alarm()
        alarm.triggers = []
        response = services.alarm_service.enqueue_and_respond(alarm)

        assert response.status_code == 400
        assert response.body["msg"] == responses.ERROR_MESSAGE_400 + responses.ERROR_TRIGGERS
        assert sqs.sent == []
        assert s3.put_calls == []
        assert capture.targets == []

    def test_missing_body_is_400(self, services):
        response = services.alarm_service.enqueue_and_respond(None)
        assert response.status_code == 400
        assert responses.ERROR_GENERAL in response.body["msg"]

    def test_queue_not_configured_is_500(self, s3, sqs, ses, secrets, capture, registry, make_alarm):
        services = build_test_services(s3, sqs, ses, secrets, capture, registry, processing_url=None)
        response = services.alarm_service.enqueue_and_respond(make_alarm())
        assert response.status_code == 500
        assert response.body["msg"] == responses.ERROR_QUEUE_CONFIG
        assert sqs.sent == []

    def test_send_failure_is_500(self, services, sqs, make_alarm):
        sqs.fail_urls.add(PROCESSING_URL)
        response = services.alarm_service.enqueue_and_respond(make_alarm())
        assert response.status_code == 500
        assert response.body["msg"].startswith(responses.ERROR_MESSAGE_500)

    def test_webhook_never_captures(self, services, capture, s3, make_alarm):
        services.alarm_service.process_alarm_sync(make_alarm())
        assert capture.targets == []
        assert s3.put_calls == []


class TestDeferredProcessing:
    def test_end_to_end_success(self, services, s3, sqs, capture, make_alarm, tmp_path):
        local = downloaded_clip(tmp_path)
        capture.outcome = CaptureSuccess(data=b"video-bytes", original_file_name="clip.mp4", local_path=local)

        services.alarm_service.process_alarm_deferred(make_alarm())

        assert s3.objects[VIDEO_KEY]["Body"] == b"video-bytes"
        assert s3.objects[VIDEO_KEY]["StorageClass"] == "STANDARD_IA"
        stored = s3.json_at(EVENT_KEY)
        trigger = stored["triggers"][0]
        assert trigger["originalFileName"] == "clip.mp4"
        assert trigger["eventKey"] == "evt123_AABBCCDDEEFF_1700000000000.json"
        assert trigger["videoKey"] == VIDEO_KEY
        assert trigger["date"] == "2023-11-14T22:13:20"
        assert trigger["deviceName"] == "Front Door"
        assert stored["eventLocalLink"] == "https://protect.local/protect/events/event/evt123"
        assert not os.path.exists(local)

    def test_capture_target(self, services, capture, make_alarm):
        services.alarm_service.process_alarm_deferred(make_alarm())
        [target] = capture.targets
        assert target.event_local_link == "https://protect.local/protect/events/event/evt123"
        assert target.event_id == "evt123"
        assert target.key_prefix == "2023-11-14/evt123_AABBCCDDEEFF_1700000000000"
        assert target.coordinates == (1100, 260)
        assert target.device_name == "Front Door"

    def test_unknown_device_uses_default_coordinates(self, services, capture, make_alarm):
        services.alarm_service.process_alarm_deferred(make_alarm(device="FFEEDDCCBBAA"))
        assert capture.targets[0].coordinates == (1205, 240)

    def test_summary_event_after_video(self, services, sqs, capture, make_alarm, tmp_path):
        capture.outcome = CaptureSuccess(data=b"v", original_file_name="clip.mp4",
                                         local_path=downloaded_clip(tmp_path))
        services.alarm_service.process_alarm_deferred(make_alarm())

        [summary] = sqs.sent_to(SUMMARY_URL)
        body = json.loads(summary["MessageBody"])
        assert body["EventId"] == "evt123"
        assert body["AlarmS3Key"] == EVENT_KEY
        assert body["VideoS3Key"] == VIDEO_KEY
        assert body["PresignedVideoUrl"].startswith("https://")
        assert body["Metadata"]["originalFileName"] == "clip.mp4"

    def test_capture_failure_is_not_fatal(self, services, s3, sqs, capture, make_alarm):
        capture.outcome = CaptureFailed("Error downloading video: boom")

        services.alarm_service.process_alarm_deferred(make_alarm())

        assert EVENT_KEY in s3.objects
        assert VIDEO_KEY not in s3.objects
        assert "originalFileName" not in s3.json_at(EVENT_KEY)["triggers"][0]
        assert sqs.sent_to(DLQ_URL) == []
        assert json.loads(sqs.sent_to(SUMMARY_URL)[0]["MessageBody"])["VideoS3Key"] is None

    def test_no_video_raises_distinguished_failure(self, services, s3, capture, make_alarm):
        capture.outcome = CaptureNoVideo()
        with pytest.raises(NoVideoDownloadedError):
            services.alarm_service.process_alarm_deferred(make_alarm())
        assert EVENT_KEY in s3.objects
        assert VIDEO_KEY not in s3.objects

    def test_no_event_path_skips_capture(self, services, s3, capture, make_alarm):
        services.alarm_service.process_alarm_deferred(make_alarm(event_path=None))
        assert capture.targets == []
        assert EVENT_KEY in s3.objects

    def test_missing_bucket(self, s3, sqs, ses, secrets, capture, registry, make_alarm):
        services = build_test_services(s3, sqs, ses, secrets, capture, registry, bucket=None)
        with pytest.raises(ConfigurationError, match="StorageBucket"):
            services.alarm_service.process_alarm_deferred(make_alarm())
        assert s3.objects == {}
        assert capture.targets == []

    def test_missing_credentials(self, services, secrets, s3, make_alarm):
        secrets.secret = {"hostname": "", "username": "u", "password": "p"}
        with pytest.raises(CredentialsError):
            services.alarm_service.process_alarm_deferred(make_alarm())
        assert s3.objects == {}

    def test_video_upload_failure_leaves_metadata_only(self, services, s3, capture, make_alarm, tmp_path):
        local = downloaded_clip(tmp_path)
        capture.outcome = CaptureSuccess(data=b"v", original_file_name="clip.mp4", local_path=local)
        s3.fail_put[".mp4"] = "SlowDown"

        services.alarm_service.process_alarm_deferred(make_alarm())

        assert VIDEO_KEY not in s3.objects
        assert "originalFileName" not in s3.json_at(EVENT_KEY)["triggers"][0]
        assert not os.path.exists(local)

    def test_webhook_thumbnail_stored(self, services, s3, make_alarm):
        encoded = base64.b64encode(b"\xff\xd8jpeg").decode()
        services.alarm_service.process_alarm_deferred(make_alarm(thumbnail=f"data:image/jpeg;base64,{encoded}"))
        assert s3.objects[THUMB_KEY]["Body"] == b"\xff\xd8jpeg"

    def test_generated_thumbnail_from_click_screenshot(self, services, s3, capture, make_alarm, tmp_path):
        capture.outcome = CaptureSuccess(data=b"v", original_file_name="clip.mp4",
                                         local_path=downloaded_clip(tmp_path), preview=png_bytes(640, 360))
        services.alarm_service.process_alarm_deferred(make_alarm())

        with Image.open(io.BytesIO(s3.objects[THUMB_KEY]["Body"])) as thumb:
            assert thumb.format == "JPEG"
            assert thumb.size == (320, 180)


class TestThumbnailHelpers:
    def test_decode_raw_base64(self):
        assert decode_thumbnail(base64.b64encode(b"abc").decode()) == b"abc"

    def test_decode_invalid(self):
        assert decode_thumbnail("not base64 !!") is None

    def test_make_thumbnail_keeps_aspect(self):
        with Image.open(io.BytesIO(make_thumbnail(png_bytes(1920, 1080)))) as img:
            assert img.size == (320, 180)


class TestWebhookToRetrieval:
    def test_queued_alarm_is_captured_then_retrievable(self, services, s3, sqs, capture, make_alarm,
                                                       sqs_record, tmp_path):
        response = services.alarm_service.process_alarm_sync(make_alarm())
        assert response.status_code == 200
        assert response.body["eventId"] == "evt123"
        assert response.body["processingDelay"] > 0

        [queued] = sqs.sent_to(PROCESSING_URL)
        local = downloaded_clip(tmp_path)
        capture.outcome = CaptureSuccess(data=b"video-bytes", original_file_name="clip.mp4", local_path=local)
        failures = services.dispatcher.dispatch_records([sqs_record(queued["MessageBody"])])

        assert failures == []
        assert s3.objects[VIDEO_KEY]["Body"] == b"video-bytes"

        retrieved = services.retrieval_service.get_video_by_event_id("evt123")
        assert retrieved.status_code == 200
        assert retrieved.body["filename"] == "clip.mp4"
        assert retrieved.body["videoKey"] == VIDEO_KEY
        params = s3.presign_calls[-1]["Params"]
        assert params["Key"] == VIDEO_KEY
        assert params["ResponseContentDisposition"] == 'attachment; filename="clip.mp4"'
