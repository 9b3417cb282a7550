# event_backup/services/video_capture.py
"""
Video capture orchestrator — drives a headless Chromium session through the
Protect viewer to export the event's video clip.

Flow (linear, no back-paths):
  Launch → PageLoad → DetectLoginForm → [Authenticate] → AwaitReady
         → TriggerArchive → AwaitDownload → SignOut → Done

The archive button is clicked at per-device screen coordinates; the viewer has
no stable selector for it. Any layout change upstream shows up only in the
stage screenshots uploaded under screenshots/.

Every wait goes through page.wait_for_timeout: the sync API only dispatches
events (the page "download" event included) while a Playwright call is in
flight. The download handler saves the file into the download directory and
completion is detected by polling that directory for a new .mp4. CDP download
events are logged for diagnostics only.
"""

import glob
import io
import os
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from PIL import Image, ImageDraw
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from event_backup.config import settings
from event_backup.services import storage_keys
from event_backup.utils.errors import CredentialsError
from event_backup.utils.logger import get_logger

logger = get_logger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--ignore-certificate-errors",
    "--no-first-run",
    "--no-zygote",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-extensions",
    "--window-size=1920,1080",
]
VIEWPORT = {"width": 1920, "height": 1080}

USERNAME_SELECTOR = "input[name='username'], input[type='email'], input[id*='username'], input[id*='email']"
PASSWORD_SELECTOR = "input[name='password'], input[type='password'], input[id*='password']"
SUBMIT_SELECTOR = "button[type='submit']"
SIGN_OUT_SELECTORS = [
    "button:has-text('Sign Out')",
    "a:has-text('Sign Out')",
    "[data-testid='sign-out']",
]
USER_MENU_SELECTORS = [
    "button[aria-label*='account' i]",
    "button[aria-label*='user' i]",
    "[data-testid='user-menu']",
]
PARTIAL_DOWNLOAD_PATTERNS = ("*.crdownload", "*.tmp")

NO_VIDEO_MESSAGE = "No video files were downloaded"
BROWSER_LIFECYCLE_MESSAGE = "Video download failed due to browser lifecycle issue. Please try again."


# ── Outcomes ─────────────────────────────────────────────────────────────────
@dataclass
class CaptureSuccess:
    data: bytes
    original_file_name: str
    local_path: str
    preview: Optional[bytes] = None     # afterarchivebuttonclick screenshot, used for the thumbnail


@dataclass
class CaptureNoVideo:
    detail: str = NO_VIDEO_MESSAGE


@dataclass
class CaptureFailed:
    detail: str


CaptureOutcome = Union[CaptureSuccess, CaptureNoVideo, CaptureFailed]


class _NoVideoDownloaded(Exception):
    pass


@dataclass
class CaptureTarget:
    event_local_link: str
    event_id: str
    key_prefix: str                     # {date}/{eventId}_{device}_{timestamp}
    coordinates: Tuple[int, int]
    device_name: Optional[str] = None


@dataclass
class CaptureTimings:
    page_load_timeout: float = 20
    login_navigation_timeout: float = 15
    ready_state_timeout: float = 10
    settle_seconds: float = 3
    download_wait_seconds: float = 118
    poll_interval_seconds: float = 1

    @classmethod
    def from_settings(cls) -> "CaptureTimings":
        return cls(
            page_load_timeout=settings.PAGE_LOAD_TIMEOUT_SECONDS,
            login_navigation_timeout=settings.LOGIN_NAVIGATION_TIMEOUT_SECONDS,
            ready_state_timeout=settings.READY_STATE_TIMEOUT_SECONDS,
            settle_seconds=settings.UI_SETTLE_SECONDS,
            download_wait_seconds=settings.DOWNLOAD_WAIT_SECONDS,
            poll_interval_seconds=settings.DOWNLOAD_POLL_INTERVAL_SECONDS,
        )


# ── Browser session ──────────────────────────────────────────────────────────
class PlaywrightSession:
    """
    One isolated Chromium instance. `page` and `cdp` are what the orchestrator
    drives; `close()` releases everything and never raises.
    """

    def __init__(self, download_directory: str):
        self.download_directory = download_directory
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None
        self.cdp = None

    def start(self) -> "PlaywrightSession":
        logger.info("[CAPTURE] Launching headless Chromium...")
        self._playwright = sync_playwright().start()
        self.browser = self._playwright.chromium.launch(headless=True, args=CHROMIUM_ARGS)
        self.context = self.browser.new_context(
            viewport=VIEWPORT,
            accept_downloads=True,
            ignore_https_errors=True,
        )
        self.page = self.context.new_page()
        self.page.on("download", self._persist_download)
        self.cdp = self.browser.new_browser_cdp_session()
        return self

    def _persist_download(self, download):
        # Playwright owns the download stream; land it in the polled directory under its own name
        target = os.path.join(self.download_directory, download.suggested_filename)
        try:
            download.save_as(target)
            logger.info(f"[CAPTURE] Download saved to {target}")
        except PlaywrightError as e:
            logger.warning(f"[CAPTURE] Could not save download {download.suggested_filename}: {e}")

    def close(self):
        for name, closer in (
            ("page", lambda: self.page and self.page.close()),
            ("context", lambda: self.context and self.context.close()),
            ("browser", lambda: self.browser and self.browser.close()),
            ("playwright", lambda: self._playwright and self._playwright.stop()),
        ):
            try:
                closer()
            except Exception as e:
                logger.warning(f"[CAPTURE] Error closing {name}: {e}")


def launch_playwright_session(download_directory: str) -> PlaywrightSession:
    session = PlaywrightSession(download_directory)
    try:
        return session.start()
    except Exception:
        session.close()
        raise


# ── Helpers ──────────────────────────────────────────────────────────────────
def annotate_click(png_bytes: bytes, x: int, y: int, radius: int = 18) -> bytes:
    """Draw a red ring with crosshair at (x, y) on a PNG screenshot."""
    with Image.open(io.BytesIO(png_bytes)) as img:
        canvas = img.convert("RGB")
    draw = ImageDraw.Draw(canvas)
    draw.ellipse((x - radius, y - radius, x + radius, y + radius), outline=(255, 0, 0), width=4)
    draw.line((x - radius * 2, y, x + radius * 2, y), fill=(255, 0, 0), width=2)
    draw.line((x, y - radius * 2, x, y + radius * 2), fill=(255, 0, 0), width=2)
    out = io.BytesIO()
    canvas.save(out, format="PNG")
    return out.getvalue()


def _is_lifecycle_error(exc: Exception) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in ("disposed", "target closed", "has been closed", "browser closed"))


def _list_files(directory: str, pattern: str) -> List[str]:
    return glob.glob(os.path.join(directory, pattern))


# ── Orchestrator ─────────────────────────────────────────────────────────────
class VideoCaptureOrchestrator:
    def __init__(
        self,
        object_store,
        credentials_service,
        download_directory: Optional[str] = None,
        timings: Optional[CaptureTimings] = None,
        session_factory: Optional[Callable[[str], object]] = None,
        annotate_clicks: Optional[bool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.object_store = object_store
        self.credentials_service = credentials_service
        self.download_directory = download_directory or settings.DOWNLOAD_DIRECTORY
        self.timings = timings or CaptureTimings.from_settings()
        self.session_factory = session_factory or launch_playwright_session
        self.annotate_clicks = settings.ANNOTATE_CLICK_SCREENSHOTS if annotate_clicks is None else annotate_clicks
        self.clock = clock

    def capture(self, target: CaptureTarget) -> CaptureOutcome:
        """
        Run the full capture flow once. Returns a typed outcome; only
        CredentialsError escapes, since retrying cannot fix missing credentials.
        """
        logger.info(f"[CAPTURE] Starting capture for event {target.event_id} from {target.event_local_link}")
        os.makedirs(self.download_directory, exist_ok=True)

        session = None
        listener = None
        try:
            session = self.session_factory(self.download_directory)  # Launch
            self._configure_downloads(session)
            self._load_page(session, target)
            self._authenticate_if_needed(session, target)
            listener = self._await_ready(session, target)
            preview = self._trigger_archive(session, target)
            local_path = self._await_download(session)
            self._sign_out(session, target)

            with open(local_path, "rb") as f:
                data = f.read()
            file_name = os.path.basename(local_path)
            logger.info(f"[CAPTURE] Captured {file_name} ({len(data)} bytes) for event {target.event_id}")
            return CaptureSuccess(data=data, original_file_name=file_name, local_path=local_path, preview=preview)

        except _NoVideoDownloaded:
            logger.warning(f"[CAPTURE] {NO_VIDEO_MESSAGE} for event {target.event_id}")
            if session is not None:
                self._sign_out(session, target)
            return CaptureNoVideo()
        except CredentialsError:
            raise
        except PlaywrightError as e:
            if _is_lifecycle_error(e):
                logger.error(f"[CAPTURE] Browser lifecycle error: {e}")
                return CaptureFailed(BROWSER_LIFECYCLE_MESSAGE)
            logger.error(f"[CAPTURE] Browser error for event {target.event_id}: {e}")
            return CaptureFailed(f"Error downloading video: {e}")
        except Exception as e:
            logger.error(f"[CAPTURE] Unexpected capture error for event {target.event_id}: {e}", exc_info=True)
            if _is_lifecycle_error(e):
                return CaptureFailed(BROWSER_LIFECYCLE_MESSAGE)
            return CaptureFailed(f"Error downloading video: {e}")
        finally:
            # Listener goes first so no CDP callback fires into a closed session
            if session is not None and listener is not None:
                self._detach_listener(session, listener)
            if session is not None:
                session.close()
                logger.info("[CAPTURE] Browser resources released")

    # ── States ─────────────────────────────────────────────────────────────
    def _configure_downloads(self, session):
        # Browser-level session: this enables the CDP progress events, files still land via the page download handler
        params = {"behavior": "allow", "downloadPath": self.download_directory, "eventsEnabled": True}
        try:
            session.cdp.send("Browser.setDownloadBehavior", params)
        except PlaywrightError as e:
            logger.info(f"[CAPTURE] Browser.setDownloadBehavior not applied: {e}")
        logger.info(f"[CAPTURE] Downloads directed to {self.download_directory}")

    def _load_page(self, session, target: CaptureTarget):
        logger.info(f"[CAPTURE] Navigating to {target.event_local_link}")
        try:
            session.page.goto(
                target.event_local_link,
                wait_until="networkidle",
                timeout=self.timings.page_load_timeout * 1000,
            )
        except PlaywrightTimeoutError as e:
            logger.warning(f"[CAPTURE] Page did not reach network idle, continuing: {e}")
        finally:
            self._screenshot(session, target, "login")

    def _authenticate_if_needed(self, session, target: CaptureTarget):
        page = session.page
        username_field = page.query_selector(USERNAME_SELECTOR)
        password_field = page.query_selector(PASSWORD_SELECTOR)
        if username_field is None or password_field is None:
            logger.info("[CAPTURE] No login form detected, proceeding without authentication")
            return

        logger.info("[CAPTURE] Login form detected, authenticating...")
        credentials = self.credentials_service.get_credentials()
        if not credentials.username or not credentials.password:
            raise CredentialsError("Unifi credentials are not properly configured in AWS Secrets Manager")

        username_field.click()
        username_field.fill(credentials.username)
        password_field.click()
        password_field.fill(credentials.password)

        submit = page.query_selector(SUBMIT_SELECTOR)
        if submit is not None:
            logger.info("[CAPTURE] Clicking login button...")
            try:
                with page.expect_navigation(wait_until="networkidle",
                                            timeout=self.timings.login_navigation_timeout * 1000):
                    submit.click()
                logger.info("[CAPTURE] Login completed, page navigated")
            except PlaywrightTimeoutError as e:
                logger.info(f"[CAPTURE] Navigation timeout after login (may be normal): {e}")
        else:
            logger.info("[CAPTURE] No login button found, pressing Enter on password field")
            password_field.press("Enter")
            self._wait(session, 2)

    def _await_ready(self, session, target: CaptureTarget):
        page = session.page
        self._wait(session, 2)
        try:
            if not page.evaluate("document.readyState === 'complete'"):
                page.wait_for_function(
                    "() => document.readyState === 'complete'",
                    timeout=self.timings.ready_state_timeout * 1000,
                )
        except PlaywrightTimeoutError as e:
            logger.warning(f"[CAPTURE] Timeout waiting for page ready state, continuing: {e}")

        listener = self._attach_listener(session)
        self._wait(session, self.timings.settle_seconds)
        self._screenshot(session, target, "pageload")
        return listener

    def _trigger_archive(self, session, target: CaptureTarget) -> Optional[bytes]:
        x, y = target.coordinates
        logger.info(f"[CAPTURE] Device {target.device_name or 'unknown'}: clicking archive button at ({x}, {y})")
        session.page.mouse.click(x, y)
        annotate = (x, y) if self.annotate_clicks else None
        return self._screenshot(session, target, "afterarchivebuttonclick", annotate_at=annotate)

    def _await_download(self, session) -> str:
        directory = self.download_directory
        initial_count = len(_list_files(directory, "*.mp4"))
        logger.info(f"[CAPTURE] Waiting for download, initial .mp4 count: {initial_count}")

        started = self.clock()
        detected = False
        while self.clock() - started < self.timings.download_wait_seconds:
            if len(_list_files(directory, "*.mp4")) > initial_count:
                logger.info(f"[CAPTURE] New video file detected after {self.clock() - started:.1f}s")
                self._wait(session, 2)
                detected = True
                break
            partial = {p: len(_list_files(directory, p)) for p in PARTIAL_DOWNLOAD_PATTERNS}
            if any(partial.values()):
                logger.info(f"[CAPTURE] Partial download files detected: {partial}")
            self._wait(session, self.timings.poll_interval_seconds)

        if not detected:
            raise _NoVideoDownloaded()

        videos = _list_files(directory, "*.mp4")
        if not videos:
            raise _NoVideoDownloaded()
        return max(videos, key=os.path.getmtime)

    def _sign_out(self, session, target: CaptureTarget):
        """Best-effort; nothing here may fail the capture."""
        page = session.page
        try:
            control = self._first_match(page, SIGN_OUT_SELECTORS)
            if control is None:
                menu = self._first_match(page, USER_MENU_SELECTORS)
                if menu is not None:
                    menu.click()
                    self._wait(session, 1)
                    control = self._first_match(page, SIGN_OUT_SELECTORS)
            if control is None:
                logger.info("[CAPTURE] No sign-out control found")
            else:
                control.click()
                self._wait(session, 2)
                logger.info("[CAPTURE] Signed out")
        except Exception as e:
            logger.warning(f"[CAPTURE] Sign-out failed: {e}")
        self._screenshot(session, target, "signout")

    # ── Diagnostics ────────────────────────────────────────────────────────
    @staticmethod
    def _wait(session, seconds: float):
        # Browser events, downloads included, are only dispatched inside Playwright calls
        session.page.wait_for_timeout(seconds * 1000)

    @staticmethod
    def _first_match(page, selectors):
        for selector in selectors:
            element = page.query_selector(selector)
            if element is not None:
                return element
        return None

    def _attach_listener(self, session):
        state = {"guid": None}

        def on_begin(params):
            state["guid"] = (params or {}).get("guid")
            logger.info(f"[CAPTURE] Download started with GUID: {state['guid']}")

        def on_progress(params):
            progress_state = (params or {}).get("state")
            if progress_state and progress_state != "inProgress":
                logger.info(f"[CAPTURE] Download progress: {progress_state}")

        handlers = {"Browser.downloadWillBegin": on_begin, "Browser.downloadProgress": on_progress}
        for event, handler in handlers.items():
            session.cdp.on(event, handler)
        return handlers

    @staticmethod
    def _detach_listener(session, handlers: dict):
        for event, handler in handlers.items():
            try:
                session.cdp.remove_listener(event, handler)
            except Exception as e:
                logger.warning(f"[CAPTURE] Error detaching {event} listener: {e}")
        logger.debug("[CAPTURE] Download listener detached")

    def _screenshot(self, session, target: CaptureTarget, stage: str,
                    annotate_at: Optional[Tuple[int, int]] = None) -> Optional[bytes]:
        """Capture and upload a stage screenshot. Never raises."""
        try:
            png = session.page.screenshot(full_page=False)
            if annotate_at is not None:
                png = annotate_click(png, *annotate_at)
            key = storage_keys.screenshot_key(target.key_prefix, stage)
            self.object_store.put_binary(key, png, "image/png")
            logger.info(f"[CAPTURE] {stage} screenshot uploaded to {key}")
            return png
        except Exception as e:
            logger.warning(f"[CAPTURE] {stage} screenshot failed: {e}")
            return None


def cleanup_temp_file(path: Optional[str]):
    if not path:
        return
    try:
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"[CAPTURE] Cleaned up temporary file: {path}")
    except OSError as e:
        logger.warning(f"[CAPTURE] Could not clean up temporary file {path}: {e}")
