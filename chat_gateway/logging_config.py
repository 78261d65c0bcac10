import datetime
import logging
import shutil
from pathlib import Path
from typing import Callable, TextIO
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

LOGGER_NAME = "chat_gateway"

_LOGGING_CONFIGURED = False


def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
    if timezone_name:
        try:
            return ZoneInfo(timezone_name)
        except ZoneInfoNotFoundError:
            pass
    # Fallback to system local timezone
    return datetime.datetime.now().astimezone().tzinfo or datetime.UTC


class LocalTimezoneFormatter(logging.Formatter):
    """
    Logging formatter that forces timestamps into a configured timezone.
    Defaults to the system local timezone when LOG_TIMEZONE is not set
    or when the provided timezone is invalid.
    """

    def __init__(self, *args, timezone_name: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = _resolve_tzinfo(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


class DailyFolderFileHandler(logging.Handler):
    """
    Writes logs to: <log_dir>/<YYYY-MM-DD>/<filename>
    and keeps at most backup_days date folders.
    """

    def __init__(
        self,
        log_dir: Path,
        filename: str,
        backup_days: int = 7,
        encoding: str = "utf-8",
        timezone_name: str | None = None,
        now_fn: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        super().__init__()
        self.log_dir = log_dir
        self.filename = filename
        self.backup_days = backup_days
        self.encoding = encoding
        self.terminator = "\n"
        self._tzinfo = _resolve_tzinfo(timezone_name)
        # now_fn is mainly for tests.
        self._now_fn = now_fn
        self._current_date: datetime.date | None = None
        self._stream: TextIO | None = None
        self._ensure_stream()

    def _today(self) -> datetime.date:
        if self._now_fn is not None:
            now = self._now_fn()
        else:
            now = datetime.datetime.now(tz=self._tzinfo)
        if now.tzinfo is None:
            now = now.replace(tzinfo=self._tzinfo)
        return now.date()

    def _file_path_for_date(self, day: datetime.date) -> Path:
        return self.log_dir / day.isoformat() / self.filename

    def _cleanup_old_dirs(self) -> None:
        if self.backup_days <= 0:
            return
        try:
            dirs = [p for p in self.log_dir.iterdir() if p.is_dir()]
        except OSError:
            return

        dated: list[tuple[datetime.date, Path]] = []
        for p in dirs:
            try:
                day = datetime.date.fromisoformat(p.name)
            except ValueError:
                continue
            dated.append((day, p))

        dated.sort(key=lambda x: x[0])
        if len(dated) <= self.backup_days:
            return
        for _, old_dir in dated[: len(dated) - self.backup_days]:
            try:
                shutil.rmtree(old_dir)
            except OSError:
                pass

    def _ensure_stream(self) -> None:
        today = self._today()
        if self._current_date == today and self._stream:
            return

        self._current_date = today
        if self._stream:
            try:
                self._stream.close()
            except OSError:
                pass
            self._stream = None

        file_path = self._file_path_for_date(today)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        self._stream = open(file_path, "a", encoding=self.encoding)
        self._cleanup_old_dirs()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._ensure_stream()
            if self._stream is None:
                return
            msg = self.format(record)
            self._stream.write(msg + self.terminator)
            self._stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            if self._stream:
                try:
                    self._stream.close()
                except OSError:
                    pass
                self._stream = None
        finally:
            super().close()


def _project_root() -> Path:
    # chat_gateway/logging_config.py -> chat_gateway -> repo root
    return Path(__file__).resolve().parents[1]


def _resolve_log_dir(value: str | Path) -> Path:
    p = value if isinstance(value, Path) else Path(value)
    if p.is_absolute():
        return p
    return _project_root() / p


# Source path fragment -> component tag; first match wins.
_COMPONENT_PATHS: tuple[tuple[str, str], ...] = (
    ("/api/v1/chat/", "pipeline"),
    ("/provider/", "provider"),
    ("/api/", "http"),
)


def infer_log_component(record: logging.LogRecord) -> str:
    """
    Tag a record with the gateway component that produced it:
    pipeline (request building, parsing, normalization, emission),
    provider (registry, signer), http (routes) or app.
    """
    if record.name.startswith("uvicorn"):
        return "access"
    path = (record.pathname or "").replace("\\", "/")
    if f"/{LOGGER_NAME}/" not in path:
        return "app"
    for fragment, component in _COMPONENT_PATHS:
        if fragment in path:
            return component
    return "app"


class ComponentFilter(logging.Filter):
    """
    Sets ``record.component`` for formatters; when ``only`` is given, passes
    just the records of that component.
    """

    def __init__(self, only: str | None = None) -> None:
        super().__init__()
        self.only = only

    def filter(self, record: logging.LogRecord) -> bool:
        component = getattr(record, "component", None) or infer_log_component(record)
        record.component = component
        return self.only is None or component == self.only


def _daily_handler(log_dir: Path, filename: str, formatter: logging.Formatter) -> DailyFolderFileHandler:
    handler = DailyFolderFileHandler(
        log_dir=log_dir,
        filename=filename,
        backup_days=settings.log_backup_days,
        timezone_name=settings.log_timezone,
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    """
    Configure gateway logging under LOG_DIR (default ./logs), one folder per day:

    - app.log: every chat_gateway record
    - pipeline.log: only the chat pipeline, for tracing a single stream
    - access.log: uvicorn access lines

    The console handler sits on the root logger. Safe to call more than once.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_dir = _resolve_log_dir(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level_value = getattr(logging, settings.log_level.upper(), logging.INFO)
    if not isinstance(level_value, int):
        level_value = logging.INFO

    formatter = LocalTimezoneFormatter(
        "%(asctime)s [%(levelname)s] [%(component)s] %(name)s - %(message)s",
        timezone_name=settings.log_timezone,
    )

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level_value)
    app_logger.propagate = True

    app_handler = _daily_handler(log_dir, "app.log", formatter)
    app_handler.addFilter(ComponentFilter())
    app_logger.addHandler(app_handler)

    pipeline_handler = _daily_handler(log_dir, "pipeline.log", formatter)
    pipeline_handler.addFilter(ComponentFilter(only="pipeline"))
    app_logger.addHandler(pipeline_handler)

    access_logger = logging.getLogger("uvicorn.access")
    access_logger.setLevel(level_value)
    access_logger.propagate = True
    access_handler = _daily_handler(log_dir, "access.log", formatter)
    access_handler.addFilter(ComponentFilter())
    access_logger.addHandler(access_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.addFilter(ComponentFilter())
        root_logger.addHandler(console_handler)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(LOGGER_NAME)
