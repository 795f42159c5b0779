"""
APOD Viewer
Small FastAPI front-end that renders NASA's Astronomy Picture of the Day.

GET /  shows today's picture, POST / shows the picture for a submitted date.
Everything else under / is served from the views directory.

Run from the project directory with `python main.py`; the views directory
beside this module holds the page template and assets.
"""

from fastapi import FastAPI, Form
from fastapi.responses import HTMLResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from dotenv import load_dotenv
from jinja2 import TemplateError
from uvicorn.config import LOG_LEVELS
import httpx
import io
import logging
import os
import re
import sys
import uvicorn

logger = logging.getLogger("apod_viewer")

# ============================================================================
# CONFIGURATION
# ============================================================================

DATE_FORMAT = "%Y-%m-%d"
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
APOD_FIRST_DATE = datetime(1995, 6, 16).date()

DEFAULT_API_URL = "https://api.nasa.gov/planetary/apod"
DEFAULT_VIEWS_DIR = Path(__file__).resolve().parent / "views"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ConfigError(Exception):
    """Startup configuration could not be loaded."""


@dataclass(frozen=True)
class Settings:
    api_key: str
    api_url: str = DEFAULT_API_URL
    host: str = "0.0.0.0"
    port: int = 8080
    timeout: Optional[float] = 8.0
    views_dir: Path = DEFAULT_VIEWS_DIR
    log_level: str = "info"


def _number_from_env(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def load_settings(env_file: str = ".env") -> Settings:
    """
    Load settings from the environment file and process environment.

    The environment file is mandatory; a missing or unreadable file
    raises ConfigError.
    """
    path = Path(env_file)
    if not path.is_file():
        raise ConfigError(f"Error loading {env_file} file: not found")
    try:
        load_dotenv(path)
    except OSError as e:
        raise ConfigError(f"Error loading {env_file} file: {e}") from e

    api_key = os.getenv("NASA_API_KEY")
    if not api_key:
        logger.warning("NASA_API_KEY is not set, falling back to DEMO_KEY")
        api_key = "DEMO_KEY"

    timeout = _number_from_env("APOD_TIMEOUT", 8.0, float)

    log_level = os.getenv("LOG_LEVEL", "info").lower()
    if log_level not in LOG_LEVELS:
        raise ConfigError(
            f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {log_level!r}"
        )

    return Settings(
        api_key=api_key,
        api_url=os.getenv("APOD_API_URL", DEFAULT_API_URL),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_number_from_env("PORT", 8080, int),
        timeout=timeout or None,  # 0 disables the timeout
        views_dir=Path(os.getenv("VIEWS_DIR", str(DEFAULT_VIEWS_DIR))),
        log_level=log_level,
    )

# ============================================================================
# DATE HELPERS
# ============================================================================

def current_date() -> str:
    """Today's date in server local time, formatted YYYY-MM-DD."""
    return datetime.now().strftime(DATE_FORMAT)


def is_valid_apod_date(value: str) -> bool:
    """True if value is a YYYY-MM-DD date inside the APOD archive."""
    if not DATE_PATTERN.match(value):
        return False
    try:
        date_obj = datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        return False
    return APOD_FIRST_DATE <= date_obj <= datetime.now().date()

# ============================================================================
# APOD CLIENT
# ============================================================================

class ApodFetchError(Exception):
    """The APOD record could not be fetched or decoded."""


@dataclass(frozen=True)
class ApodRecord:
    date: str
    explanation: str
    url: str
    title: str
    media_type: Optional[str] = None
    hdurl: Optional[str] = None
    copyright: Optional[str] = None

    REQUIRED = ("date", "explanation", "url", "title")
    OPTIONAL = ("media_type", "hdurl", "copyright")

    @classmethod
    def from_json(cls, data: Any) -> "ApodRecord":
        """Build a record from a decoded APOD body, rejecting other shapes."""
        if not isinstance(data, dict):
            raise ValueError("APOD response is not a JSON object")

        fields: Dict[str, Optional[str]] = {}
        for name in cls.REQUIRED:
            value = data[name]
            if not isinstance(value, str):
                raise ValueError(f"APOD field {name!r} is not a string")
            fields[name] = value
        for name in cls.OPTIONAL:
            value = data.get(name)
            fields[name] = value if isinstance(value, str) else None
        return cls(**fields)


class ApodClient:
    """Fetches one APOD record per call. Holds no per-request state."""

    def __init__(self, settings: Settings,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    async def fetch(self, date: str) -> ApodRecord:
        params = {"api_key": self.settings.api_key, "date": date}

        try:
            async with httpx.AsyncClient(timeout=self.settings.timeout,
                                         transport=self._transport) as client:
                response = await client.get(self.settings.api_url, params=params)
                response.raise_for_status()
                data = response.json()
            return ApodRecord.from_json(data)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ApodFetchError(f"APOD request failed for {date!r}") from e
        except (KeyError, ValueError) as e:
            raise ApodFetchError(f"Malformed APOD response for {date!r}") from e

# ============================================================================
# VIEW RENDERER
# ============================================================================

@dataclass(frozen=True)
class ViewContext:
    date: str
    record: Optional[ApodRecord]


class ViewRenderer:
    """
    Renders the page template into a writable sink.

    The template is parsed once here; a missing or broken template raises
    jinja2.TemplateError immediately.
    """

    def __init__(self, views_dir: Path, template_name: str = "index.html"):
        self.templates = Jinja2Templates(directory=str(views_dir))
        self.template = self.templates.get_template(template_name)

    def render(self, context: ViewContext, sink) -> None:
        for chunk in self.template.generate(date=context.date,
                                            record=context.record):
            sink.write(chunk)

# ============================================================================
# APPLICATION
# ============================================================================

def handle_error(message: str, exc: Exception) -> PlainTextResponse:
    """Log the failure and return the generic error response."""
    cause = exc.__cause__ or exc
    logger.error(f"Error: {message} ({exc}: {cause!r})")
    return PlainTextResponse(message, status_code=500)


def create_app(settings: Settings,
               client: Optional[ApodClient] = None,
               renderer: Optional[ViewRenderer] = None) -> FastAPI:
    """Build the application. Template errors here are fatal."""
    client = client or ApodClient(settings)
    renderer = renderer or ViewRenderer(settings.views_dir)

    app = FastAPI(
        title="APOD Viewer",
        description="NASA Astronomy Picture of the Day viewer",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
    )

    async def render_page(date: str):
        try:
            record = await client.fetch(date)
        except ApodFetchError as e:
            return handle_error("API request error", e)

        buffer = io.StringIO()
        try:
            renderer.render(ViewContext(date=date, record=record), buffer)
        except Exception as e:
            return handle_error("Template rendering error", e)
        return HTMLResponse(buffer.getvalue())

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": app.version,
            "service": "apod-viewer"
        }

    @app.get("/", response_class=HTMLResponse)
    async def index():
        """Today's picture."""
        return await render_page(current_date())

    @app.post("/", response_class=HTMLResponse)
    async def submit(date: str = Form("")):
        """Picture for the submitted date."""
        if not is_valid_apod_date(date):
            logger.info(f"Rejected submitted date {date!r}")
            return PlainTextResponse("Invalid date", status_code=400)
        return await render_page(date)

    # Mounted last so the routes above take precedence.
    app.mount("/", StaticFiles(directory=str(settings.views_dir)), name="views")

    return app

# ============================================================================
# APPLICATION STARTUP
# ============================================================================

def main():
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        settings = load_settings()
        app = create_app(settings)
    except (ConfigError, TemplateError, RuntimeError) as e:
        logger.critical(f"Startup failed: {e}")
        sys.exit(1)

    logging.getLogger().setLevel(LOG_LEVELS[settings.log_level])
    logger.info(f"Server started, open http://localhost:{settings.port} in a browser")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level
    )


if __name__ == "__main__":
    main()
