"""Fixed catalog of the artifacts and services guarded at startup."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, Type
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, RootModel

from .models import utc_now

NOTES_FILE_NAME = "notes.json"
SETTINGS_FILE_NAME = "settings.json"
SNIPPETS_FILE_NAME = "snippets.json"
TEMPLATES_FILE_NAME = "templates.json"
SAFE_MODE_FILE_NAME = "safemode.json"
STARTUP_MARKER_FILE_NAME = "startup-marker.txt"

BACKUPS_DIR_NAME = "backups"
LOGS_DIR_NAME = "logs"

RESOURCE_ROOT = Path(__file__).parent / "resources"


class WindowRect(BaseModel):
    top: float = 100
    left: float = 100
    width: float = 300
    height: float = 200


class HotkeySettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    new_note: str = "Ctrl+Shift+N"
    toggle_visibility: str = "Ctrl+Shift+D"
    quick_capture: str = "Ctrl+Shift+Q"
    snippet_browser: str = "Ctrl+Shift+I"


class CloudSyncSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: bool = False
    provider: Optional[str] = None
    sync_interval_seconds: int = 300
    encrypt_data: bool = True


class AppSettings(BaseModel):
    """Application settings as stored in settings.json."""
    model_config = ConfigDict(extra="allow")

    default_opacity: float = 0.9
    default_font_size: int = 13
    default_width: int = 320
    default_height: int = 220
    auto_save_delay_ms: int = 500
    theme: str = "Dark"
    theme_mode: str = "System"
    language: str = "en"
    hotkeys: HotkeySettings = Field(default_factory=HotkeySettings)
    cloud_sync: CloudSyncSettings = Field(default_factory=CloudSyncSettings)
    auto_backup_enabled: bool = True
    backup_interval_minutes: int = 30
    max_backup_count: int = 10


class Note(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str = "Untitled Note"
    content: str = ""
    language: str = "PlainText"
    is_pinned: bool = True
    opacity: float = 0.9
    window_rect: WindowRect = Field(default_factory=WindowRect)
    created_date: datetime = Field(default_factory=utc_now)
    modified_date: datetime = Field(default_factory=utc_now)
    group_id: Optional[str] = None
    tag_ids: List[str] = Field(default_factory=list)


class AppData(BaseModel):
    """Note data as stored in notes.json."""
    model_config = ConfigDict(extra="allow")

    app_settings: AppSettings = Field(default_factory=AppSettings)
    notes: List[Note] = Field(default_factory=list)
    groups: List[dict] = Field(default_factory=list)
    tags: List[dict] = Field(default_factory=list)


class EntryList(RootModel[List[dict]]):
    """Snippets and templates are stored as JSON arrays of objects."""


def _default_app_data() -> BaseModel:
    return AppData(notes=[Note(
        title="Welcome",
        content="Your notes are stored locally. This note was created because no note data was found.",
        is_pinned=True,
    )])


class ConfigFileSpec(BaseModel):
    """A known configuration file and how to rebuild it."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    label: str
    schema_model: Type[BaseModel]
    default_factory: Callable[[], BaseModel]
    critical: bool = False

    def default_payload(self) -> str:
        return self.default_factory().model_dump_json(indent=2)


CONFIG_FILES: List[ConfigFileSpec] = [
    ConfigFileSpec(name=NOTES_FILE_NAME, label="Notes", schema_model=AppData,
                   default_factory=_default_app_data, critical=True),
    ConfigFileSpec(name=SETTINGS_FILE_NAME, label="Settings", schema_model=AppSettings,
                   default_factory=AppSettings),
    ConfigFileSpec(name=SNIPPETS_FILE_NAME, label="Snippets", schema_model=EntryList,
                   default_factory=lambda: EntryList([])),
    ConfigFileSpec(name=TEMPLATES_FILE_NAME, label="Templates", schema_model=EntryList,
                   default_factory=lambda: EntryList([])),
]


def config_spec_for(path: str) -> Optional[ConfigFileSpec]:
    name = Path(path).name.lower()
    for spec in CONFIG_FILES:
        if spec.name == name:
            return spec
    return None


def default_payload_for(path: str) -> str:
    """Default content for a configuration file; unknown files get an empty object."""
    spec = config_spec_for(path)
    if spec is None:
        return "{}"
    return spec.default_payload()


def parse_configuration(path: str, content: str) -> Any:
    """Parse configuration content, raising ``ValueError`` if it is not structurally valid.

    pydantic's ValidationError and json.JSONDecodeError are both ValueError
    subclasses, so callers only need to catch one type.
    """
    data = json.loads(content)
    spec = config_spec_for(path)
    if spec is None:
        return data
    return spec.schema_model.model_validate(data)


def required_directories(app_data_path: Path) -> List[Path]:
    return [app_data_path, app_data_path / BACKUPS_DIR_NAME, app_data_path / LOGS_DIR_NAME]


def config_file_paths(app_data_path: Path) -> List[Path]:
    return [app_data_path / spec.name for spec in CONFIG_FILES]


class ResourceSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    relative_path: str
    critical: bool = False


BUNDLED_RESOURCES: List[ResourceSpec] = [
    ResourceSpec(relative_path="themes/dark.json", critical=True),
    ResourceSpec(relative_path="themes/light.json", critical=True),
    ResourceSpec(relative_path="strings/en.json"),
]

ESSENTIAL_SERVICES = (
    "file_system",
    "error_handler",
    "exception_logger",
    "storage",
    "note_data",
    "theme",
    "debounce",
    "dialog",
)

NON_ESSENTIAL_SERVICES = (
    "cloud_sync",
    "hotkeys",
    "markdown_preview",
    "snippets",
    "templates",
    "export",
    "search",
    "links",
    "group_management",
    "tag_management",
    "formatter",
    "encryption",
)

# Validation treats these modules as hard requirements of the hosting process.
REQUIRED_MODULES = ("pydantic", "aiosqlite", "fastapi", "uvicorn", "watchdog", "psutil")
OPTIONAL_MODULES = ("httpx",)
MIN_PYTHON = (3, 10)
