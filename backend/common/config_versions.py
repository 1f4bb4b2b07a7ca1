"""Versioned shape of the persisted user config.

Each historical version keeps its own model. Upgrades are pure functions from
one version to the next; ``CONFIG_CHAIN`` lists them in order so a payload at
any known version can be walked forward to ``CURRENT_CONFIG_VERSION``.
"""
from enum import Enum
from typing import Callable, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, Field

CURRENT_CONFIG_VERSION = "v3"


class ThemeMode(str, Enum):
    light = "LIGHT"
    dark = "DARK"
    system = "SYSTEM"


class EditorType(str, Enum):
    vs_code = "VS_CODE"
    cursor = "CURSOR"
    zed = "ZED"
    custom = "CUSTOM"


class NotificationConfig(BaseModel):
    enabled: bool = True
    sound_enabled: bool = True


class EditorConfig(BaseModel):
    editor_type: EditorType = EditorType.vs_code
    custom_command: Optional[str] = None


class TelegramConfig(BaseModel):
    """Bot link state. ``chat_id`` being set is what "linked" means."""

    chat_id: Optional[int] = None
    user_id: Optional[int] = None
    username: Optional[str] = None
    notifications_enabled: bool = False
    notify_on_task_done: bool = False
    include_llm_summary: bool = False
    stream_enabled: bool = False

    @property
    def is_linked(self) -> bool:
        return self.chat_id is not None


# --- v1: base layout (also assumed for untagged payloads) ---

class ConfigV1(BaseModel):
    config_version: Literal["v1"] = "v1"
    theme: ThemeMode = ThemeMode.system
    disclaimer_acknowledged: bool = False
    onboarding_acknowledged: bool = False
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    analytics_enabled: bool = True
    workspace_dir: Optional[str] = None


# --- v2: editor integration and branch prefix ---

class ConfigV2(BaseModel):
    config_version: Literal["v2"] = "v2"
    theme: ThemeMode = ThemeMode.system
    disclaimer_acknowledged: bool = False
    onboarding_acknowledged: bool = False
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    analytics_enabled: bool = True
    workspace_dir: Optional[str] = None
    editor: EditorConfig = Field(default_factory=EditorConfig)
    git_branch_prefix: str = "vk"


# --- v3: Telegram bot link ---

class ConfigV3(BaseModel):
    config_version: Literal["v3"] = "v3"
    theme: ThemeMode = ThemeMode.system
    disclaimer_acknowledged: bool = False
    onboarding_acknowledged: bool = False
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    analytics_enabled: bool = True
    workspace_dir: Optional[str] = None
    editor: EditorConfig = Field(default_factory=EditorConfig)
    git_branch_prefix: str = "vk"
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)


Config = ConfigV3


def upgrade_v1_to_v2(old: ConfigV1) -> ConfigV2:
    return ConfigV2(
        theme=old.theme,
        disclaimer_acknowledged=old.disclaimer_acknowledged,
        onboarding_acknowledged=old.onboarding_acknowledged,
        notifications=old.notifications,
        analytics_enabled=old.analytics_enabled,
        workspace_dir=old.workspace_dir,
        editor=EditorConfig(),
        git_branch_prefix="vk",
    )


def upgrade_v2_to_v3(old: ConfigV2) -> ConfigV3:
    return ConfigV3(
        theme=old.theme,
        disclaimer_acknowledged=old.disclaimer_acknowledged,
        onboarding_acknowledged=old.onboarding_acknowledged,
        notifications=old.notifications,
        analytics_enabled=old.analytics_enabled,
        workspace_dir=old.workspace_dir,
        editor=old.editor,
        git_branch_prefix=old.git_branch_prefix,
        telegram=TelegramConfig(),
    )


# (tag, model for that tag, upgrade to the next tag). The last entry is current.
CONFIG_CHAIN: List[Tuple[str, Type[BaseModel], Optional[Callable[[BaseModel], BaseModel]]]] = [
    ("v1", ConfigV1, upgrade_v1_to_v2),
    ("v2", ConfigV2, upgrade_v2_to_v3),
    (CURRENT_CONFIG_VERSION, ConfigV3, None),
]

KNOWN_VERSIONS = [tag for tag, _, _ in CONFIG_CHAIN]


def migrate(payload: dict, from_version: str) -> Config:
    """Validate ``payload`` as ``from_version`` and upgrade it to current.

    Raises ``ValueError`` for an unknown tag and ``pydantic.ValidationError``
    when the payload does not fit its declared version.
    """
    if from_version not in KNOWN_VERSIONS:
        raise ValueError(f"Unknown config version: {from_version}")
    start = KNOWN_VERSIONS.index(from_version)
    _, model, _ = CONFIG_CHAIN[start]
    config = model.model_validate(payload)
    for _, _, upgrade in CONFIG_CHAIN[start:]:
        if upgrade is not None:
            config = upgrade(config)
    return config
