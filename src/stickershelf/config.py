from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    data_dir: str = Field(
        default="data/packs",
        validation_alias=AliasChoices("STICKER_DATA_DIR", "STICKER_PACKS_DIR"),
    )
    bundled_dir: str = Field(default="data/bundled", alias="STICKER_BUNDLED_DIR")
    pending_dir: str = Field(default="data/custom_stickers", alias="STICKER_PENDING_DIR")
    generated_pack_prefixes: list[str] = Field(
        default=["custom_", "colorstickers_"],
        alias="GENERATED_PACK_PREFIXES",
        description=(
            "动态生成表情包目录名前缀（JSON 格式，如 "
            '["custom_","colorstickers_"]）。'
            "只有匹配前缀的目录才会被扫描。"
        ),
    )
    provider_authority: str = Field(
        default="stickershelf.provider",
        min_length=1,
        alias="PROVIDER_AUTHORITY",
    )
    host_base_url: str = Field(default="", alias="HOST_BASE_URL")
    host_timeout_seconds: float = Field(default=10.0, alias="HOST_TIMEOUT_SECONDS")
    tray_icon_size: int = Field(default=96, gt=0, alias="TRAY_ICON_SIZE")
    provider_host: str = Field(default="127.0.0.1", alias="PROVIDER_HOST")
    provider_port: int = Field(default=8765, alias="PROVIDER_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def host_enabled(self) -> bool:
        """未配置 HOST_BASE_URL 时不与宿主交互（不发送通知、不查询白名单）。"""
        return bool(self.host_base_url.strip())
