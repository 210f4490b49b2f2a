from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    SettingsConfigDict,
)

DEFAULT_SERVICES: list[str] = [
    "user-service",
    "product-service",
    "order-service",
    "notification-service",
    "gateway-service",
]


class _CsvListParseMixin:
    """Mixin that parses comma-separated env strings for designated list fields."""

    _CSV_LIST_FIELDS: frozenset[str] = frozenset(
        {"known_services", "service_health_urls"}
    )

    def prepare_field_value(
        self, field_name: str, field: Any, value: Any, value_is_complex: bool
    ) -> Any:
        if field_name in self._CSV_LIST_FIELDS and isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()] if value else []
        return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]


class _CsvAwareEnvSource(_CsvListParseMixin, EnvSettingsSource):
    pass


class _CsvAwareDotEnvSource(_CsvListParseMixin, DotEnvSettingsSource):
    pass


class ConductorConfig(BaseSettings):
    # Decision engine
    confidence_threshold: float = 0.6
    max_parallel_actions: int = 5

    # Learning engine
    min_data_points: int = 10
    learning_confidence_threshold: float = 0.7
    learning_interval_ms: int = 300_000

    # Memory store
    memory_max_entries_per_type: int = 10_000
    memory_retention_hours: int = 168
    cleanup_interval_ms: int = 3_600_000
    max_recent_failures: int = 100
    max_test_results: int = 1000
    max_learning_records: int = 500

    # Context analysis
    dependency_hop_limit: int = 2
    known_services: list[str] = Field(default_factory=lambda: list(DEFAULT_SERVICES))

    # Monitoring collaborator ("name=url" pairs)
    service_health_urls: list[str] = Field(default_factory=list)
    health_check_timeout_seconds: float = 5.0
    monitor_host_metrics: bool = False
    monitor_refresh_seconds: int = 30

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_", env_file=".env", env_file_encoding="utf-8"
    )

    @field_validator("known_services", "service_health_urls", mode="before")
    @classmethod
    def parse_csv_list(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @property
    def health_endpoints(self) -> dict[str, str]:
        """Parse ``service_health_urls`` into a service -> URL map."""
        endpoints: dict[str, str] = {}
        for pair in self.service_health_urls:
            name, sep, url = pair.partition("=")
            if sep and name.strip() and url.strip():
                endpoints[name.strip()] = url.strip()
        return endpoints

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        return (
            init_settings,
            _CsvAwareEnvSource(settings_cls),
            _CsvAwareDotEnvSource(
                settings_cls,
                env_file=settings_cls.model_config.get("env_file"),
                env_file_encoding=settings_cls.model_config.get("env_file_encoding"),
            ),
            _CsvAwareDotEnvSource(
                settings_cls,
                env_file=".env.local",
                env_file_encoding=settings_cls.model_config.get("env_file_encoding"),
            ),
            file_secret_settings,
        )
