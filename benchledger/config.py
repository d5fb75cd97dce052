"""Instance configuration — TOML file plus env overrides.

Settings are read, highest priority first, from constructor arguments,
``BENCHLEDGER_*`` environment variables, a ``.env`` file and the TOML
configuration file (``~/.benchledger/config.toml`` unless overridden).

Examples
--------
Minimal configuration file::

    instance_id = "0b8c6a9e-3f0e-4c53-9d51-56d8f1f6e7b1"
    toolchain_home = "/usr/lib/jvm/java-8-openjdk"
    db_remote = "git@github.com:example/bench-records.git"
    framework_remote = "https://github.com/playframework/playframework.git"
    apps_remote = "https://github.com/playframework/prune-apps.git"

    [[matrix]]
    framework_branch = "master"
    framework_range = ["2.4.0", "HEAD"]
    test_names = ["scala-simple"]

Override via environment::

    export BENCHLEDGER_LOG_LEVEL=DEBUG
    export BENCHLEDGER_MAX_TEST_RUNS=5
"""

from __future__ import annotations

import uuid
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from benchledger.core.errors import BenchLedgerError
from benchledger.models.config import BenchmarkDefinition, MatrixSpec
from benchledger.models.execution import Command

DEFAULT_HOME = Path.home() / ".benchledger"
DEFAULT_CONFIG_FILE = DEFAULT_HOME / "config.toml"


class ConfigFileMissingError(BenchLedgerError):
    """Raised when the configuration file does not exist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Configuration file not found: {path}")


class ConfigurationError(BenchLedgerError):
    """Raised when a setting needed for an operation is absent."""


class BenchSettings(BaseSettings):
    """Everything one tool instance needs to know."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BENCHLEDGER_",
        env_nested_delimiter="__",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity of this instance; records from other instances never count
    # as completed work here.
    instance_id: uuid.UUID | None = None
    log_level: str = "INFO"

    # Local layout
    home: Path = DEFAULT_HOME
    db_home: Path | None = None
    framework_home: Path | None = None
    apps_home: Path | None = None
    publish_home: Path | None = None  # local repository the framework publishes to

    # Remotes
    db_remote: str | None = None
    db_branch: str = "master"
    framework_remote: str | None = None
    apps_remote: str | None = None

    # Toolchain
    toolchain_home: Path | None = None
    toolchain_version_command: Command = Command(
        program="<toolchain.home>/bin/java",
        args=["-version"],
    )

    # Framework build
    framework_build_commands: list[Command] = Field(
        default_factory=lambda: [
            Command(
                program="./build",
                args=["-Dsbt.ivy.home=<publish.home>", "publish-local"],
                working_dir="<framework.home>/framework",
                env={"JAVA_HOME": "<toolchain.home>", "LANG": "en_US.UTF-8"},
            )
        ]
    )
    framework_clean_paths: list[str] = [
        "<publish.home>/local",
        "<framework.home>/framework/target",
        "<framework.home>/framework/project/target",
    ]
    framework_expected_output: str = "<publish.home>/local"

    # Application build (``<project>`` is the test project name)
    application_build_commands: list[Command] = Field(
        default_factory=lambda: [
            Command(
                program="sbt",
                args=["-Dsbt.ivy.home=<publish.home>", "stage"],
                working_dir="<apps.home>/<project>",
                env={"JAVA_HOME": "<toolchain.home>"},
            )
        ]
    )
    application_expected_output: str = (
        "<apps.home>/<project>/target/universal/stage/bin/<project>"
    )

    # Benchmark run
    server_command: Command = Command(
        program="<apps.home>/<project>/target/universal/stage/bin/<project>",
        args=["-Dhttp.port=<server.port>", "-Dpidfile.path=/dev/null"],
        working_dir="<apps.home>/<project>",
        env={"JAVA_HOME": "<toolchain.home>"},
    )
    server_port: int = 9000
    server_startup_seconds: float = 10.0
    load_generator_program: str = "wrk"
    benchmarks: dict[str, BenchmarkDefinition] = {}

    # What to test
    matrix: list[MatrixSpec] = []
    max_test_runs: int | None = Field(default=None, ge=0)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _default_locations(self) -> BenchSettings:
        if self.db_home is None:
            self.db_home = self.home / "db"
        if self.framework_home is None:
            self.framework_home = self.home / "framework"
        if self.apps_home is None:
            self.apps_home = self.home / "apps"
        if self.publish_home is None:
            self.publish_home = self.home / "ivy"
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def state_path(self) -> Path:
        """The pointer set file; local to this instance, never shared."""
        return self.home / "state.json"

    def missing_required(self) -> list[str]:
        """Names of settings without which nothing can run."""
        missing: list[str] = []
        if self.instance_id is None:
            missing.append("instance_id")
        if self.toolchain_home is None:
            missing.append("toolchain_home")
        return missing

    def placeholders(self) -> dict[str, str]:
        """``<token> -> value`` substitutions for command templates."""
        return {
            "<home>": str(self.home),
            "<db.home>": str(self.db_home),
            "<framework.home>": str(self.framework_home),
            "<apps.home>": str(self.apps_home),
            "<publish.home>": str(self.publish_home),
            "<toolchain.home>": str(self.toolchain_home or ""),
            "<server.port>": str(self.server_port),
        }

    def benchmark(self, test_name: str) -> BenchmarkDefinition:
        return self.benchmarks.get(test_name, BenchmarkDefinition())

    def require_remote(self, name: str) -> str:
        value = getattr(self, name)
        if not value:
            raise ConfigurationError(
                f'Please provide a value for "{name}" in your configuration file.'
            )
        return value


def load_settings(config_file: Path | None = None) -> BenchSettings:
    """Load settings with *config_file* (or the default) as the TOML source."""
    path = Path(config_file).expanduser() if config_file else DEFAULT_CONFIG_FILE
    if not path.is_file():
        raise ConfigFileMissingError(path)

    class _FileSettings(BenchSettings):
        model_config = SettingsConfigDict(toml_file=path)

    return _FileSettings()


def example_config(instance_id: uuid.UUID | None = None) -> str:
    """Starter configuration text with a freshly generated instance id."""
    return (
        "# The UUID used to identify this instance in benchmark records.\n"
        f'instance_id = "{instance_id or uuid.uuid4()}"\n'
        "\n"
        "# The location of the JDK used for builds and benchmark runs.\n"
        '#toolchain_home = "/usr/lib/jvm/java-8-openjdk"\n'
    )
