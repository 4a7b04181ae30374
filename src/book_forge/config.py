"""Generation settings for book_forge.

GenerationConfig gathers every knob of a run: which model answers which
stage, how many units may call the model at once, how often calls and
stages are retried, and where books are written.

Sources, later ones winning:
1. Field defaults
2. User file ~/.config/book-forge/config.toml
3. Project file .book-forge.toml (or an explicit path)
4. BOOK_FORGE_* environment variables
5. Overrides applied with update(), e.g. from the CLI

Example:
    >>> config = GenerationConfig.load()
    >>> config.update(model="gpt-4o-mini", transition_pass=True)
    >>> config.save("~/.config/book-forge/config.toml")
"""


import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError, StageError
from .retry import RetryConfig

# Stages that may override the default model
MODEL_STAGES = ("template", "paragraph", "refinement", "repair")


def _coerce(raw: str, kind: Any) -> Any:
    """Convert an environment string to a config field type."""
    if kind is bool:
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if kind is int:
        return int(raw)
    if kind is float:
        return float(raw)
    return raw


@dataclass
class GenerationConfig:
    """Configuration for book generation.

    Attributes:
        Model Settings:
            model: Default model identifier for every generation call
            template_model: Override for outline and chapter plan calls
            paragraph_model: Override for paragraph generation calls
            refinement_model: Override for refinement and transition calls
            repair_model: Override for model-assisted JSON repair
            temperature: Sampling temperature (0.0 = deterministic)
            max_concurrent: Maximum concurrent generation units

        Retry Settings:
            retry_attempts: Attempts per generation step
            retry_delay: Fixed delay between attempts (seconds)
            stage_retry_attempts: Attempts per pipeline stage job

        Normalization Settings:
            generation_parse_iterations: Repair passes for generation output
            refinement_parse_iterations: Repair passes for refinement output

        Pipeline Settings:
            failure_placeholder: Text written to paragraphs that failed to generate
            transition_pass: Run the transition smoothing pass after refinement

        Output Settings:
            output_dir: Base directory for persisted books
            debug_mode: Enable debug logging

    Example:
        >>> config = GenerationConfig()
        >>> config.max_concurrent = 5
        >>> config.model_for("repair")
        'gpt-4o'
    """

    # Model settings
    model: str = "gpt-4o"
    template_model: str | None = None
    paragraph_model: str | None = None
    refinement_model: str | None = None
    repair_model: str | None = None
    temperature: float = 0.7
    max_concurrent: int = 3

    # Retry settings
    retry_attempts: int = 3
    retry_delay: float = 2.0
    stage_retry_attempts: int = 1

    # Normalization settings
    generation_parse_iterations: int = 5
    refinement_parse_iterations: int = 3

    # Pipeline settings
    failure_placeholder: str = "[Paragraph generation failed]"
    transition_pass: bool = False

    # Output settings
    output_dir: Path = field(default_factory=lambda: Path("output"))
    debug_mode: bool = False

    def __post_init__(self) -> None:
        """Validate configuration values after initialization."""
        self._validate()

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigurationError: If any configuration value is invalid
        """
        # Model identifiers are deployment specific, only require non-empty
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError("model must be a non-empty string", model=self.model)

        for stage in MODEL_STAGES:
            override = getattr(self, f"{stage}_model")
            if override is not None and not str(override).strip():
                raise ConfigurationError(
                    f"{stage}_model must be a non-empty string when set",
                    stage=stage,
                )

        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigurationError(
                "Temperature must be between 0.0 and 2.0",
                temperature=self.temperature,
            )

        if self.max_concurrent < 1:
            raise ConfigurationError(
                "max_concurrent must be at least 1",
                max_concurrent=self.max_concurrent,
            )

        if self.retry_attempts < 1:
            raise ConfigurationError(
                "retry_attempts must be at least 1",
                retry_attempts=self.retry_attempts,
            )

        if self.retry_delay < 0:
            raise ConfigurationError(
                "retry_delay must be non-negative",
                retry_delay=self.retry_delay,
            )

        if self.stage_retry_attempts < 1:
            raise ConfigurationError(
                "stage_retry_attempts must be at least 1",
                stage_retry_attempts=self.stage_retry_attempts,
            )

        if self.generation_parse_iterations < 1:
            raise ConfigurationError(
                "generation_parse_iterations must be at least 1",
                generation_parse_iterations=self.generation_parse_iterations,
            )

        if self.refinement_parse_iterations < 1:
            raise ConfigurationError(
                "refinement_parse_iterations must be at least 1",
                refinement_parse_iterations=self.refinement_parse_iterations,
            )

        if not self.failure_placeholder.strip():
            raise ConfigurationError("failure_placeholder must not be blank")

        # Ensure output_dir is a Path (may receive str from config/env)
        if not isinstance(self.output_dir, Path):  # type: ignore[reportUnnecessaryIsInstance]
            self.output_dir = Path(self.output_dir)

    def generation_retry(self) -> RetryConfig:
        """Retry policy for one generation step (call plus normalization)."""
        return RetryConfig(max_attempts=self.retry_attempts, initial_delay=self.retry_delay)

    def stage_retry(self) -> RetryConfig:
        """Retry policy for stage jobs; only StageError is attempted again."""
        return RetryConfig(
            max_attempts=self.stage_retry_attempts,
            initial_delay=self.retry_delay,
            retryable=(StageError,),
        )

    def model_for(self, stage: str) -> str:
        """Resolve the model identifier for a pipeline stage.

        Args:
            stage: One of "template", "paragraph", "refinement", "repair"

        Returns:
            The stage override if set, otherwise the default model

        Raises:
            ConfigurationError: If the stage name is unknown
        """
        if stage not in MODEL_STAGES:
            raise ConfigurationError(
                f"Unknown model stage: {stage}",
                stage=stage,
                valid_stages=", ".join(MODEL_STAGES),
            )
        return getattr(self, f"{stage}_model") or self.model

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        load_user_config: bool = True,
        load_env: bool = True,
    ) -> "GenerationConfig":
        """Load configuration from file(s) and environment variables.

        Configuration is loaded in this order (later overrides earlier):
        1. Default values
        2. User config file (~/.config/book-forge/config.toml)
        3. Project config file (.book-forge.toml or specified path)
        4. Environment variables (BOOK_FORGE_*)

        Args:
            config_path: Path to project config file (optional)
            load_user_config: Whether to load user config file
            load_env: Whether to load environment variables

        Returns:
            Loaded and validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config_dict: dict[str, Any] = {}

        if load_user_config:
            user_config_path = Path.home() / ".config" / "book-forge" / "config.toml"
            if user_config_path.exists():
                config_dict.update(cls._load_toml(user_config_path))

        if config_path:
            project_path = Path(config_path)
            if project_path.exists():
                config_dict.update(cls._load_toml(project_path))
        else:
            default_path = Path(".book-forge.toml")
            if default_path.exists():
                config_dict.update(cls._load_toml(default_path))

        if load_env:
            config_dict.update(cls._load_env())

        unknown = set(config_dict) - set(cls.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(
                "Unknown configuration keys",
                keys=", ".join(sorted(unknown)),
            )

        return cls(**config_dict)

    @staticmethod
    def _load_toml(path: Path) -> dict[str, Any]:
        """Load configuration from TOML file.

        Args:
            path: Path to TOML file

        Returns:
            Dictionary of configuration values

        Raises:
            ConfigurationError: If TOML file is invalid
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            # Extract book-forge section if present
            if "book-forge" in data:
                return data["book-forge"]
            return data

        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(
                f"Failed to load configuration from {path}",
                path=str(path),
                error=str(e),
            ) from e

    @classmethod
    def _load_env(cls) -> dict[str, Any]:
        """Read BOOK_FORGE_* variables, converted to each field's type.

        For example BOOK_FORGE_MAX_CONCURRENT=5 or BOOK_FORGE_TRANSITION_PASS=yes.
        Variables that do not name a field are passed through so load()
        reports them as unknown keys.

        Raises:
            ConfigurationError: If a value cannot be converted
        """
        prefix = "BOOK_FORGE_"
        fields = cls.__dataclass_fields__
        values: dict[str, Any] = {}

        for name, raw in os.environ.items():
            if not name.startswith(prefix):
                continue
            key = name[len(prefix) :].lower()
            kind = fields[key].type if key in fields else str
            try:
                values[key] = _coerce(raw, kind)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for environment variable {name}",
                    variable=name,
                    value=raw,
                ) from e

        return values

    def save(self, path: str | Path) -> None:
        """Save configuration to TOML file.

        Unset model overrides are omitted since TOML has no null value.

        Args:
            path: Path to save configuration file

        Raises:
            ConfigurationError: If save fails
        """
        import tomli_w

        path = Path(path).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            config_dict = {k: v for k, v in self.to_dict().items() if v is not None}
            with open(path, "wb") as f:
                tomli_w.dump(config_dict, f)
        except (OSError, TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Failed to save configuration to {path}",
                path=str(path),
                error=str(e),
            ) from e

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration
        """
        result: dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if isinstance(value, Path):
                result[key] = str(value)
            else:
                result[key] = value
        return result

    def update(self, **kwargs: Any) -> None:
        """Update configuration values.

        Args:
            **kwargs: Configuration values to update

        Raises:
            ConfigurationError: If a key is unknown or updated values are invalid
        """
        for key, value in kwargs.items():
            if key in self.__dataclass_fields__:
                setattr(self, key, value)
            else:
                raise ConfigurationError(
                    f"Unknown configuration key: {key}",
                    key=key,
                    valid_keys=", ".join(self.__dataclass_fields__.keys()),
                )

        self._validate()
