"""
Crisis Sample Dataset Loader

Utilities for loading and validating the labelled sample set shipped with
Lifeline. The dataset is used for:
- Accuracy checks: compare crisis levels and actions against expectations
- Demo scripting: reproducible runs through the full pipeline
- Benchmark testing: a fixed latency baseline

Dataset Structure:
{
    "metadata": { version, created, total_samples, description },
    "samples": [
        { id, content, message_type, language?, expected_crisis_level,
          expected_action, category, notes? }
    ]
}
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache

from lifeline.schemas.moderation import (
    CrisisLevel,
    MessageType,
    ModerationAction,
    ModerationContext,
    ModerationRequest,
)


logger = logging.getLogger(__name__)

DEFAULT_DATASET_PATH = Path(__file__).parent / "crisis_samples.json"


# ═══════════════════════════════════════════════════════════════════════════════
# DATA CLASSES
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Sample:
    """
    Individual labelled message.

    Attributes:
        id: Unique identifier (e.g., 'support-001', 'immediate-003')
        content: The message text
        message_type: Channel the message is sent on
        expected_crisis_level: Expected CrisisLevel value
        expected_action: Expected ModerationAction value
        category: Sample family (e.g., 'distress', 'multilingual')
        language: Optional language hint passed with the request
        notes: Optional notes about the sample
    """

    id: str
    content: str
    message_type: str
    expected_crisis_level: str
    expected_action: str
    category: str
    language: str | None = None
    notes: str | None = None

    def to_request(self) -> ModerationRequest:
        """Build the moderation request this sample describes."""
        return ModerationRequest(
            content=self.content,
            language=self.language,
            context=ModerationContext(message_type=MessageType(self.message_type)),
        )

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "content": self.content,
            "message_type": self.message_type,
            "language": self.language,
            "expected_crisis_level": self.expected_crisis_level,
            "expected_action": self.expected_action,
            "category": self.category,
            "notes": self.notes,
        }


@dataclass
class DatasetMetadata:
    version: str
    created: str
    total_samples: int
    description: str


@dataclass
class ValidationResult:
    """
    Result of dataset validation.

    Attributes:
        is_valid: Whether the dataset passed all validation checks
        errors: List of validation error messages
        warnings: List of validation warning messages
    """

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════


VALID_MESSAGE_TYPES = frozenset(t.value for t in MessageType)
VALID_CRISIS_LEVELS = frozenset(level.value for level in CrisisLevel)
VALID_ACTIONS = frozenset(action.value for action in ModerationAction)

MINIMUM_SAMPLES = 20


class DatasetLoader:
    """
    Load and manage the labelled crisis sample set.

    Provides lazy loading with caching, filtering by channel, crisis level,
    action and category, and validation checks.

    Example:
        >>> loader = DatasetLoader()
        >>> samples = loader.load()
        >>> emergencies = loader.get_by_crisis_level("EMERGENCY")
        >>> dist = loader.get_distribution()
    """

    def __init__(self, path: str | Path = DEFAULT_DATASET_PATH):
        self._path = Path(path)
        self._samples: list[Sample] = []
        self._metadata: DatasetMetadata | None = None
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def metadata(self) -> DatasetMetadata | None:
        """Dataset metadata (None if not yet loaded)."""
        return self._metadata

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self) -> list[Sample]:
        """
        Load samples from the JSON dataset file.

        Returns cached samples if already loaded. Accepts both the metadata
        wrapper format and a flat array of samples.

        Returns:
            List of Sample objects

        Raises:
            FileNotFoundError: If dataset file doesn't exist
            json.JSONDecodeError: If file contains invalid JSON
            ValueError: If sample data is malformed
        """
        if self._loaded:
            return self._samples

        logger.info(f"Loading dataset from {self._path}")

        if not self._path.exists():
            raise FileNotFoundError(f"Dataset file not found: {self._path}")

        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, list):
            samples_data = data
            self._metadata = DatasetMetadata(
                version="1.0.0",
                created="unknown",
                total_samples=len(data),
                description="Flat sample list",
            )
        elif isinstance(data, dict):
            meta = data.get("metadata", {})
            self._metadata = DatasetMetadata(
                version=meta.get("version", "1.0.0"),
                created=meta.get("created", "unknown"),
                total_samples=meta.get("total_samples", 0),
                description=meta.get("description", ""),
            )
            samples_data = data.get("samples", [])
        else:
            raise ValueError(
                f"Invalid dataset format: expected list or dict, got {type(data)}"
            )

        self._samples = []
        for i, sample_data in enumerate(samples_data):
            try:
                sample = Sample(
                    id=str(sample_data.get("id", f"sample-{i:03d}")),
                    content=sample_data["content"],
                    message_type=sample_data.get("message_type", MessageType.GENERAL.value),
                    expected_crisis_level=sample_data["expected_crisis_level"],
                    expected_action=sample_data["expected_action"],
                    category=sample_data.get("category", "unknown"),
                    language=sample_data.get("language"),
                    notes=sample_data.get("notes"),
                )
                self._samples.append(sample)
            except KeyError as e:
                raise ValueError(f"Sample {i} missing required field: {e}")

        self._loaded = True
        logger.info(f"Loaded {len(self._samples)} samples")

        return self._samples

    def reload(self) -> list[Sample]:
        self._loaded = False
        self._samples = []
        self._metadata = None
        return self.load()

    def get_by_message_type(self, message_type: str) -> list[Sample]:
        return [s for s in self.load() if s.message_type == message_type]

    def get_by_crisis_level(self, level: str) -> list[Sample]:
        return [s for s in self.load() if s.expected_crisis_level == level]

    def get_by_action(self, action: str) -> list[Sample]:
        return [s for s in self.load() if s.expected_action == action]

    def get_by_category(self, category: str) -> list[Sample]:
        return [s for s in self.load() if s.category == category]

    def get_distribution(self) -> dict[str, int]:
        """Sample count by expected crisis level."""
        distribution: dict[str, int] = {}
        for sample in self.load():
            level = sample.expected_crisis_level
            distribution[level] = distribution.get(level, 0) + 1
        return distribution

    def validate(self) -> ValidationResult:
        """
        Validate dataset integrity.

        Checks:
        - Minimum sample count
        - No duplicate sample IDs
        - Valid message types, crisis levels and actions
        - No empty content
        - Crisis channels never expected to BLOCK
        - Every crisis level represented (warning only)

        Returns:
            ValidationResult with errors and warnings
        """
        errors: list[str] = []
        warnings: list[str] = []

        if not self._loaded:
            try:
                self.load()
            except (OSError, ValueError) as e:
                return ValidationResult(
                    is_valid=False,
                    errors=[f"Failed to load dataset: {e}"],
                )

        if len(self._samples) < MINIMUM_SAMPLES:
            errors.append(
                f"Dataset has {len(self._samples)} samples, "
                f"minimum required is {MINIMUM_SAMPLES}"
            )

        ids = [s.id for s in self._samples]
        if len(ids) != len(set(ids)):
            duplicates = [i for i in ids if ids.count(i) > 1]
            errors.append(f"Duplicate sample IDs: {sorted(set(duplicates))}")

        invalid_types = {
            s.message_type for s in self._samples if s.message_type not in VALID_MESSAGE_TYPES
        }
        if invalid_types:
            errors.append(f"Invalid message types found: {sorted(invalid_types)}")

        invalid_levels = {
            s.expected_crisis_level
            for s in self._samples
            if s.expected_crisis_level not in VALID_CRISIS_LEVELS
        }
        if invalid_levels:
            errors.append(f"Invalid crisis levels found: {sorted(invalid_levels)}")

        invalid_actions = {
            s.expected_action for s in self._samples if s.expected_action not in VALID_ACTIONS
        }
        if invalid_actions:
            errors.append(f"Invalid actions found: {sorted(invalid_actions)}")

        empty_content = [s.id for s in self._samples if not s.content.strip()]
        if empty_content:
            errors.append(f"Samples with empty content: {empty_content}")

        blocked_crisis = [
            s.id
            for s in self._samples
            if s.message_type in (MessageType.CRISIS.value, MessageType.EMERGENCY.value)
            and s.expected_action == ModerationAction.BLOCK.value
        ]
        if blocked_crisis:
            errors.append(f"Crisis-channel samples expected to BLOCK: {blocked_crisis}")

        missing_levels = VALID_CRISIS_LEVELS - set(self.get_distribution())
        if missing_levels:
            warnings.append(f"Crisis levels without samples: {sorted(missing_levels)}")

        return ValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    def __len__(self) -> int:
        return len(self.load())

    def __iter__(self):
        return iter(self.load())

    def __getitem__(self, index: int) -> Sample:
        return self.load()[index]


@lru_cache(maxsize=1)
def get_dataset_loader(path: str | None = None) -> DatasetLoader:
    """Shared DatasetLoader for the bundled dataset (or ``path``)."""
    return DatasetLoader(path=path or DEFAULT_DATASET_PATH)
