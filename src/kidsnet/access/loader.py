"""Subjects YAML loading and validation.

Uses yaml.safe_load() exclusively and aiofiles for non-blocking file I/O.
"""

from __future__ import annotations

import aiofiles
import structlog
import yaml

from kidsnet.access.models import SubjectsConfig

logger = structlog.get_logger()


async def load_subjects(file_path: str) -> SubjectsConfig:
    """Load and validate the subjects file.

    Subjects are configured once at startup and are immutable for the run,
    so any error here should stop the process.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the YAML is malformed.
        ValueError: If the file is empty.
        pydantic.ValidationError: If the content fails validation.
    """
    async with aiofiles.open(file_path, mode="r", encoding="utf-8") as f:
        raw_content = await f.read()

    data = yaml.safe_load(raw_content)
    if data is None:
        raise ValueError(f"Subjects file is empty: {file_path}")

    config = SubjectsConfig(**data)

    await logger.ainfo(
        "subjects_loaded",
        file_path=file_path,
        subject_count=len(config.subjects),
        excluded_mac_count=len(config.excluded_macs),
    )
    return config
