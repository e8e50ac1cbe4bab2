"""
Hospital Wait Monitor - Scrape Target Configuration

Loads the list of hospital pages to scrape from a YAML file. Falls back to
the single TARGET_URL / TARGET_DEPARTMENT pair from settings when no file is
configured or the file is missing.

File format:
    targets:
      - url: https://example-hospital.de/notaufnahme
        department: Notaufnahme
        is_active: true

Usage:
    from config.targets import load_targets

    targets = load_targets()
"""

import logging
from pathlib import Path
from typing import Optional, Union

import yaml

from config.settings import Settings, get_settings
from scrapers.base import ScrapeTarget


logger = logging.getLogger(__name__)


class TargetConfigError(Exception):
    """Raised when the targets file exists but cannot be used."""


def parse_targets(config: dict) -> list[ScrapeTarget]:
    """
    Build scrape targets from a parsed YAML document.

    Inactive entries are skipped. Order is preserved because jobs scrape
    targets sequentially in file order.

    Args:
        config: Parsed YAML mapping with a ``targets`` list

    Returns:
        Active targets in file order

    Raises:
        TargetConfigError: If an entry is missing its url or department
    """
    if config is not None and not isinstance(config, dict):
        raise TargetConfigError("Targets config must be a mapping with a 'targets' list")

    entries = (config or {}).get("targets") or []
    if not isinstance(entries, list):
        raise TargetConfigError("'targets' must be a list")
    targets = []

    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise TargetConfigError(f"Target #{index} is not a mapping")
        if not entry.get("is_active", True):
            continue

        url = (entry.get("url") or "").strip()
        department = (entry.get("department") or "").strip()
        if not url or not department:
            raise TargetConfigError(f"Target #{index} needs both url and department")

        targets.append(ScrapeTarget(url=url, department=department))

    return targets


def load_targets(
    path: Optional[Union[str, Path]] = None,
    settings: Optional[Settings] = None,
) -> list[ScrapeTarget]:
    """
    Load scrape targets from YAML, falling back to settings.

    Args:
        path: Override for the targets file location
        settings: Settings instance (defaults to the cached singleton)

    Returns:
        List of targets, never empty

    Raises:
        TargetConfigError: If the file is invalid YAML or has bad entries
    """
    settings = settings or get_settings()
    config_path = Path(path) if path else settings.get_targets_path()

    if config_path is not None and config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise TargetConfigError(f"Invalid YAML in targets config: {e}") from e

        targets = parse_targets(config)
        if targets:
            logger.info(
                "Loaded scrape targets",
                extra={"path": str(config_path), "count": len(targets)},
            )
            return targets

        logger.warning(
            "Targets file has no active targets, using fallback",
            extra={"path": str(config_path)},
        )
    elif config_path is not None:
        logger.info(
            "Targets file not found, using fallback",
            extra={"path": str(config_path)},
        )

    return [
        ScrapeTarget(url=settings.target_url, department=settings.target_department)
    ]


__all__ = [
    "TargetConfigError",
    "parse_targets",
    "load_targets",
]
