"""
Log-source catalogue loader.

The catalogue is the one mandatory input: without it there is nothing to
generate for, so every failure here is fatal.
"""

import json
import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from sigma_synth.exceptions import CatalogueError
from sigma_synth.models.logsource import LogSource, LogSourceCatalogue

logger = logging.getLogger(__name__)


def load_catalogue(path: Path) -> LogSourceCatalogue:
    """
    Load the catalogue document (JSON, or YAML for ``.yml``/``.yaml``).

    Raises:
        CatalogueError: The file is missing, unparsable or has no
            ``logsources`` list.
    """
    path = Path(path)
    if not path.is_file():
        raise CatalogueError(f"Log-source catalogue not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in (".yml", ".yaml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise CatalogueError(f"Cannot parse log-source catalogue {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("logsources"), list):
        raise CatalogueError(f"Log-source catalogue {path} has no 'logsources' list")

    try:
        catalogue = LogSourceCatalogue.model_validate(data)
    except ValidationError as e:
        raise CatalogueError(f"Invalid log-source catalogue {path}: {e}") from e

    logger.info(f"Loaded {len(catalogue.logsources)} log sources from {path}")
    return catalogue


def load_log_sources(path: Path) -> list[LogSource]:
    """Load the catalogue and return its unique log sources."""
    return load_catalogue(path).logsources
