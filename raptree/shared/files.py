import json
import logging
from pathlib import Path
from typing import Any, Union

from raptree.config import LOG_LEVEL


# ============================================================================
# LOGGING
# ============================================================================

def setup_logging(name: str) -> logging.Logger:
    """Configures a standard logger."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - [%(levelname)s] - %(message)s",
        datefmt="%H:%M:%S"
    )
    # NumericDegeneracyWarning and friends end up in the log, not on stderr
    logging.captureWarnings(True)
    return logging.getLogger(name)


# ============================================================================
# JSON FILES
# ============================================================================

def write_json(data: Any, output_path: Union[str, Path]) -> Path:
    """Writes data as indented UTF-8 JSON, creating parent directories."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    return output_path


def read_json(input_path: Union[str, Path]) -> Any:
    """Reads a UTF-8 JSON file."""
    input_path = Path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"File not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as f:
        return json.load(f)
