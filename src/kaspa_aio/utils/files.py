"""File helpers: atomic writes, env files and YAML documents."""

import io
import logging
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from ruamel.yaml import YAML


logger = logging.getLogger(__name__)

ENV_KEY_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_NEEDS_QUOTES = re.compile(r"[\s#'\"\\$`]")
_ESCAPED = re.compile(r"\\(.)")


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Write to a temp file in the same directory, then rename over the target.

    Readers never observe a partially written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with open(fd, "wb") as f:
            f.write(content)
        Path(tmp_path).replace(path)
    except Exception:
        Path(tmp_path).unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, content: str) -> None:
    atomic_write_bytes(path, content.encode("utf-8"))


def read_text(path: Path) -> Optional[str]:
    """Read a file, or None when it does not exist."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def parse_env(content: Optional[str]) -> Dict[str, str]:
    """Parse KEY=value lines, skipping comments and blank lines."""
    env: Dict[str, str] = {}
    if not content:
        return env
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            quote = value[0]
            value = value[1:-1]
            if quote == '"':
                value = _ESCAPED.sub(r"\1", value)
        env[key] = value
    return env


def format_env_value(value: str) -> str:
    """Quote a value when it would not survive an unquoted KEY=value line."""
    if value and _NEEDS_QUOTES.search(value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


def _yaml() -> YAML:
    yaml = YAML()
    yaml.default_flow_style = False
    yaml.indent(mapping=2, sequence=4, offset=2)
    yaml.width = 4096
    return yaml


def dump_yaml(data: Any) -> str:
    """Serialize a document; key order is preserved."""
    stream = io.StringIO()
    _yaml().dump(data, stream)
    return stream.getvalue()


def load_yaml(content: Optional[str]) -> Dict[str, Any]:
    if not content:
        return {}
    return _yaml().load(content) or {}
