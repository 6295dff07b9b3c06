from pathlib import Path
from typing import List


def read_recursively(folder: str) -> List[str]:
    """Relative POSIX paths of every file below ``folder``, sorted."""
    root = Path(folder)
    return sorted(path.relative_to(root).as_posix() for path in root.rglob("*") if path.is_file())
