import json
from pathlib import Path

from core.config import settings

_DEFAULT_ABI_DIR = Path(__file__).resolve().parent.parent / "config"


def read_abi(name: str):
    abi_dir = Path(settings.ABI_DIR) if settings.ABI_DIR else _DEFAULT_ABI_DIR
    with open(abi_dir / f"{name.lower()}_abi.json") as f:
        data = json.load(f)
        return data
