from pathlib import Path
from typing import Dict

PROJECT_ROOT = Path(__file__).resolve().parents[2]
EXCLUDED_MODEL_FILES = {"signals.py", "schemas.py", "services.py", "base.py"}


def get_model_modules(base_dir: str = "applications") -> list[str]:
    base_path = PROJECT_ROOT / base_dir
    model_files = []

    for app_dir in sorted(base_path.iterdir()):
        if not app_dir.is_dir() or app_dir.name.startswith("__"):
            continue

        model_files.extend(
            f"{base_dir}.{app_dir.name}.{file.stem}"
            for file in sorted(app_dir.glob("*.py"))
            if file.is_file() and not file.name.startswith("__") and file.name not in EXCLUDED_MODEL_FILES
        )
    return model_files


def get_single_app_structure(base_dir: str = "applications") -> Dict[str, dict]:
    all_model_files = get_model_modules(base_dir)
    all_model_files.append("aerich.models")
    return {
        "models": {
            "models": all_model_files,
            "default_connection": "default",
        }
    }
