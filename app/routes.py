import importlib
import logging
from pathlib import Path

from fastapi import FastAPI, APIRouter

from app.exceptions import register_exception_handlers

logger = logging.getLogger(__name__)

ROUTES_DIR = Path(__file__).parent.parent / "routes"


def register_routes(app: FastAPI) -> list[str]:
    """Mount every ``routes/<name>/`` package exposing a ``router`` as a sub-app at ``/<name>``."""
    mounted_paths = []
    for sub_dir in sorted(ROUTES_DIR.iterdir()):
        if not sub_dir.is_dir() or sub_dir.name.startswith("__"):
            continue

        sub_app = FastAPI(title=f"SubApp-{sub_dir.name}")
        # sub-apps do not inherit the parent's handlers
        register_exception_handlers(sub_app)
        mounted = False

        for py_file in sorted(sub_dir.glob("*.py")):
            if py_file.stem.startswith("__"):
                continue

            module_path = f"routes.{sub_dir.name}.{py_file.stem}"
            module = importlib.import_module(module_path)
            if isinstance(getattr(module, "router", None), APIRouter):
                sub_app.include_router(module.router)
                mounted = True
            else:
                logger.warning("No 'router' in %s. Skipping.", module_path)

        if mounted:
            app.mount(f"/{sub_dir.name}", sub_app)
            mounted_paths.append(f"/{sub_dir.name}")
    return mounted_paths
