"""Discovery utility for Temporal workflows and activities."""

import importlib
import pkgutil

from rfp_engine.utils.logging import get_logger

logger = get_logger(__name__)

PIPELINE_PACKAGES = [
    "rfp_engine.temporal.answer_pipeline",
]


def discover_pipeline_components(package_name: str) -> int:
    """Import every module under ``<package>.activities`` and ``<package>.workflows``.

    Importing runs the registry decorators, which is all discovery needs.

    Returns:
        Number of modules imported
    """
    imported = 0
    for sub_pkg in (f"{package_name}.activities", f"{package_name}.workflows"):
        sub_module = importlib.import_module(sub_pkg)
        for _, mod_name, _ in pkgutil.walk_packages(sub_module.__path__, f"{sub_pkg}."):
            importlib.import_module(mod_name)
            imported += 1
            logger.debug(f"Imported pipeline component module: {mod_name}")
    return imported


def discover_all():
    """Discover all Temporal components."""
    total = sum(discover_pipeline_components(pkg) for pkg in PIPELINE_PACKAGES)
    logger.info(f"Discovered {total} Temporal workflow and activity modules")
