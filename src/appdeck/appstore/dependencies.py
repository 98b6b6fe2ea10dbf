import logging
from typing import Callable, Dict, List, Optional, Sequence

from appdeck.appstore.errors import DependencyError

logger = logging.getLogger(__name__)


def dependency_ids(names: Optional[Sequence[str]]) -> List[str]:
    """Catalog dependency ids, stripped, without blanks or repeats, order kept."""
    return list(dict.fromkeys(n.strip() for n in names or () if n and n.strip()))


def dependency_report(required: Sequence[str], is_installed: Callable[[str], bool]) -> Dict:
    wanted = dependency_ids(required)
    states = {name: bool(is_installed(name)) for name in wanted}
    missing = [name for name, ok in states.items() if not ok]
    return {
        "all_satisfied": not missing,
        "missing": missing,
        "items": [{"name": name, "installed": ok} for name, ok in states.items()],
    }


def check_app_dependencies(app_id: str, app_repo, installed_repo) -> Dict:
    """Raise DependencyError unless every catalog dependency of ``app_id`` is installed.

    Apps unknown to the catalog have no dependencies.
    """
    catalog_app = app_repo.find_latest(app_id) if app_repo is not None else None
    if catalog_app is None:
        return dependency_report([], lambda _name: True)

    report = dependency_report(
        catalog_app.dependencies, lambda name: bool(installed_repo.list_by_app_id(name))
    )
    if report["missing"]:
        logger.warning(
            "deploy:dependencies:missing app_id=%s missing=%s", app_id, ",".join(report["missing"])
        )
        raise DependencyError(report["missing"])
    return report
