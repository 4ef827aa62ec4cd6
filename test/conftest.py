import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def make_container(tmp_path: Path, name: str = "stand.db", **settings):
    from bsm.application.container import build_container
    from bsm.config import EngineSettings

    return build_container(tmp_path / name, EngineSettings(**settings))


def add_beverage(c, name: str = "IPA", liters=10.0, threshold: float = 5.0, prices=(10.0, 15.0, 28.0), event_id=None) -> int:
    """Catalog a beverage and, unless None is passed, give it stock and prices in one scope."""
    bid = c.catalog.create(name)
    if liters is not None:
        c.stock.set(bid, None, liters, threshold, event_id)
    if prices is not None:
        c.prices.set(bid, None, *prices, event_id=event_id)
    return bid


def add_actor(c, username: str = "seller1", role: str = "seller") -> int:
    return c.repo.create_user(username, role)


def sales_count(c) -> int:
    return int(c.repo.query_one("SELECT COUNT(*) FROM sales")[0])
