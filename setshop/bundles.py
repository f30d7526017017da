from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from .constants import LOGGER


@dataclass(frozen=True)
class Bundle:
    bundle_id: str
    name: str
    price: int
    playlist_ids: tuple[str, ...]
    free: bool = False

    def public_payload(self) -> dict:
        return {
            "bundle_id": self.bundle_id,
            "name": self.name,
            "price": self.price,
            "free": self.free,
        }


def _parse_bundle(bundle_id: str, raw: object) -> Bundle:
    if not isinstance(raw, dict):
        raise RuntimeError(f"Bundle {bundle_id!r} must be a JSON object.")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise RuntimeError(f"Bundle {bundle_id!r} needs a non-empty name.")

    free = raw.get("free", False)
    if not isinstance(free, bool):
        raise RuntimeError(f"Bundle {bundle_id!r}.free must be a boolean.")

    price = raw.get("price", 0)
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        raise RuntimeError(f"Bundle {bundle_id!r}.price must be a non-negative integer (cents).")
    if not free and price == 0:
        raise RuntimeError(f"Bundle {bundle_id!r} is not free but has no price.")

    # A single playlist id is accepted in place of a list.
    playlists = raw.get("playlists", [])
    if isinstance(playlists, str):
        playlists = [playlists]
    if not isinstance(playlists, list) or not all(
        isinstance(item, str) and item for item in playlists
    ):
        raise RuntimeError(f"Bundle {bundle_id!r}.playlists must be a list of playlist ids.")

    return Bundle(
        bundle_id=bundle_id,
        name=name.strip(),
        price=price,
        playlist_ids=tuple(playlists),
        free=free,
    )


def parse_bundles(raw_bundles: object) -> dict[str, Bundle]:
    if not isinstance(raw_bundles, dict):
        raise RuntimeError("Bundle catalog must be a JSON object keyed by bundle id.")
    return {
        str(bundle_id): _parse_bundle(str(bundle_id), raw)
        for bundle_id, raw in raw_bundles.items()
    }


def load_bundles(path: str | Path) -> dict[str, Bundle]:
    path = Path(path)
    if not path.exists():
        raise RuntimeError(f"Bundle catalog not found: {path}")

    try:
        raw_bundles = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as error:
        raise RuntimeError(f"Invalid JSON in bundle catalog: {path}") from error

    bundles = parse_bundles(raw_bundles)
    LOGGER.info("Loaded %s playlist bundles from %s", len(bundles), path)
    return bundles
