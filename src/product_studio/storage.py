from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from product_studio.config import settings
from product_studio.errors import NotFoundError
from product_studio.presets import normalize_tone

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _safe_filename(name: str) -> str:
    # Prevent path traversal.
    return os.path.basename(name).replace("..", "_")


@dataclass(frozen=True)
class Asset:
    asset_id: str
    kind: str  # image|other
    filename: str
    rel_path: str
    sha256: str
    created_at: str
    metadata: dict[str, Any]


@dataclass
class Product:
    product_id: str
    name: str
    product_info: str
    tone: str
    description: str
    created_at: str
    assets: list[Asset]

    @property
    def images(self) -> list[Asset]:
        return [a for a in self.assets if a.kind == "image"]


class ProductStore:
    """
    Products on disk: one directory per product holding `product.json` and
    the saved image exports under `images/`.
    """

    def __init__(self, root_dir: Path | None = None) -> None:
        self.root_dir = Path(root_dir or settings.data_dir).resolve()
        self.products_dir = self.root_dir / "products"
        self.products_dir.mkdir(parents=True, exist_ok=True)

    def create_product(self, name: str, product_info: str = "", tone: str | None = None) -> Product:
        product_id = uuid.uuid4().hex[:12]
        (self.products_dir / product_id / "images").mkdir(parents=True, exist_ok=True)

        product = Product(
            product_id=product_id,
            name=(name or "").strip() or "Untitled product",
            product_info=(product_info or "").strip(),
            tone=normalize_tone(tone),
            description="",
            created_at=_now_iso(),
            assets=[],
        )
        self._write_product(product)
        logger.info("created product %s", product_id)
        return product

    def list_products(self) -> list[Product]:
        out: list[Product] = []
        for product_dir in sorted(self.products_dir.glob("*")):
            if not product_dir.is_dir():
                continue
            try:
                out.append(self.read_product(product_dir.name))
            except (NotFoundError, ValueError, KeyError) as exc:
                logger.warning("skipping unreadable product %s: %s", product_dir.name, exc)
                continue
        return out

    def read_product(self, product_id: str) -> Product:
        path = self.products_dir / _safe_filename(product_id) / "product.json"
        if not path.exists():
            raise NotFoundError("Product not found.")
        data = json.loads(path.read_text("utf-8"))
        assets = [Asset(**a) for a in data.get("assets", [])]
        return Product(
            product_id=data["product_id"],
            name=data["name"],
            product_info=data.get("product_info", ""),
            tone=normalize_tone(data.get("tone")),
            description=data.get("description", ""),
            created_at=data["created_at"],
            assets=assets,
        )

    def delete_product(self, product_id: str) -> None:
        product_dir = (self.products_dir / product_id).resolve()
        if not str(product_dir).startswith(str(self.products_dir.resolve()) + os.sep):
            raise ValueError("Refusing to delete outside products_dir")
        if product_dir.exists():
            shutil.rmtree(product_dir)

    def update_info(self, product_id: str, product_info: str | None = None, tone: str | None = None) -> Product:
        product = self.read_product(product_id)
        if product_info is not None:
            product.product_info = product_info.strip()
        if tone is not None:
            product.tone = normalize_tone(tone)
        self._write_product(product)
        return product

    def write_description(self, product_id: str, description: str) -> Product:
        product = self.read_product(product_id)
        product.description = description
        self._write_product(product)
        return product

    def add_asset(
        self,
        product_id: str,
        kind: str,
        filename: str,
        content: bytes,
        metadata: dict[str, Any] | None = None,
        subdir: str = "images",
    ) -> Asset:
        product_dir = self.products_dir / product_id
        asset_id = uuid.uuid4().hex[:12]
        filename = _safe_filename(filename)

        (product_dir / subdir).mkdir(parents=True, exist_ok=True)

        rel_path = str(Path(subdir) / f"{asset_id}_{filename}")
        abs_path = product_dir / rel_path
        abs_path.write_bytes(content)

        asset = Asset(
            asset_id=asset_id,
            kind=kind,
            filename=filename,
            rel_path=rel_path,
            sha256=_sha256_file(abs_path),
            created_at=_now_iso(),
            metadata=metadata or {},
        )

        product = self.read_product(product_id)
        product.assets.append(asset)
        self._write_product(product)
        return asset

    def delete_asset(self, product_id: str, asset_id: str) -> None:
        product = self.read_product(product_id)
        removed = [a for a in product.assets if a.asset_id == asset_id]
        if not removed:
            return
        product.assets = [a for a in product.assets if a.asset_id != asset_id]
        self._write_product(product)
        for a in removed:
            self.abs_asset_path(product_id, a).unlink(missing_ok=True)

    def replace_images(self, product_id: str, images: list[bytes]) -> list[Asset]:
        """Swap the product's saved images for a new set of PNG exports."""
        product = self.read_product(product_id)
        for a in product.images:
            self.delete_asset(product_id, a.asset_id)
        out = [
            self.add_asset(product_id, "image", f"image-{i}.png", content, metadata={"index": i})
            for i, content in enumerate(images)
        ]
        logger.info("saved %d image(s) for product %s", len(out), product_id)
        return out

    def get_asset(self, product_id: str, asset_id: str) -> Asset:
        product = self.read_product(product_id)
        asset = next((a for a in product.assets if a.asset_id == asset_id), None)
        if asset is None:
            raise NotFoundError("Asset not found.")
        return asset

    def abs_asset_path(self, product_id: str, asset: Asset) -> Path:
        return self.products_dir / product_id / asset.rel_path

    def _write_product(self, product: Product) -> None:
        product_dir = self.products_dir / product.product_id
        product_dir.mkdir(parents=True, exist_ok=True)
        data = asdict(product)
        data["assets"] = [asdict(a) for a in product.assets]
        (product_dir / "product.json").write_text(json.dumps(data, indent=2), encoding="utf-8")
