"""Model asset layout and download."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Sequence

from huggingface_hub import hf_hub_download

from notefinder.errors import ModelDownloadError

DEFAULT_MODEL = "Xenova/multilingual-e5-small"

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]


@dataclass(frozen=True, slots=True)
class ModelAsset:
    name: str
    is_binary: bool
    size_mb: int


REQUIRED_ASSETS: tuple[ModelAsset, ...] = (
    ModelAsset("config.json", is_binary=False, size_mb=1),
    ModelAsset("tokenizer.json", is_binary=False, size_mb=1),
    ModelAsset("tokenizer_config.json", is_binary=False, size_mb=1),
    ModelAsset("onnx/model_quantized.onnx", is_binary=True, size_mb=118),
)

ONNX_MODEL_FILE = "onnx/model_quantized.onnx"


def ensure_model_folders(model_dir: Path) -> None:
    """Create ``<model_dir>`` and its ``onnx`` subfolder."""
    (Path(model_dir) / "onnx").mkdir(parents=True, exist_ok=True)


def missing_assets(model_dir: Path, assets: Sequence[ModelAsset] = REQUIRED_ASSETS) -> List[ModelAsset]:
    return [asset for asset in assets if not (Path(model_dir) / asset.name).is_file()]


def download_assets(
    model_dir: Path,
    *,
    repo_id: str = DEFAULT_MODEL,
    assets: Sequence[ModelAsset] = REQUIRED_ASSETS,
    progress: ProgressCallback | None = None,
) -> None:
    """Fetch every asset into ``model_dir``, failing on the first error."""
    ensure_model_folders(model_dir)
    total = len(assets)
    for index, asset in enumerate(assets):
        if progress is not None:
            file_name = asset.name.rsplit("/", 1)[-1]
            progress(f"Downloading {file_name} ({asset.size_mb}MB)...", 10 + int(index / total * 40))

        LOGGER.info("Downloading %s from %s", asset.name, repo_id)
        try:
            hf_hub_download(repo_id=repo_id, filename=asset.name, local_dir=str(model_dir))
        except Exception as exc:
            raise ModelDownloadError(f"Failed to download: {asset.name} ({exc})") from exc
        LOGGER.info("Downloaded %s", asset.name)

    if progress is not None:
        progress("Download complete", 100)
