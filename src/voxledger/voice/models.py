"""
voice/models.py — Recognizer model catalog

Knows the four supported whisper.cpp models, which of them are present in
models_dir as ggml-<id>.bin, and how to fetch a missing one.

Downloads stream into ggml-<id>.bin.part and are renamed into place only
after the last byte is written, so a half-finished download is never
mistaken for a usable model.

Usage::

    catalog = ModelCatalog("./models/whisper")
    catalog.refresh()
    for m in catalog.list_models():
        print(m.id, m.size, m.is_downloaded)
    await catalog.download("small", progress=lambda f: print(f"{f:.0%}"))
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Optional

import httpx

from voxledger.config.settings import DEFAULT_DOWNLOAD_URL
from voxledger.exceptions import ModelDownloadError, ModelNotFoundError
from voxledger.observability.logger import get_logger
from voxledger.voice.types import ModelInfo

log = get_logger(__name__)

_CHUNK_SIZE = 1024 * 256
_DOWNLOAD_TIMEOUT = httpx.Timeout(30.0, read=120.0)

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class _ModelSpec:
    id: str
    name: str
    size: str
    accuracy: float
    languages: tuple[str, ...] = ("en", "hi", "multi")


SUPPORTED_MODELS: tuple[_ModelSpec, ...] = (
    _ModelSpec("tiny", "Whisper Tiny", "40 MB", 0.85),
    _ModelSpec("base", "Whisper Base", "74 MB", 0.89),
    _ModelSpec("small", "Whisper Small", "244 MB", 0.92),
    _ModelSpec("medium", "Whisper Medium", "769 MB", 0.95),
)


def model_filename(model_id: str) -> str:
    return f"ggml-{model_id}.bin"


class ModelCatalog:
    """Supported model table plus on-disk presence."""

    def __init__(
        self,
        models_dir: str | Path,
        url_template: str = DEFAULT_DOWNLOAD_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.models_dir = Path(models_dir).expanduser()
        self.url_template = url_template
        self._transport = transport
        self._models: dict[str, ModelInfo] = {
            spec.id: ModelInfo(
                id=spec.id,
                name=spec.name,
                size=spec.size,
                languages=spec.languages,
                accuracy=spec.accuracy,
                local_path=self.models_dir / model_filename(spec.id),
            )
            for spec in SUPPORTED_MODELS
        }
        self.refresh()

    def refresh(self) -> list[ModelInfo]:
        """Re-check which model files exist."""
        for model_id, info in self._models.items():
            path = self.path_for(model_id)
            self._models[model_id] = replace(info, is_downloaded=path.is_file(), local_path=path)
        return self.list_models()

    def list_models(self) -> list[ModelInfo]:
        return list(self._models.values())

    def get(self, model_id: str) -> ModelInfo:
        try:
            return self._models[model_id]
        except KeyError:
            raise ModelNotFoundError(model_id) from None

    def path_for(self, model_id: str) -> Path:
        return self.models_dir / model_filename(model_id)

    def url_for(self, model_id: str) -> str:
        return self.url_template.format(model_id=model_id)

    async def download(
        self,
        model_id: str,
        progress: Optional[ProgressCallback] = None,
    ) -> ModelInfo:
        """
        Stream the model file into models_dir.

        progress receives the completed fraction in [0, 1]. When the server
        sends no Content-Length only the final 1.0 is reported.

        Raises ModelNotFoundError for an unknown id and ModelDownloadError on
        any HTTP, network or disk failure (the partial file is removed).
        """
        self.get(model_id)
        url = self.url_for(model_id)
        target = self.path_for(model_id)
        partial = target.with_name(target.name + ".part")
        self.models_dir.mkdir(parents=True, exist_ok=True)

        log.info("models.download_started", model=model_id, url=url)
        written = 0
        try:
            async with httpx.AsyncClient(
                timeout=_DOWNLOAD_TIMEOUT,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    total = int(response.headers.get("content-length") or 0)
                    with partial.open("wb") as fh:
                        async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                            fh.write(chunk)
                            written += len(chunk)
                            if progress and total:
                                progress(min(written / total, 1.0))
            partial.replace(target)
        except (httpx.HTTPError, OSError) as e:
            partial.unlink(missing_ok=True)
            log.error("models.download_failed", model=model_id, error=str(e))
            raise ModelDownloadError(f"Download of model '{model_id}' failed: {e}") from e

        if progress:
            progress(1.0)
        log.info("models.download_complete", model=model_id, bytes=written, path=str(target))
        self.refresh()
        return self.get(model_id)
