"""MobileNet V2 backend for real image embeddings via torchvision."""

from __future__ import annotations

import asyncio
import importlib
import logging
from collections.abc import Mapping
from typing import Any

import numpy as np
from PIL import Image

from lookalike_server.backends.base import BackendInitializer, ComputeBackend
from lookalike_server.engine.image_loader import DecodedImage

logger = logging.getLogger(__name__)

MODEL_VARIANT = "mobilenet_v2"
WIDTH_MULTIPLIER = 1.0
INPUT_SIZE = 224
EMBEDDING_DIMENSION = 1280
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


def _import_torch() -> Any:
    return importlib.import_module("torch")


class MobileNetImageModel:
    """Global-average-pooled MobileNet V2 feature activations."""

    name = MODEL_VARIANT
    dimension = EMBEDDING_DIMENSION

    def __init__(self, *, network: Any, device: str) -> None:
        self._network = network
        self._device = device

    def _infer_sync(self, pixels: np.ndarray) -> np.ndarray:
        import torch
        from torchvision.transforms import functional as tvf

        resized = Image.fromarray(pixels).resize((INPUT_SIZE, INPUT_SIZE), Image.Resampling.BILINEAR)
        tensor = tvf.normalize(tvf.to_tensor(resized), IMAGENET_MEAN, IMAGENET_STD)
        batch = tensor.unsqueeze(0).to(self._device)
        with torch.inference_mode():
            features = self._network.features(batch)
            pooled = torch.nn.functional.adaptive_avg_pool2d(features, 1)
            activation = pooled.flatten(1).to("cpu").numpy().astype(np.float32)
        del batch, features, pooled
        return activation

    async def infer(self, image: DecodedImage) -> np.ndarray:
        return await asyncio.to_thread(self._infer_sync, image.pixels)


class MobileNetModelProvider:
    """Torch runtime negotiation and pretrained MobileNet V2 loading."""

    name = MODEL_VARIANT

    def check_environment(self) -> None:
        try:
            importlib.import_module("torch")
            importlib.import_module("torchvision")
        except ModuleNotFoundError as exc:
            raise ModuleNotFoundError(
                "mobilenet_v2 backend selected but torch/torchvision are missing. "
                "Install with: pip install -e '.[mobilenet]'"
            ) from exc

    def backend_initializers(self) -> Mapping[str, BackendInitializer]:
        return {
            "cuda": self._init_cuda,
            "mps": self._init_mps,
            "cpu": self._init_cpu,
        }

    @staticmethod
    def _smoke_test(torch: Any, device: str) -> None:
        sample = torch.ones(4, device=device)
        if float((sample * 2).sum().item()) != 8.0:
            raise RuntimeError(f"Arithmetic check failed on {device}")

    def _init_cpu(self) -> ComputeBackend:
        torch = _import_torch()
        self._smoke_test(torch, "cpu")
        return ComputeBackend(name="cpu", device="cpu")

    def _init_cuda(self) -> ComputeBackend:
        torch = _import_torch()
        if not torch.cuda.is_available():
            raise RuntimeError("CUDA is not available")
        self._smoke_test(torch, "cuda:0")
        return ComputeBackend(name="cuda", device="cuda:0")

    def _init_mps(self) -> ComputeBackend:
        torch = _import_torch()
        mps = getattr(torch.backends, "mps", None)
        if mps is None or not mps.is_available():
            raise RuntimeError("MPS is not available")
        self._smoke_test(torch, "mps")
        return ComputeBackend(name="mps", device="mps")

    def load(self, backend: ComputeBackend) -> MobileNetImageModel:
        from torchvision.models import MobileNet_V2_Weights, mobilenet_v2

        logger.info("Loading %s (width multiplier %s) on %s", MODEL_VARIANT, WIDTH_MULTIPLIER, backend.device)
        network = mobilenet_v2(weights=MobileNet_V2_Weights.IMAGENET1K_V1, width_mult=WIDTH_MULTIPLIER)
        network.eval()
        network.to(backend.device)
        return MobileNetImageModel(network=network, device=backend.device)
