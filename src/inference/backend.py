"""
Inference backend selection and ONNX Runtime session creation.

Detectors only talk to the small InferenceSession protocol below, so tests
(and alternative runtimes) can provide a fake session without onnxruntime.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np

from models.config import GpuBackend, OptimizationLevel, YoloOptions

CPU_PROVIDER = "CPUExecutionProvider"
CUDA_PROVIDER = "CUDAExecutionProvider"
DIRECTML_PROVIDER = "DmlExecutionProvider"

_ACCELERATORS = {
    GpuBackend.CUDA: CUDA_PROVIDER,
    GpuBackend.DIRECTML: DIRECTML_PROVIDER,
}

# Fallback order when use_gpu_if_available is set
_ACCELERATOR_ORDER = (GpuBackend.CUDA, GpuBackend.DIRECTML)


class InferenceSession(Protocol):
    """Subset of onnxruntime.InferenceSession used by the detectors."""

    def get_inputs(self) -> Sequence[Any]:
        ...

    def get_outputs(self) -> Sequence[Any]:
        ...

    def run(self, output_names: Optional[List[str]], input_feed: Dict[str, np.ndarray]) -> List[np.ndarray]:
        ...

    def get_modelmeta(self) -> Any:
        ...


def available_providers() -> List[str]:
    import onnxruntime as ort

    return list(ort.get_available_providers())


def select_providers(
    backend: GpuBackend,
    use_gpu_if_available: bool,
    available: Sequence[str],
) -> List[str]:
    """
    Ordered execution providers for a session, always ending with CPU.

    The requested accelerator goes first when the runtime offers it. With
    ``use_gpu_if_available`` any other available accelerator follows
    (CUDA before DirectML). A missing accelerator simply drops out of the list.
    """
    providers: List[str] = []
    requested = _ACCELERATORS.get(backend)
    if requested and requested in available:
        providers.append(requested)

    if use_gpu_if_available:
        for candidate in _ACCELERATOR_ORDER:
            name = _ACCELERATORS[candidate]
            if name in available and name not in providers:
                providers.append(name)

    providers.append(CPU_PROVIDER)
    return providers


def graph_optimization_level(level: OptimizationLevel):
    import onnxruntime as ort

    return {
        OptimizationLevel.DISABLED: ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
        OptimizationLevel.BASIC: ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
        OptimizationLevel.EXTENDED: ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
        OptimizationLevel.ALL: ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
    }[level]


def _session_options(level: OptimizationLevel, providers: Sequence[str]):
    import onnxruntime as ort

    so = ort.SessionOptions()
    so.graph_optimization_level = graph_optimization_level(level)
    if DIRECTML_PROVIDER in providers:
        # DirectML does not support memory patterns or parallel execution
        so.enable_mem_pattern = False
        so.execution_mode = ort.ExecutionMode.ORT_SEQUENTIAL
    return so


def create_session(
    model_path: str,
    options: YoloOptions,
    logger: Optional[logging.Logger] = None,
    available: Optional[Sequence[str]] = None,
) -> InferenceSession:
    """
    Create an onnxruntime session for ``model_path`` honoring ``options``.

    If the accelerated session cannot be created, logs a warning and retries
    on CPU only.
    """
    import onnxruntime as ort

    log = logger or logging.getLogger(__name__)
    if available is None:
        available = available_providers()

    providers = select_providers(options.gpu_backend, options.use_gpu_if_available, available)
    if options.gpu_backend is not GpuBackend.CPU and providers[0] == CPU_PROVIDER:
        log.info(f"{options.gpu_backend.value} backend not available, using CPU")

    try:
        session = ort.InferenceSession(
            model_path,
            sess_options=_session_options(options.optimization_level, providers),
            providers=providers,
        )
        log.info(f"Inference session ready: {model_path} providers={session.get_providers()}")
        return session
    except Exception as e:
        if providers == [CPU_PROVIDER]:
            raise
        log.warning(f"Accelerated session failed ({providers[0]}): {e}; falling back to CPU")

    return ort.InferenceSession(
        model_path,
        sess_options=_session_options(options.optimization_level, [CPU_PROVIDER]),
        providers=[CPU_PROVIDER],
    )
