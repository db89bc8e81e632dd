"""
Headless Rocket AI - Policy Export
==================================

Exports a trained Q-network to ONNX for inference outside PyTorch and
checks the exported graph against the original network.

Author: AI Assistant
Date: August 2025
"""

import time
import logging
from typing import Dict, Any, Optional

import numpy as np
import torch
import torch.nn as nn
import onnx
import onnxruntime as ort

from .constants import OBSERVATION_DIM

logger = logging.getLogger(__name__)


class PolicyExporter:
    """Model export utilities for deploying a greedy policy."""

    @staticmethod
    def export_to_onnx(model: nn.Module,
                       output_path: str,
                       state_dim: int = OBSERVATION_DIM,
                       opset_version: int = 17) -> str:
        """Export a PyTorch model to ONNX with a dynamic batch axis."""
        was_training = model.training
        model.eval()

        dummy_input = torch.zeros(1, state_dim, dtype=torch.float32)
        try:
            torch.onnx.export(
                model,
                dummy_input,
                output_path,
                export_params=True,
                opset_version=opset_version,
                do_constant_folding=True,
                input_names=['observation'],
                output_names=['q_values'],
                dynamic_axes={'observation': {0: 'batch_size'}, 'q_values': {0: 'batch_size'}},
                dynamo=False
            )
        finally:
            model.train(was_training)

        onnx_model = onnx.load(output_path)
        onnx.checker.check_model(onnx_model)
        logger.info(f"Policy exported to ONNX: {output_path}")
        return output_path

    @staticmethod
    def verify_onnx_policy(model: nn.Module,
                           onnx_path: str,
                           num_samples: int = 32,
                           state_dim: int = OBSERVATION_DIM,
                           atol: float = 1e-4,
                           seed: Optional[int] = None) -> Dict[str, Any]:
        """
        Compare onnxruntime outputs with the PyTorch network.

        Returns:
            Dictionary with max_abs_diff, action_agreement and matches
        """
        rng = np.random.default_rng(seed)
        observations = rng.uniform(-1.0, 1.0, size=(num_samples, state_dim)).astype(np.float32)

        was_training = model.training
        model.eval()
        try:
            with torch.no_grad():
                expected = model(torch.as_tensor(observations)).cpu().numpy()
        finally:
            model.train(was_training)

        session = ort.InferenceSession(onnx_path, providers=['CPUExecutionProvider'])
        input_name = session.get_inputs()[0].name
        actual = session.run(None, {input_name: observations})[0]

        max_abs_diff = float(np.max(np.abs(expected - actual)))
        agreement = float(np.mean(np.argmax(expected, axis=1) == np.argmax(actual, axis=1)))
        results = {
            'max_abs_diff': max_abs_diff,
            'action_agreement': agreement,
            'matches': max_abs_diff <= atol,
        }
        logger.info(f"ONNX verification: max diff {max_abs_diff:.2e}, action agreement {agreement:.2%}")
        return results

    @staticmethod
    def benchmark_inference_time(model: nn.Module,
                                 state_dim: int = OBSERVATION_DIM,
                                 num_runs: int = 1000) -> Dict[str, float]:
        """Benchmark single-observation inference time on CPU."""
        was_training = model.training
        model.eval()
        dummy_input = torch.zeros(1, state_dim, dtype=torch.float32)

        try:
            # Warm up
            with torch.no_grad():
                for _ in range(10):
                    model(dummy_input)

            start = time.perf_counter()
            with torch.no_grad():
                for _ in range(num_runs):
                    model(dummy_input)
            total_time = time.perf_counter() - start
        finally:
            model.train(was_training)

        avg_time = total_time / num_runs
        results = {
            'avg_inference_time_ms': avg_time * 1000,
            'avg_inference_time_us': avg_time * 1000000,
            'fps': 1.0 / avg_time if avg_time > 0 else float('inf'),
            'total_time_s': total_time,
            'num_runs': num_runs
        }
        logger.info(f"Average inference time: {results['avg_inference_time_us']:.1f} us")
        return results
