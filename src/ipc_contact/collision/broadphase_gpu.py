# MIT License (see LICENSE)
"""
GPU broad phase: all-pairs box overlap test as a Warp kernel.

One thread per (a, b) box pair on a 2D launch grid. Overlapping pairs are
appended to an output buffer through an atomic counter; when the buffer turns
out too small the kernel is relaunched with the exact required capacity.
Results are sorted on the host so they match the CPU backends.

Requires the optional `warp-lang` dependency (`pip install ipc-contact[gpu]`).
"""
from __future__ import annotations

import numpy as np
import warp as wp

from .broadphase import BroadPhase, _empty_pairs


@wp.func
def check_aabb_overlap(
    box1_lower: wp.vec3d,
    box1_upper: wp.vec3d,
    box2_lower: wp.vec3d,
    box2_upper: wp.vec3d,
) -> bool:
    return (
        box1_lower[0] <= box2_upper[0]
        and box1_upper[0] >= box2_lower[0]
        and box1_lower[1] <= box2_upper[1]
        and box1_upper[1] >= box2_lower[1]
        and box1_lower[2] <= box2_upper[2]
        and box1_upper[2] >= box2_lower[2]
    )


@wp.func
def write_pair(
    pair: wp.vec2i,
    candidate_pair: wp.array(dtype=wp.vec2i, ndim=1),
    num_candidate_pair: wp.array(dtype=int, ndim=1),  # Size one array
    max_candidate_pair: int,
):
    pairid = wp.atomic_add(num_candidate_pair, 0, 1)

    if pairid >= max_candidate_pair:
        return

    candidate_pair[pairid] = pair


@wp.kernel
def _nxm_overlap_kernel(
    lower_a: wp.array(dtype=wp.vec3d),
    upper_a: wp.array(dtype=wp.vec3d),
    lower_b: wp.array(dtype=wp.vec3d),
    upper_b: wp.array(dtype=wp.vec3d),
    candidate_pair: wp.array(dtype=wp.vec2i),
    num_candidate_pair: wp.array(dtype=int),
    max_candidate_pair: int,
):
    i, j = wp.tid()

    if check_aabb_overlap(lower_a[i], upper_a[i], lower_b[j], upper_b[j]):
        write_pair(wp.vec2i(i, j), candidate_pair, num_candidate_pair, max_candidate_pair)


def _to_vec3d(boxes: np.ndarray) -> np.ndarray:
    """Pad 2D boxes with a zero z-extent."""
    boxes = np.asarray(boxes, dtype=np.float64)
    if boxes.shape[1] == 3:
        return np.ascontiguousarray(boxes)
    out = np.zeros((len(boxes), 3), dtype=np.float64)
    out[:, : boxes.shape[1]] = boxes
    return out


class GPUBroadPhase(BroadPhase):
    """
    All-pairs box overlap on a Warp device.

    Candidates found inside a line-search bracket are not reused for CCD with
    this backend; every step-size query runs a fresh broad phase.

    Attributes:
        device: Warp device string, or None for the default device.
        initial_capacity: Starting size of the pair buffer.
    """

    supports_cached_candidates = False

    def __init__(self, device: str | None = None, initial_capacity: int = 1024) -> None:
        wp.init()
        self.device = device
        self.initial_capacity = max(int(initial_capacity), 1)

    def overlapping_pairs(self, lo_a, hi_a, lo_b, hi_b) -> np.ndarray:
        na, nb = len(lo_a), len(lo_b)
        if na == 0 or nb == 0:
            return _empty_pairs()

        device = self.device
        lower_a = wp.array(_to_vec3d(lo_a), dtype=wp.vec3d, device=device)
        upper_a = wp.array(_to_vec3d(hi_a), dtype=wp.vec3d, device=device)
        lower_b = wp.array(_to_vec3d(lo_b), dtype=wp.vec3d, device=device)
        upper_b = wp.array(_to_vec3d(hi_b), dtype=wp.vec3d, device=device)

        capacity = self.initial_capacity
        while True:
            candidate_pair = wp.zeros(capacity, dtype=wp.vec2i, device=device)
            num_candidate_pair = wp.zeros(1, dtype=int, device=device)
            wp.launch(
                _nxm_overlap_kernel,
                dim=(na, nb),
                inputs=[lower_a, upper_a, lower_b, upper_b],
                outputs=[candidate_pair, num_candidate_pair, capacity],
                device=device,
            )
            count = int(num_candidate_pair.numpy()[0])
            if count <= capacity:
                break
            capacity = count

        if count == 0:
            return _empty_pairs()
        return candidate_pair.numpy()[:count].astype(np.int64)
