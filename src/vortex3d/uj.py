from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol
from collections.abc import Sequence

import logging
import math
import numpy as np
from numpy.typing import NDArray
from numba import njit, prange

from .errors import EvaluationError
from .kernels import Kernel, KernelTag, const2, const4

if TYPE_CHECKING:  # pragma: no cover
    from .particles import ParticleField

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.float64]


class UJStrategy(str, Enum):
    DIRECT = "direct"
    TREECODE = "treecode"


class UJEvaluator(Protocol):
    tag: UJStrategy

    def evaluate(
        self, positions: FloatArray, strengths: FloatArray, cores: FloatArray, kernel: Kernel
    ) -> tuple[FloatArray, FloatArray]: ...


# ---------------------------
# Configuration
# ---------------------------
@dataclass(slots=True)
class NumbaConfig:
    """Toggle Numba JIT for the direct backend.

    If enabled, standard kernels use the compiled pairwise kernel, parallel
    over targets. User-supplied kernels always go through NumPy.
    """
    enabled: bool = False


@dataclass(slots=True)
class ChunkConfig:
    """Chunking to reduce peak memory in the NumPy direct backend.

    query_batch: number of targets per chunk (None -> no chunking).
    source_batch: number of sources per chunk for big-N accumulation.
    """
    query_batch: int | None = 256
    source_batch: int | None = None


@dataclass(slots=True)
class TreecodeConfig:
    """Barnes–Hut octree for fast summation in 3D.

    theta: opening parameter; a cell is used as a monopole when
           (r_source + r_target) < theta * distance (smaller -> more accurate,
           0 -> exact direct sum)
    max_leaf: maximum particles per leaf node
    """
    theta: float = 0.4
    max_leaf: int = 32

    def __post_init__(self) -> None:
        if not (np.isfinite(self.theta) and self.theta >= 0.0):
            raise ValueError("theta must be non-negative.")
        if self.max_leaf < 1:
            raise ValueError("max_leaf must be at least 1.")


# ---------------------------
# Pairwise block (NumPy)
# ---------------------------
def _skew(w: FloatArray) -> FloatArray:
    """Matrices W with W[i, j] = eps_ijk w_k, for w of shape (m,3)."""
    out = np.zeros((w.shape[0], 3, 3), dtype=np.float64)
    out[:, 0, 1] = w[:, 2]
    out[:, 0, 2] = -w[:, 1]
    out[:, 1, 0] = -w[:, 2]
    out[:, 1, 2] = w[:, 0]
    out[:, 2, 0] = w[:, 1]
    out[:, 2, 1] = -w[:, 0]
    return out


def _uj_block(
    xq: FloatArray,
    xs: FloatArray,
    gs: FloatArray,
    ss: FloatArray,
    kernel: Kernel,
    out_u: FloatArray,
    out_j: FloatArray,
) -> None:
    """Accumulate U and J induced by sources (xs, gs, ss) at targets xq."""
    d = xq[:, None, :] - xs[None, :, :]                     # (m,n,3)
    r = np.sqrt(np.einsum("mnk,mnk->mn", d, d))             # (m,n)
    far = r > 0.0
    safe_r = np.where(far, r, 1.0)

    g, dg = kernel.g_dgdr(safe_r / ss[None, :])
    g = np.broadcast_to(np.asarray(g, dtype=np.float64), r.shape)
    dg = np.broadcast_to(np.asarray(dg, dtype=np.float64), r.shape)

    inv_r3 = np.where(far, 1.0 / safe_r**3, 0.0)
    # K(x - xp) x Gamma_p
    crss = -const4 * np.cross(d, gs[None, :, :]) * inv_r3[..., None]
    out_u += np.einsum("mn,mni->mi", g, crss)

    # dU_i/dx_j = sum_p [ (dg/(sigma r) - 3g/r^2) (K x Gamma)_i dx_j + g dK/dx_j x Gamma ]
    aux = np.where(far, dg / (ss[None, :] * safe_r) - 3.0 * g / safe_r**2, 0.0)
    out_j += np.einsum("mn,mni,mnj->mij", aux, crss, d)

    # Kronecker-delta term; coincident pairs take the regularized limit
    aux2 = np.where(far, -const4 * g * inv_r3, -kernel.self_coefficient / ss[None, :] ** 3)
    out_j += _skew(aux2 @ gs)


def _as_float_array3(x: np.ndarray | Sequence[Sequence[float]], name: str) -> FloatArray:
    """Convert to contiguous float64 (N,3)."""
    arr = np.asarray(x, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must have shape (N,3).")
    return np.ascontiguousarray(arr)


# ---------------------------
# JIT kernel: direct U and J
# ---------------------------
_KERNEL_CODES: dict[KernelTag, int] = {
    KernelTag.SINGULAR: 0,
    KernelTag.GAUSSIAN: 1,
    KernelTag.GAUSSIAN_ERF: 2,
    KernelTag.WINCKELMANS: 3,
}

_SQRT2 = math.sqrt(2.0)
_CONST2 = const2
_CONST4 = const4


@njit(cache=True, fastmath=True, nogil=True)
def _g_dgdr_jit(code: int, rho: float) -> tuple[float, float]:
    if code == 0:
        return 1.0, 0.0
    elif code == 1:
        r3 = rho * rho * rho
        return -math.expm1(-r3), 3.0 * rho * rho * math.exp(-r3)
    elif code == 2:
        aux = _CONST2 * rho * math.exp(-rho * rho / 2.0)
        return math.erf(rho / _SQRT2) - aux, rho * aux
    else:
        r2 = rho * rho
        aux = (r2 + 1.0) ** 2.5
        return rho * r2 * (r2 + 2.5) / aux, 7.5 * r2 / (aux * (r2 + 1.0))


@njit(cache=True, fastmath=True, nogil=True, parallel=True)
def _uj_direct_jit(
    xq: np.ndarray, xs: np.ndarray, gs: np.ndarray, ss: np.ndarray, code: int, selfc: float
) -> tuple[np.ndarray, np.ndarray]:
    M = xq.shape[0]
    N = xs.shape[0]
    U = np.zeros((M, 3), dtype=np.float64)
    J = np.zeros((M, 3, 3), dtype=np.float64)
    for i in prange(M):
        for j in range(N):
            dX1 = xq[i, 0] - xs[j, 0]
            dX2 = xq[i, 1] - xs[j, 1]
            dX3 = xq[i, 2] - xs[j, 2]
            r = math.sqrt(dX1 * dX1 + dX2 * dX2 + dX3 * dX3)
            if r != 0.0:
                g_sgm, dg_sgmdr = _g_dgdr_jit(code, r / ss[j])
                inv_r3 = 1.0 / (r * r * r)
                crss1 = -_CONST4 * inv_r3 * (dX2 * gs[j, 2] - dX3 * gs[j, 1])
                crss2 = -_CONST4 * inv_r3 * (dX3 * gs[j, 0] - dX1 * gs[j, 2])
                crss3 = -_CONST4 * inv_r3 * (dX1 * gs[j, 1] - dX2 * gs[j, 0])
                U[i, 0] += g_sgm * crss1
                U[i, 1] += g_sgm * crss2
                U[i, 2] += g_sgm * crss3
                aux = dg_sgmdr / (ss[j] * r) - 3.0 * g_sgm / (r * r)
                aux2 = -_CONST4 * g_sgm * inv_r3
            else:
                crss1 = 0.0
                crss2 = 0.0
                crss3 = 0.0
                aux = 0.0
                aux2 = -selfc / (ss[j] * ss[j] * ss[j])
            # j=1
            J[i, 0, 0] += aux * crss1 * dX1
            J[i, 1, 0] += aux * crss2 * dX1 - aux2 * gs[j, 2]
            J[i, 2, 0] += aux * crss3 * dX1 + aux2 * gs[j, 1]
            # j=2
            J[i, 0, 1] += aux * crss1 * dX2 + aux2 * gs[j, 2]
            J[i, 1, 1] += aux * crss2 * dX2
            J[i, 2, 1] += aux * crss3 * dX2 - aux2 * gs[j, 0]
            # j=3
            J[i, 0, 2] += aux * crss1 * dX3 - aux2 * gs[j, 1]
            J[i, 1, 2] += aux * crss2 * dX3 + aux2 * gs[j, 0]
            J[i, 2, 2] += aux * crss3 * dX3
    return U, J


# ---------------------------
# Direct O(N^2)
# ---------------------------
@dataclass(slots=True)
class DirectUJ:
    """Exact pairwise summation; the reference strategy."""
    numba: NumbaConfig = field(default_factory=NumbaConfig)
    chunking: ChunkConfig = field(default_factory=ChunkConfig)
    tag: UJStrategy = field(default=UJStrategy.DIRECT, init=False)

    def evaluate(
        self, positions: FloatArray, strengths: FloatArray, cores: FloatArray, kernel: Kernel
    ) -> tuple[FloatArray, FloatArray]:
        return self.evaluate_at(positions, positions, strengths, cores, kernel)

    def evaluate_at(
        self,
        xq: FloatArray,
        x_src: FloatArray,
        gamma: FloatArray,
        sigma: FloatArray,
        kernel: Kernel,
    ) -> tuple[FloatArray, FloatArray]:
        """U and J at arbitrary targets xq induced by the given sources."""
        M = xq.shape[0]
        N = x_src.shape[0]
        U = np.zeros((M, 3), dtype=np.float64)
        J = np.zeros((M, 3, 3), dtype=np.float64)
        if M == 0 or N == 0:
            return U, J

        if self.numba.enabled:
            code = _KERNEL_CODES.get(kernel.tag)
            if code is not None:
                return _uj_direct_jit(
                    np.ascontiguousarray(xq), np.ascontiguousarray(x_src),
                    np.ascontiguousarray(gamma), np.ascontiguousarray(sigma),
                    code, kernel.self_coefficient,
                )
            logger.debug("Kernel %s has no compiled form; using NumPy.", kernel.name)

        # Strategy:
        #  - Always process targets in chunks of size qb to cap peak memory.
        #  - If sb is set, accumulate over source batches as well.
        qb = self.chunking.query_batch or M
        sb = self.chunking.source_batch or N
        for i in range(0, M, qb):
            qs = slice(i, min(i + qb, M))
            for j in range(0, N, sb):
                js = slice(j, min(j + sb, N))
                _uj_block(xq[qs], x_src[js], gamma[js], sigma[js], kernel, U[qs], J[qs])
        return U, J


# ---------------------------
# Barnes–Hut octree
# ---------------------------
class _Node:
    __slots__ = ("idx", "children", "gamma_sum", "centroid", "sigma", "radius", "center", "tradius")

    def __init__(self, idx: np.ndarray, x: FloatArray, gamma: FloatArray, sigma: FloatArray) -> None:
        self.idx = idx
        self.children: list[_Node] | None = None
        xi = x[idx]
        w = np.linalg.norm(gamma[idx], axis=1)
        wsum = float(w.sum())
        self.gamma_sum = gamma[idx].sum(axis=0)
        # Monopole about the |Gamma|-weighted centroid
        self.centroid = (w @ xi) / wsum if wsum > 0.0 else xi.mean(axis=0)
        self.sigma = float(np.sqrt((w @ sigma[idx] ** 2) / wsum)) if wsum > 0.0 else float(sigma[idx].mean())
        self.radius = float(np.linalg.norm(xi - self.centroid, axis=1).max())
        # Geometric center, used when the node acts as a target group
        self.center = xi.mean(axis=0)
        self.tradius = float(np.linalg.norm(xi - self.center, axis=1).max())


@dataclass(slots=True)
class TreecodeUJ:
    """Accelerated evaluation: octree with monopole far field.

    Near-field leaves are summed exactly with the same pairwise block as the
    direct strategy. Fails with EvaluationError; never falls back.
    """
    config: TreecodeConfig = field(default_factory=TreecodeConfig)
    tag: UJStrategy = field(default=UJStrategy.TREECODE, init=False)

    _MAX_DEPTH = 48

    def evaluate(
        self, positions: FloatArray, strengths: FloatArray, cores: FloatArray, kernel: Kernel
    ) -> tuple[FloatArray, FloatArray]:
        N = positions.shape[0]
        U = np.zeros((N, 3), dtype=np.float64)
        J = np.zeros((N, 3, 3), dtype=np.float64)
        if N == 0:
            return U, J
        if not (np.isfinite(positions).all() and np.isfinite(strengths).all() and np.isfinite(cores).all()):
            logger.error("Treecode received non-finite particle data.")
            raise EvaluationError("Treecode evaluation failed: non-finite particle data.")

        try:
            root = self._build(positions, strengths, cores)
            for leaf in self._leaves(root):
                self._evaluate_leaf(leaf, root, positions, strengths, cores, kernel, U, J)
        except (MemoryError, RecursionError) as exc:
            logger.error("Treecode evaluation failed for N=%d: %s", N, exc)
            raise EvaluationError(f"Treecode evaluation failed: {exc!r}") from exc
        return U, J

    def _build(self, x: FloatArray, gamma: FloatArray, sigma: FloatArray) -> _Node:
        lo = x.min(axis=0)
        hi = x.max(axis=0)
        center = 0.5 * (lo + hi)
        half = 0.5 * float((hi - lo).max()) * (1.0 + 1e-9) + 1e-12

        def build(idx: np.ndarray, center: FloatArray, half: float, depth: int) -> _Node:
            node = _Node(idx, x, gamma, sigma)
            if idx.size <= self.config.max_leaf or depth >= self._MAX_DEPTH:
                return node
            xi = x[idx]
            octant = (
                (xi[:, 0] > center[0]).astype(np.int64)
                | ((xi[:, 1] > center[1]).astype(np.int64) << 1)
                | ((xi[:, 2] > center[2]).astype(np.int64) << 2)
            )
            kids = []
            h = 0.5 * half
            for o in range(8):
                sub = idx[octant == o]
                if sub.size == 0:
                    continue
                offset = np.array([o & 1, (o >> 1) & 1, (o >> 2) & 1], dtype=np.float64) * 2.0 - 1.0
                kids.append(build(sub, center + h * offset, h, depth + 1))
            node.children = kids
            return node

        return build(np.arange(x.shape[0]), center, half, 0)

    @staticmethod
    def _leaves(root: _Node) -> list[_Node]:
        out: list[_Node] = []
        stack = [root]
        while stack:
            nd = stack.pop()
            if nd.children is None:
                out.append(nd)
            else:
                stack.extend(nd.children)
        return out

    def _evaluate_leaf(
        self,
        leaf: _Node,
        root: _Node,
        x: FloatArray,
        gamma: FloatArray,
        sigma: FloatArray,
        kernel: Kernel,
        U: FloatArray,
        J: FloatArray,
    ) -> None:
        theta = self.config.theta
        near: list[np.ndarray] = []
        far: list[_Node] = []
        stack = [root]
        while stack:
            nd = stack.pop()
            dist = float(np.linalg.norm(leaf.center - nd.centroid))
            # opening criterion
            if nd.radius + leaf.tradius < theta * dist:
                far.append(nd)
            elif nd.children is None:
                near.append(nd.idx)
            else:
                stack.extend(nd.children)

        xq = x[leaf.idx]
        u = np.zeros((xq.shape[0], 3), dtype=np.float64)
        jac = np.zeros((xq.shape[0], 3, 3), dtype=np.float64)
        if near:
            src = np.concatenate(near)
            _uj_block(xq, x[src], gamma[src], sigma[src], kernel, u, jac)
        if far:
            _uj_block(
                xq,
                np.array([nd.centroid for nd in far]),
                np.array([nd.gamma_sum for nd in far]),
                np.array([nd.sigma for nd in far]),
                kernel, u, jac,
            )
        U[leaf.idx] = u
        J[leaf.idx] = jac


# ---------------------------
# Field-level entry points
# ---------------------------
def evaluate_field(pfield: ParticleField) -> None:
    """Compute U and J of every active particle and write them in place."""
    n = pfield.np
    if n == 0:
        return
    U, J = pfield.uj.evaluate(pfield.X, pfield.Gamma, pfield.sigma, pfield.kernel)
    pfield.U[:] = U
    pfield.J[:] = J


def probe(
    pfield: ParticleField, points: np.ndarray | Sequence[Sequence[float]], *, freestream: bool = True
) -> tuple[FloatArray, FloatArray]:
    """Direct-sum velocity (plus freestream) and Jacobian at arbitrary points."""
    xq = _as_float_array3(points, "points")
    if not np.isfinite(xq).all():
        raise ValueError("points contains non-finite values.")
    evaluator = pfield.uj if isinstance(pfield.uj, DirectUJ) else DirectUJ()
    U, J = evaluator.evaluate_at(xq, pfield.X, pfield.Gamma, pfield.sigma, pfield.kernel)
    if freestream:
        U += np.asarray(pfield.Uinf(pfield.t), dtype=np.float64)
    return U, J
