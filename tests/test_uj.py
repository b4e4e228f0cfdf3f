from __future__ import annotations

import numpy as np
import pytest

from vortex3d import (
    ChunkConfig,
    DirectUJ,
    EvaluationError,
    NumbaConfig,
    ParticleField,
    TreecodeConfig,
    TreecodeUJ,
    kernel_from_name,
    probe,
)
from vortex3d.kernels import const4

KERNELS = ["singular", "gaussian", "gaussianerf", "winckelmans"]


def _cloud(n: int, seed: int = 0, aligned: bool = False):
    rng = np.random.default_rng(seed)
    x = rng.uniform(-0.5, 0.5, size=(n, 3))
    if aligned:
        g = np.tile([0.0, 0.0, 1.0], (n, 1)) + 0.1 * rng.normal(size=(n, 3))
    else:
        g = rng.normal(size=(n, 3))
    s = rng.uniform(0.04, 0.08, size=n)
    return x, g, s


@pytest.mark.parametrize("name", KERNELS)
def test_single_pair_closed_form(name: str) -> None:
    kernel = kernel_from_name(name)
    pf = ParticleField(2, kernel=kernel)
    sigma = 0.3
    pf.add([0.0, 0.0, 0.0], [0.0, 0.0, 0.0], sigma)
    pf.add([1.0, 0.5, -0.2], [0.3, -0.4, 1.0], sigma)
    pf.evaluate_uj()

    d = pf.X[0] - pf.X[1]
    r = np.linalg.norm(d)
    expected = -const4 * kernel.g(r / sigma) / r**3 * np.cross(d, pf.Gamma[1])
    np.testing.assert_allclose(pf.U[0], expected, rtol=1e-10, atol=1e-14)


@pytest.mark.parametrize("name", KERNELS)
def test_jacobian_matches_finite_differences(name: str) -> None:
    kernel = kernel_from_name(name)
    x, g, s = _cloud(8, seed=1)
    pf = ParticleField(8, kernel=kernel)
    pf.add_particles(x, g, s)

    point = np.array([0.81, -0.67, 0.72])
    _, J = probe(pf, [point])
    h = 1e-6
    fd = np.zeros((3, 3))
    for j in range(3):
        e = np.zeros(3)
        e[j] = h
        up, _ = probe(pf, [point + e])
        um, _ = probe(pf, [point - e])
        fd[:, j] = (up[0] - um[0]) / (2.0 * h)
    np.testing.assert_allclose(J[0], fd, rtol=1e-5, atol=1e-7)


@pytest.mark.parametrize("name", ["gaussian", "gaussianerf", "winckelmans"])
def test_self_jacobian_is_regularized_limit(name: str) -> None:
    kernel = kernel_from_name(name)
    pf = ParticleField(1, kernel=kernel)
    pf.add([0.1, 0.2, 0.3], [0.5, -1.0, 2.0], 0.5)
    pf.evaluate_uj()
    np.testing.assert_array_equal(pf.U[0], 0.0)

    h = 1e-4
    fd = np.zeros((3, 3))
    for j in range(3):
        e = np.zeros(3)
        e[j] = h
        up, _ = probe(pf, [pf.X[0] + e])
        um, _ = probe(pf, [pf.X[0] - e])
        fd[:, j] = (up[0] - um[0]) / (2.0 * h)
    np.testing.assert_allclose(pf.J[0], fd, rtol=1e-6, atol=1e-10)


def test_permutation_invariance() -> None:
    x, g, s = _cloud(50, seed=2)
    kernel = kernel_from_name("gaussianerf")
    perm = np.random.default_rng(5).permutation(50)
    U, J = DirectUJ().evaluate(x, g, s, kernel)
    Up, Jp = DirectUJ().evaluate(x[perm], g[perm], s[perm], kernel)
    np.testing.assert_allclose(Up, U[perm], rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(Jp, J[perm], rtol=1e-12, atol=1e-10)


def test_chunking_does_not_change_result() -> None:
    x, g, s = _cloud(70, seed=3)
    kernel = kernel_from_name("winckelmans")
    U0, J0 = DirectUJ(chunking=ChunkConfig(query_batch=None)).evaluate(x, g, s, kernel)
    U1, J1 = DirectUJ(chunking=ChunkConfig(query_batch=16, source_batch=9)).evaluate(x, g, s, kernel)
    np.testing.assert_allclose(U1, U0, rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(J1, J0, rtol=1e-12, atol=1e-10)


@pytest.mark.parametrize("name", KERNELS)
def test_numba_matches_numpy(name: str) -> None:
    x, g, s = _cloud(40, seed=4)
    kernel = kernel_from_name(name)
    U0, J0 = DirectUJ().evaluate(x, g, s, kernel)
    U1, J1 = DirectUJ(numba=NumbaConfig(enabled=True)).evaluate(x, g, s, kernel)
    np.testing.assert_allclose(U1, U0, rtol=1e-9, atol=1e-9)
    np.testing.assert_allclose(J1, J0, rtol=1e-9, atol=1e-7)


def test_treecode_theta_zero_is_exact() -> None:
    x, g, s = _cloud(300, seed=6)
    kernel = kernel_from_name("gaussianerf")
    U0, J0 = DirectUJ().evaluate(x, g, s, kernel)
    U1, J1 = TreecodeUJ(TreecodeConfig(theta=0.0, max_leaf=16)).evaluate(x, g, s, kernel)
    np.testing.assert_allclose(U1, U0, rtol=1e-10, atol=1e-10)
    np.testing.assert_allclose(J1, J0, rtol=1e-10, atol=1e-8)


def test_treecode_approximates_direct() -> None:
    x, g, s = _cloud(600, seed=7, aligned=True)
    kernel = kernel_from_name("gaussianerf")
    U0, _ = DirectUJ().evaluate(x, g, s, kernel)
    U1, _ = TreecodeUJ(TreecodeConfig(theta=0.25, max_leaf=16)).evaluate(x, g, s, kernel)
    err = np.linalg.norm(U1 - U0) / np.linalg.norm(U0)
    assert err < 5e-2


def test_treecode_rejects_non_finite_input() -> None:
    x, g, s = _cloud(20, seed=8)
    x[3, 1] = np.nan
    with pytest.raises(EvaluationError):
        TreecodeUJ().evaluate(x, g, s, kernel_from_name("gaussianerf"))


def test_treecode_field_evaluation() -> None:
    x, g, s = _cloud(64, seed=9)
    pf = ParticleField(64, uj=TreecodeUJ(TreecodeConfig(theta=0.0)))
    pf.add_particles(x, g, s)
    pf.evaluate_uj()
    U0, _ = DirectUJ().evaluate(x, g, s, pf.kernel)
    np.testing.assert_allclose(pf.U, U0, rtol=1e-10, atol=1e-10)


def test_treecode_config_validation() -> None:
    with pytest.raises(ValueError):
        TreecodeConfig(theta=-0.1)
    with pytest.raises(ValueError):
        TreecodeConfig(max_leaf=0)


def test_empty_field_evaluation_is_noop() -> None:
    pf = ParticleField(4)
    pf.evaluate_uj()
    U, J = probe(pf, np.zeros((2, 3)))
    assert U.shape == (2, 3) and J.shape == (2, 3, 3)
    np.testing.assert_array_equal(U, 0.0)
