from __future__ import annotations

import numpy as np
import pytest

from vortex3d import (
    ConstantSFS,
    DynamicProcedure,
    DynamicSFS,
    NoSFS,
    ParticleField,
    SolverConfig,
    build_field,
    formulation_classic,
    kernel_from_name,
    sfs_from_name,
)
from vortex3d.sfs import estimate_stretching


def _field(sfs, n: int = 60, seed: int = 0, **kwargs) -> ParticleField:
    rng = np.random.default_rng(seed)
    pf = ParticleField(n, sfs=sfs, **kwargs)
    pf.add_particles(
        rng.uniform(-0.3, 0.3, size=(n, 3)), rng.normal(size=(n, 3)) * 1e-3, 0.12, vol=1e-4
    )
    pf.evaluate_uj()
    return pf


def test_nosfs_zeroes_accumulator() -> None:
    pf = _field(NoSFS())
    pf.sfs[:] = 1.0
    pf.sfs_model.apply(pf)
    np.testing.assert_array_equal(pf.sfs, 0.0)
    np.testing.assert_array_equal(pf.C, 0.0)


def test_estimator_vanishes_for_uniform_gradient() -> None:
    rng = np.random.default_rng(1)
    x = rng.uniform(size=(20, 3))
    g = rng.normal(size=(20, 3))
    J = np.broadcast_to(rng.normal(size=(3, 3)), (20, 3, 3)).copy()
    s = np.full(20, 0.2)
    E = estimate_stretching(x, g, J, s, kernel_from_name("gaussianerf"), transposed=True)
    np.testing.assert_allclose(E, 0.0, atol=1e-12)


def test_constant_model_closure() -> None:
    pf = _field(ConstantSFS(Cs=0.5))
    gamma0 = pf.Gamma.copy()
    pf.sfs_model.apply(pf)
    np.testing.assert_array_equal(pf.Gamma, gamma0)
    np.testing.assert_array_equal(pf.C, 0.5)

    E = estimate_stretching(pf.X, pf.Gamma, pf.J, pf.sigma, pf.kernel, pf.transposed)
    expected = -(0.5 * pf.sigma**3 / pf.kernel.zeta0)[:, None] * E
    np.testing.assert_allclose(pf.sfs, expected, rtol=1e-12, atol=1e-300)
    assert np.abs(pf.sfs).max() > 0.0


@pytest.mark.parametrize(
    "model",
    [ConstantSFS(Cs=1.0, clipping=True), DynamicSFS(clipping=True), DynamicSFS(clipping=True, force_positive=True)],
)
def test_backscatter_clipping_removes_forward_transfer(model) -> None:
    pf = _field(model, seed=3)
    pf.sfs_model.apply(pf)
    assert (np.einsum("ni,ni->n", pf.sfs, pf.Gamma) <= 1e-30).all()


def test_dynamic_coefficient_is_bounded() -> None:
    model = DynamicSFS(alpha=0.5, procedure=DynamicProcedure.THREE_LEVEL, minC=0.0, maxC=0.3)
    pf = _field(model, seed=4, formulation=formulation_classic)
    for _ in range(3):
        pf.step(1e-3)
    assert (pf.C >= 0.0).all() and (pf.C <= 0.3).all()


def test_dynamic_smoothing_reuses_step_snapshot() -> None:
    model = DynamicSFS(alpha=0.9, minC=-10.0, maxC=10.0)
    pf = _field(model, seed=5)
    model.apply(pf)
    C_est, _ = model.estimate(pf)
    np.testing.assert_allclose(pf.C, np.clip(C_est, -10.0, 10.0))

    # a second stage in the same step blends against the same committed value
    model.apply(pf)
    np.testing.assert_allclose(pf.C, np.clip(C_est, -10.0, 10.0))

    committed = pf.C.copy()
    pf.nt += 1
    pf.Gamma[:] *= 1.5
    pf.evaluate_uj()
    model.apply(pf)
    C_new, _ = model.estimate(pf)
    np.testing.assert_allclose(pf.C, np.clip(0.9 * committed + 0.1 * C_new, -10.0, 10.0))


def test_dynamic_sfs_validation() -> None:
    with pytest.raises(ValueError):
        DynamicSFS(alpha=1.0)
    with pytest.raises(ValueError):
        DynamicSFS(minC=1.0, maxC=0.0)


def test_test_filter_ratios() -> None:
    assert DynamicProcedure.TWO_LEVEL.test_filter == pytest.approx(0.999)
    assert DynamicProcedure.THREE_LEVEL.test_filter == pytest.approx(0.667)


@pytest.mark.parametrize(
    "name, cls",
    [
        ("noSFS", NoSFS),
        ("SFS_Cs_nobackscatter", ConstantSFS),
        ("SFS_Cd_twolevel_nobackscatter", DynamicSFS),
        ("SFS_Cd_threelevel_nobackscatter", DynamicSFS),
    ],
)
def test_sfs_from_name(name: str, cls: type) -> None:
    assert isinstance(sfs_from_name(name), cls)


def test_sfs_from_unknown_name() -> None:
    with pytest.raises(ValueError):
        sfs_from_name("smagorinsky")


def _seed(pf: ParticleField, seed: int, n: int = 30) -> None:
    rng = np.random.default_rng(seed)
    pf.add_particles(
        rng.uniform(-0.3, 0.3, size=(n, 3)), rng.normal(size=(n, 3)) * 1e-3, 0.12, vol=1e-4
    )


def test_shared_dynamic_model_keeps_fields_independent() -> None:
    config = SolverConfig(sfs=DynamicSFS(alpha=0.9, minC=-100.0, maxC=100.0), integration="euler")
    a, b = build_field(30, config), build_field(30, config)
    assert a.sfs_model is b.sfs_model
    ref = build_field(30, SolverConfig(sfs=DynamicSFS(alpha=0.9, minC=-100.0, maxC=100.0), integration="euler"))
    _seed(a, 10)
    _seed(b, 11)
    _seed(ref, 11)
    for _ in range(3):
        a.step(1e-3)
        b.step(1e-3)
        ref.step(1e-3)
    np.testing.assert_allclose(b.C, ref.C, rtol=1e-12, atol=1e-14)
    np.testing.assert_allclose(b.Gamma, ref.Gamma, rtol=1e-12, atol=1e-18)


def test_new_field_does_not_inherit_coefficients() -> None:
    model = DynamicSFS(alpha=0.9, minC=-100.0, maxC=100.0)
    old = ParticleField(30, sfs=model, integration="euler")
    _seed(old, 12)
    old.step(1e-3)

    pf = ParticleField(30, sfs=model, integration="euler")
    _seed(pf, 13)
    pf.evaluate_uj()
    model.apply(pf)
    C_est, _ = model.estimate(pf)
    np.testing.assert_allclose(pf.C, np.clip(C_est, -100.0, 100.0))


def test_particle_added_mid_run_takes_raw_estimate() -> None:
    model = DynamicSFS(alpha=0.9, minC=-100.0, maxC=100.0)
    pf = ParticleField(31, sfs=model, integration="euler")
    _seed(pf, 14)
    pf.step(1e-3)
    committed = pf.C.copy()

    slot = pf.add([0.05, -0.02, 0.01], [1e-3, -2e-3, 5e-4], 0.12, vol=1e-4)
    assert np.isnan(pf.C_old[slot]) and not pf.C_valid[slot]
    pf.evaluate_uj()
    model.apply(pf)
    C_est, _ = model.estimate(pf)
    expected = np.clip(0.9 * committed + 0.1 * C_est[:slot], -100.0, 100.0)
    np.testing.assert_allclose(pf.C[:slot], expected)
    assert pf.C[slot] == pytest.approx(np.clip(C_est[slot], -100.0, 100.0))


def test_committed_coefficient_follows_removal() -> None:
    model = DynamicSFS(alpha=0.9, minC=-100.0, maxC=100.0)
    pf = ParticleField(30, sfs=model, integration="euler")
    _seed(pf, 15)
    pf.step(1e-3)
    pf.evaluate_uj()
    model.apply(pf)
    last = pf.C_old[-1]
    pf.remove(0)
    assert pf.C_old[0] == last
