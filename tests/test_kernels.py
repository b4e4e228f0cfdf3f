from __future__ import annotations

import math

import numpy as np
import pytest

from vortex3d import Kernel, KernelTag, kernel_from_name
from vortex3d.kernels import STANDARD_KERNELS, const4


@pytest.mark.parametrize("tag", list(STANDARD_KERNELS))
def test_g_derivative_matches_zeta(tag: KernelTag) -> None:
    kernel = STANDARD_KERNELS[tag]
    r = np.linspace(1e-3, 10.0, 500)
    lhs = kernel.dgdr(r)
    rhs = 4.0 * math.pi * r**2 * kernel.zeta(r)
    np.testing.assert_allclose(lhs, rhs, rtol=1e-8, atol=1e-300)


@pytest.mark.parametrize("tag", list(STANDARD_KERNELS))
def test_dgdr_is_derivative_of_g(tag: KernelTag) -> None:
    kernel = STANDARD_KERNELS[tag]
    r = np.linspace(0.05, 6.0, 100)
    h = 1e-5
    fd = (kernel.g(r + h) - kernel.g(r - h)) / (2.0 * h)
    np.testing.assert_allclose(fd, kernel.dgdr(r), rtol=1e-6, atol=1e-9)


@pytest.mark.parametrize("tag", list(STANDARD_KERNELS))
def test_fused_evaluation_matches(tag: KernelTag) -> None:
    kernel = STANDARD_KERNELS[tag]
    r = np.linspace(0.0, 5.0, 50)
    g, dg = kernel.g_dgdr(r)
    np.testing.assert_allclose(g, kernel.g(r), rtol=1e-14, atol=1e-15)
    np.testing.assert_allclose(dg, kernel.dgdr(r), rtol=1e-14, atol=1e-15)


def test_scalar_input_returns_float() -> None:
    kernel = kernel_from_name("gaussianerf")
    assert isinstance(kernel.zeta(0.0), float)
    assert isinstance(kernel.g(1.0), float)


@pytest.mark.parametrize("name", ["gaussian", "gaussianerf", "winckelmans"])
def test_self_coefficient_is_small_r_limit(name: str) -> None:
    kernel = kernel_from_name(name)
    rho = 1e-2
    assert const4 * kernel.g(rho) / rho**3 == pytest.approx(kernel.self_coefficient, rel=1e-3)


def test_singular_kernel_has_no_self_term() -> None:
    assert kernel_from_name("singular").self_coefficient == 0.0


def test_lookup_by_name_and_tag() -> None:
    assert kernel_from_name("winckelmans") is kernel_from_name(KernelTag.WINCKELMANS)
    with pytest.raises(ValueError):
        kernel_from_name("lamb")
    with pytest.raises(ValueError):
        kernel_from_name("custom")


def test_custom_kernel_bundles_functions() -> None:
    base = kernel_from_name("gaussian")
    k = Kernel.custom(base.zeta, base.g, base.dgdr)
    assert k.tag is KernelTag.CUSTOM
    g, dg = k.g_dgdr(np.array([0.5, 1.0]))
    np.testing.assert_allclose(g, base.g(np.array([0.5, 1.0])))
    np.testing.assert_allclose(dg, base.dgdr(np.array([0.5, 1.0])))
