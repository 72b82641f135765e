import importlib.util

import numpy as np
import pytest
import scipy.io

from pyhpfem.solvers.linear_solvers import (
    BackendConfigurationError,
    LinearSolverError,
    LinearSolverParameters,
    get_backend,
)

A = np.array([[4.0, 1.0, 0.0],
              [1.0, 3.0, -1.0],
              [0.0, -1.0, 2.0]])
B = np.array([1.0, 2.0, 3.0])


def _fill(backend, A=A, B=B):
    n = len(B)
    matrix, rhs = backend.create_matrix(), backend.create_vector()
    matrix.prealloc(n)
    rhs.alloc(n)
    rows, cols = np.nonzero(A)
    matrix.add(rows, cols, A[rows, cols])
    rhs.add(np.arange(n), B)
    matrix.finish()
    rhs.finish()
    return matrix, rhs


@pytest.mark.parametrize("name", ["scipy", "scipy-gmres"])
def test_scipy_backends_solve(name):
    with get_backend(LinearSolverParameters(backend=name)) as backend:
        matrix, rhs = _fill(backend)
        solver = backend.create_solver(matrix, rhs)
        assert solver.solve()
        np.testing.assert_allclose(A @ solver.get_solution(), B, atol=1e-10)


def test_duplicate_entries_accumulate_and_zero_resets():
    backend = get_backend()
    matrix = backend.create_matrix()
    matrix.prealloc(2)
    matrix.add([0, 0, 1], [0, 0, 1], [1.0, 2.5, 1.0])
    matrix.finish()
    assert matrix.get(0, 0) == 3.5
    matrix.zero()
    matrix.add([1], [1], [7.0])
    matrix.finish()
    np.testing.assert_allclose(matrix.to_csr().toarray(), [[0.0, 0.0], [0.0, 7.0]])

    vec = backend.create_vector()
    vec.alloc(2)
    vec.add([1, 1], [1.0, 2.0])
    vec.set(0, 5.0)
    assert vec.get(1) == 3.0 and vec.get(0) == 5.0
    vec.zero()
    np.testing.assert_array_equal(vec.to_array(), [0.0, 0.0])


def test_complex_system():
    Ac = A + 1j * np.eye(3)
    with get_backend(LinearSolverParameters(scalar="complex")) as backend:
        assert backend.dtype == np.complex128
        matrix, rhs = _fill(backend, Ac, B.astype(complex))
        solver = backend.create_solver(matrix, rhs)
        assert solver.solve()
        np.testing.assert_allclose(Ac @ solver.get_solution(), B, atol=1e-10)


def test_singular_matrix_reports_failure():
    backend = get_backend()
    matrix, rhs = _fill(backend, np.array([[1.0, 1.0], [1.0, 1.0]]), np.array([1.0, 0.0]))
    solver = backend.create_solver(matrix, rhs)
    assert solver.solve() is False
    with pytest.raises(LinearSolverError):
        solver.get_solution()


def test_export_matrix_market(tmp_path):
    matrix, _ = _fill(get_backend())
    path = tmp_path / "jacobian.mtx"
    matrix.export(str(path))
    np.testing.assert_allclose(scipy.io.mmread(str(path)).toarray(), A)


def test_unknown_backend_and_scalar():
    with pytest.raises(BackendConfigurationError):
        get_backend(LinearSolverParameters(backend="umfpack"))
    with pytest.raises(BackendConfigurationError):
        get_backend(LinearSolverParameters(scalar="quaternion"))
    assert issubclass(BackendConfigurationError, ValueError)


@pytest.mark.skipif(importlib.util.find_spec("petsc4py") is not None,
                    reason="petsc4py is installed")
def test_petsc_backend_without_petsc4py():
    with pytest.raises(BackendConfigurationError):
        get_backend(LinearSolverParameters(backend="petsc"))


def test_petsc_backend_solve():
    pytest.importorskip("petsc4py")
    with get_backend(LinearSolverParameters(backend="petsc")) as backend:
        matrix, rhs = _fill(backend)
        solver = backend.create_solver(matrix, rhs)
        assert solver.solve()
        np.testing.assert_allclose(A @ solver.get_solution(), B, atol=1e-10)


def test_petsc_complex_capability():
    pytest.importorskip("petsc4py")
    from petsc4py import PETSc

    params = LinearSolverParameters(backend="petsc", scalar="complex")
    if np.dtype(PETSc.ScalarType).kind == "c":
        with get_backend(params) as backend:
            assert backend.supports_complex
    else:
        with pytest.raises(BackendConfigurationError):
            get_backend(params)
