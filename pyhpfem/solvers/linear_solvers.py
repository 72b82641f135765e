r"""
linear_solvers.py  –  Pluggable sparse matrix / vector / solver backends
=======================================================================
Every backend exposes the same capability set: matrices and vectors that
support *zero* and *add* during assembly, a linear solver reporting success
as a boolean, and matrix export for debugging. Backends are picked by name
from :class:`LinearSolverParameters` and validated once, before any
computation, by :func:`get_backend`.

Backends that wrap an external runtime (PETSc) acquire it when the backend
is entered as a context manager and release it on exit.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Type

import numpy as np
import scipy.io
import scipy.sparse as sp
import scipy.sparse.linalg as spla

logger = logging.getLogger(__name__)


class LinearSolverError(RuntimeError):
    """The linear solver reported failure."""


class BackendConfigurationError(ValueError):
    """Unknown backend, missing library or unsupported scalar type."""


_SCALARS = {"real": np.float64, "complex": np.complex128}


@dataclass
class LinearSolverParameters:
    """Sparse linear solver settings."""

    backend: str = "scipy"              # scipy | scipy-gmres | petsc
    scalar: str = "real"                # real | complex
    tol: float = 1e-12                  # iterative backends only
    maxit: int = 10_000

    @property
    def dtype(self):
        try:
            return np.dtype(_SCALARS[self.scalar])
        except KeyError:
            raise BackendConfigurationError(
                f"unknown scalar type '{self.scalar}', expected one of {sorted(_SCALARS)}"
            ) from None


# ----------------------------------------------------------------------------
#  Interfaces
# ----------------------------------------------------------------------------
class SparseMatrix(ABC):
    def __init__(self, dtype=np.float64):
        self.dtype = np.dtype(dtype)
        self.size = 0

    @abstractmethod
    def prealloc(self, n: int) -> None: ...

    @abstractmethod
    def zero(self) -> None: ...

    @abstractmethod
    def add(self, rows, cols, values) -> None:
        """Add ``values[k]`` at ``(rows[k], cols[k])``; duplicates accumulate."""

    def finish(self) -> None:
        """Called once after the last ``add`` of an assembly pass."""

    @abstractmethod
    def to_csr(self) -> sp.csr_matrix: ...

    def get(self, i: int, j: int):
        return self.to_csr()[i, j]

    def export(self, filename: str) -> None:
        """Write the matrix in Matrix Market format."""
        scipy.io.mmwrite(filename, self.to_csr())


class Vector(ABC):
    def __init__(self, dtype=np.float64):
        self.dtype = np.dtype(dtype)
        self.size = 0

    @abstractmethod
    def alloc(self, n: int) -> None: ...

    @abstractmethod
    def zero(self) -> None: ...

    @abstractmethod
    def add(self, rows, values) -> None: ...

    @abstractmethod
    def get(self, i: int): ...

    @abstractmethod
    def set(self, i: int, value) -> None: ...

    @abstractmethod
    def to_array(self) -> np.ndarray: ...

    @abstractmethod
    def set_array(self, values) -> None: ...

    def finish(self) -> None:
        """Called once after the last ``add`` of an assembly pass."""


class LinearSolver(ABC):
    def __init__(self, matrix: SparseMatrix, rhs: Vector):
        self.matrix = matrix
        self.rhs = rhs
        self._solution: Optional[np.ndarray] = None

    @abstractmethod
    def solve(self) -> bool:
        """Solve ``matrix · x = rhs``; returns False on failure."""

    def get_solution(self) -> np.ndarray:
        if self._solution is None:
            raise LinearSolverError("no solution available; solve() has not succeeded")
        return self._solution


class Backend(ABC):
    """Factory for the matrix, vector and solver of one library."""

    name: str = ""
    supports_complex: bool = False

    def __init__(self, params: LinearSolverParameters):
        self.params = params
        self.dtype = params.dtype

    # scoped acquisition of external runtimes
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self) -> None:
        pass

    def check_capabilities(self) -> None:
        if self.dtype.kind == "c" and not self.supports_complex:
            raise BackendConfigurationError(
                f"backend '{self.name}' was built without complex number support"
            )

    @abstractmethod
    def create_matrix(self) -> SparseMatrix: ...

    @abstractmethod
    def create_vector(self) -> Vector: ...

    @abstractmethod
    def create_solver(self, matrix: SparseMatrix, rhs: Vector) -> LinearSolver: ...


# ----------------------------------------------------------------------------
#  scipy backends
# ----------------------------------------------------------------------------
class ScipyMatrix(SparseMatrix):
    """COO triplet accumulator, converted to CSR on ``finish``."""

    def __init__(self, dtype=np.float64):
        super().__init__(dtype)
        self._rows, self._cols, self._vals = [], [], []
        self._csr: Optional[sp.csr_matrix] = None

    def prealloc(self, n: int) -> None:
        self.size = int(n)
        self.zero()

    def zero(self) -> None:
        self._rows, self._cols, self._vals = [], [], []
        self._csr = None

    def add(self, rows, cols, values) -> None:
        self._rows.append(np.asarray(rows, dtype=int).ravel())
        self._cols.append(np.asarray(cols, dtype=int).ravel())
        self._vals.append(np.asarray(values, dtype=self.dtype).ravel())
        self._csr = None

    def finish(self) -> None:
        self._csr = self._build()

    def _build(self) -> sp.csr_matrix:
        n = self.size
        if not self._rows:
            return sp.csr_matrix((n, n), dtype=self.dtype)
        rows = np.concatenate(self._rows)
        cols = np.concatenate(self._cols)
        vals = np.concatenate(self._vals)
        # duplicate (row, col) pairs are summed by the COO -> CSR conversion
        return sp.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()

    def to_csr(self) -> sp.csr_matrix:
        if self._csr is None:
            self._csr = self._build()
        return self._csr


class NumpyVector(Vector):
    def __init__(self, dtype=np.float64):
        super().__init__(dtype)
        self._v = np.zeros(0, dtype=self.dtype)

    def alloc(self, n: int) -> None:
        self.size = int(n)
        self._v = np.zeros(self.size, dtype=self.dtype)

    def zero(self) -> None:
        self._v[:] = 0

    def add(self, rows, values) -> None:
        np.add.at(self._v, np.asarray(rows, dtype=int), values)

    def get(self, i: int):
        return self._v[i]

    def set(self, i: int, value) -> None:
        self._v[i] = value

    def to_array(self) -> np.ndarray:
        return self._v

    def set_array(self, values) -> None:
        self._v[:] = values


class ScipyDirectSolver(LinearSolver):
    """Sparse LU (SuperLU) solve."""

    def solve(self) -> bool:
        A = self.matrix.to_csr().tocsc()
        b = self.rhs.to_array()
        if A.shape[0] == 0:
            self._solution = np.zeros(0, dtype=b.dtype)
            return True
        try:
            lu = spla.splu(A)
        except RuntimeError as exc:            # "Factor is exactly singular"
            logger.error(f"SuperLU factorisation failed: {exc}")
            return False
        x = lu.solve(b)
        if not np.all(np.isfinite(x)):
            logger.error("SuperLU returned a non-finite solution")
            return False
        self._solution = x
        return True


class ScipyGmresSolver(LinearSolver):
    """Restarted GMRES with an incomplete-LU preconditioner."""

    def __init__(self, matrix, rhs, tol=1e-12, maxit=10_000):
        super().__init__(matrix, rhs)
        self.tol = tol
        self.maxit = maxit

    def solve(self) -> bool:
        A = self.matrix.to_csr().tocsc()
        b = self.rhs.to_array()
        if A.shape[0] == 0:
            self._solution = np.zeros(0, dtype=b.dtype)
            return True
        try:
            ilu = spla.spilu(A)
        except RuntimeError as exc:
            logger.error(f"ILU preconditioner failed: {exc}")
            return False
        M = spla.LinearOperator(A.shape, ilu.solve, dtype=A.dtype)
        x, info = spla.gmres(A, b, M=M, rtol=self.tol, atol=0.0, maxiter=self.maxit)
        if info != 0:
            logger.error(f"GMRES did not converge (info={info})")
            return False
        self._solution = x
        return True


class ScipyBackend(Backend):
    name = "scipy"
    supports_complex = True

    def create_matrix(self) -> SparseMatrix:
        return ScipyMatrix(self.dtype)

    def create_vector(self) -> Vector:
        return NumpyVector(self.dtype)

    def create_solver(self, matrix, rhs) -> LinearSolver:
        return ScipyDirectSolver(matrix, rhs)


class ScipyGmresBackend(ScipyBackend):
    name = "scipy-gmres"

    def create_solver(self, matrix, rhs) -> LinearSolver:
        return ScipyGmresSolver(matrix, rhs, tol=self.params.tol, maxit=self.params.maxit)


# ----------------------------------------------------------------------------
#  PETSc backend
# ----------------------------------------------------------------------------
class PetscSession:
    """Process-scoped handle on the PETSc runtime.

    Objects created through the session are destroyed when it is closed;
    a closed session cannot be reused.
    """

    def __init__(self):
        self.PETSc = None
        self._objects = []
        self._closed = False
        self._lock = threading.Lock()

    def acquire(self):
        if self._closed:
            raise BackendConfigurationError("PETSc session already closed")
        if self.PETSc is None:
            try:
                from petsc4py import PETSc
            except ImportError as exc:
                raise BackendConfigurationError(
                    "backend 'petsc' requires petsc4py (pip install pyhpfem[petsc])"
                ) from exc
            self.PETSc = PETSc
            logger.info("PETSc runtime acquired")
        return self.PETSc

    def register(self, obj):
        with self._lock:
            self._objects.append(obj)
        return obj

    def release(self, obj) -> None:
        with self._lock:
            self._objects.remove(obj)
        obj.destroy()

    def close(self) -> None:
        if self._closed:
            return
        with self._lock:
            for obj in reversed(self._objects):
                obj.destroy()
            self._objects.clear()
        self._closed = True
        if self.PETSc is not None:
            logger.info("PETSc session released")

    @property
    def supports_complex(self) -> bool:
        return np.dtype(self.acquire().ScalarType).kind == "c"


class PetscMatrix(SparseMatrix):
    """Triplets are gathered in Python and handed to PETSc in ``finish``."""

    def __init__(self, session: PetscSession, dtype=np.float64):
        super().__init__(dtype)
        self.session = session
        self._coo = ScipyMatrix(dtype)
        self.mat = None

    def prealloc(self, n: int) -> None:
        self.size = int(n)
        self._coo.prealloc(n)

    def zero(self) -> None:
        self._coo.zero()

    def add(self, rows, cols, values) -> None:
        self._coo.add(rows, cols, values)

    def finish(self) -> None:
        PETSc = self.session.PETSc
        A = self._coo.to_csr()
        A.sort_indices()
        if self.mat is not None:
            self.session.release(self.mat)
        self.mat = self.session.register(
            PETSc.Mat().createAIJ(size=A.shape, csr=(A.indptr, A.indices, A.data))
        )
        self.mat.assemble()

    def to_csr(self) -> sp.csr_matrix:
        return self._coo.to_csr()


class PetscVector(NumpyVector):
    def __init__(self, session: PetscSession, dtype=np.float64):
        super().__init__(dtype)
        self.session = session

    def petsc(self):
        return self.session.PETSc.Vec().createWithArray(self._v.copy())


class PetscSolver(LinearSolver):
    def __init__(self, session: PetscSession, matrix: PetscMatrix, rhs: PetscVector,
                 tol=1e-12, maxit=10_000):
        super().__init__(matrix, rhs)
        self.session = session
        self.tol = tol
        self.maxit = maxit

    def solve(self) -> bool:
        PETSc = self.session.PETSc
        if self.matrix.mat is None:
            self.matrix.finish()
        b = self.rhs.petsc()
        x = b.duplicate()
        ksp = PETSc.KSP().create()
        try:
            ksp.setOperators(self.matrix.mat)
            ksp.setType("preonly")
            ksp.getPC().setType("lu")
            ksp.setTolerances(rtol=self.tol, max_it=self.maxit)
            ksp.solve(b, x)
            reason = ksp.getConvergedReason()
            if reason < 0:
                logger.error(f"PETSc KSP failed, reason {reason}")
                return False
            self._solution = np.array(x.getArray(), dtype=self.matrix.dtype)
            return True
        finally:
            for obj in (ksp, x, b):
                obj.destroy()


class PetscBackend(Backend):
    name = "petsc"

    def __init__(self, params: LinearSolverParameters):
        super().__init__(params)
        self.session = PetscSession()
        self.session.acquire()
        self.supports_complex = self.session.supports_complex

    def close(self) -> None:
        self.session.close()

    def create_matrix(self) -> SparseMatrix:
        return PetscMatrix(self.session, self.dtype)

    def create_vector(self) -> Vector:
        return PetscVector(self.session, self.dtype)

    def create_solver(self, matrix, rhs) -> LinearSolver:
        return PetscSolver(self.session, matrix, rhs, tol=self.params.tol, maxit=self.params.maxit)


_BACKENDS: Dict[str, Type[Backend]] = {
    "scipy": ScipyBackend,
    "scipy-gmres": ScipyGmresBackend,
    "petsc": PetscBackend,
}


def get_backend(params: Optional[LinearSolverParameters] = None) -> Backend:
    """Instantiate and validate the backend named in ``params``."""
    params = params or LinearSolverParameters()
    try:
        cls = _BACKENDS[params.backend]
    except KeyError:
        raise BackendConfigurationError(
            f"unknown linear solver backend '{params.backend}', expected one of {sorted(_BACKENDS)}"
        ) from None
    backend = cls(params)
    try:
        backend.check_capabilities()
    except BackendConfigurationError:
        backend.close()
        raise
    return backend
