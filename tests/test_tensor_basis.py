import numpy as np
import pytest
import scipy.sparse as sps
from multispline import TensorBSplineBasis
from multispline.errors import DomainError, KnotMultiplicityError

@pytest.fixture
def quadratic_surface():
    degrees = [2, 2]
    knots = [
        np.array([0., 0., 0., 0.5, 1., 1., 1.], dtype=float),
        np.array([0., 0., 0., 0.4, 0.7, 1., 1., 1.], dtype=float)
    ]
    return TensorBSplineBasis(degrees, knots)

@pytest.fixture
def cubic_volume():
    degrees = [3, 1, 2]
    knots = [
        np.array([0., 0., 0., 0., 0.3, 0.7, 1., 1., 1., 1.], dtype=float),
        np.array([0., 0., 0.5, 1., 1.], dtype=float),
        np.array([-1., -1., -1., 0., 2., 2., 2.], dtype=float)
    ]
    return TensorBSplineBasis(degrees, knots)

@pytest.fixture
def coefs(quadratic_surface):
    rng = np.random.default_rng(0)
    return rng.random(quadratic_surface.getNbFunc())

def test___init__(quadratic_surface):
    assert quadratic_surface.NPa==2
    assert quadratic_surface.getShape()==(4, 5)
    assert quadratic_surface.getNbFunc()==20
    np.testing.assert_array_equal(quadratic_surface.getDegrees(), [2, 2])
    with pytest.raises(ValueError):
        TensorBSplineBasis([2], [])

def test_getKnots_returns_copies(quadratic_surface):
    knots = quadratic_surface.getKnots()
    knots[0][0] = -10.
    assert quadratic_surface.bases[0].knot[0]==0.

def test_eval_partition_of_unity(cubic_volume):
    rng = np.random.default_rng(1)
    lower = cubic_volume.get_support_lower_bound()
    upper = cubic_volume.get_support_upper_bound()
    for _ in range(20):
        x = lower + (upper - lower)*rng.random(3)
        N = cubic_volume.eval(x)
        assert N.shape==(1, cubic_volume.getNbFunc())
        assert N.nnz <= cubic_volume.max_nonzeros_per_sample()
        assert np.isclose(N.sum(), 1.)

def test_eval_flattening_matches_kron(cubic_volume):
    x = np.array([0.42, 0.8, 1.3])
    expected = np.ones(1)
    for basis, xi in zip(cubic_volume.bases, x):
        expected = np.kron(expected, basis.N([xi]).toarray().ravel())
    np.testing.assert_allclose(cubic_volume.eval(x).toarray().ravel(), expected)

def test_eval_matches_DN(cubic_volume):
    rng = np.random.default_rng(2)
    lower = cubic_volume.get_support_lower_bound()
    upper = cubic_volume.get_support_upper_bound()
    X = lower[:, None] + (upper - lower)[:, None]*rng.random((3, 8))
    DN = cubic_volume.DN(X)
    for i in range(X.shape[1]):
        np.testing.assert_allclose(DN[i].toarray(), cubic_volume.eval(X[:, i]).toarray())

def test_DN_grid_and_derivatives(quadratic_surface):
    xi = np.linspace(0, 1, 4)
    eta = np.linspace(0, 1, 3)
    N = quadratic_surface.DN((xi, eta))
    assert N.shape==(12, 20)
    np.testing.assert_allclose(N.sum(axis=1), 1.)
    dN = quadratic_surface.DN((xi, eta), k=1)
    assert dN.shape==(2, )
    np.testing.assert_allclose(dN[0].sum(axis=1), 0., atol=1e-12)
    d2N = quadratic_surface.DN((xi, eta), k=2)
    assert d2N.shape==(2, 2)
    np.testing.assert_allclose(d2N[0, 1].toarray(), d2N[1, 0].toarray())

def test_eval_outside_support(quadratic_surface):
    with pytest.raises(DomainError):
        quadratic_surface.eval([0.5, 1.2])
    with pytest.raises(DomainError):
        quadratic_surface.eval([0.5])
    assert not quadratic_surface.inside_support([0.5, 1.2])
    assert quadratic_surface.inside_support([0., 1.])

def test_eval_jacobian_finite_differences(quadratic_surface, coefs):
    x = np.array([0.31, 0.55])
    J = quadratic_surface.eval_jacobian(x)
    assert J.shape==(20, 2)
    h = 1e-6
    for axis in range(2):
        dx = np.zeros(2)
        dx[axis] = h
        fd = (quadratic_surface.eval(x + dx) @ coefs - quadratic_surface.eval(x - dx) @ coefs)/(2*h)
        np.testing.assert_allclose(coefs @ J[:, axis].toarray().ravel(), fd[0], rtol=1e-6, atol=1e-8)

def test_eval_hessian(quadratic_surface, coefs):
    x = np.array([0.31, 0.55])
    H = quadratic_surface.eval_hessian(x)
    assert H.shape==(40, 2)
    d2N = quadratic_surface.DN(x.reshape((2, 1)), k=2)
    for i in range(2):
        for j in range(2):
            np.testing.assert_allclose(H[i*20:(i + 1)*20, j].toarray().ravel(), 
                                       d2N[i, j].toarray().ravel())
    c = coefs.reshape((1, -1))
    hess = (sps.kron(sps.identity(2), c) @ H).toarray()
    np.testing.assert_allclose(hess, hess.T)

def test_insert_knots(quadratic_surface, coefs):
    XI = (np.linspace(0, 1, 7), np.linspace(0, 1, 5))
    before = quadratic_surface.DN(XI) @ coefs
    T = quadratic_surface.insert_knots(0.25, 1, 2)
    assert quadratic_surface.getShape()==(4, 7)
    assert T.shape==(28, 20)
    after = quadratic_surface.DN(XI) @ (T @ coefs)
    np.testing.assert_allclose(after, before)

def test_insert_knots_multiplicity_error(quadratic_surface):
    knots = quadratic_surface.getKnots()
    with pytest.raises(KnotMultiplicityError):
        quadratic_surface.insert_knots(0.5, 0, 3)
    for knot, basis in zip(knots, quadratic_surface.bases):
        np.testing.assert_array_equal(knot, basis.knot)

def test_refine_knots(cubic_volume):
    rng = np.random.default_rng(3)
    c = rng.random(cubic_volume.getNbFunc())
    XI = (np.linspace(0, 1, 5), np.linspace(0, 1, 4), np.linspace(-1, 2, 6))
    before = cubic_volume.DN(XI) @ c
    T = cubic_volume.refine_knots()
    assert cubic_volume.getShape()==(9, 5, 6)
    np.testing.assert_allclose(cubic_volume.DN(XI) @ (T @ c), before)

def test_reduce_support(quadratic_surface, coefs):
    lower, upper = [0.2, 0.45], [0.6, 0.9]
    XI = (np.linspace(0.2, 0.6, 5), np.linspace(0.45, 0.9, 4))
    before = quadratic_surface.DN(XI) @ coefs
    S = quadratic_surface.reduce_support(lower, upper)
    assert S.shape==(quadratic_surface.getNbFunc(), 20)
    assert np.all(quadratic_surface.get_support_lower_bound() <= lower)
    assert np.all(quadratic_surface.get_support_upper_bound() >= upper)
    np.testing.assert_allclose(quadratic_surface.DN(XI) @ (S @ coefs), before)

def test_reduce_support_invalid(quadratic_surface):
    with pytest.raises(DomainError):
        quadratic_surface.reduce_support([0.2, 0.5], [0.6, 0.4])
    assert quadratic_surface.getShape()==(4, 5)

def test_knot_averages(quadratic_surface):
    averages = quadratic_surface.knot_averages()
    g0, g1 = quadratic_surface.greville_abscissa()
    assert averages.shape==(2, 20)
    np.testing.assert_allclose(averages[0], np.repeat(g0, g1.size))
    np.testing.assert_allclose(averages[1], np.tile(g1, g0.size))

def test_from_values_and_dict():
    basis = TensorBSplineBasis.from_values([np.linspace(0, 1, 6), np.linspace(0, 2, 4)], [3, 1])
    assert basis.getShape()==(6, 4)
    copy = TensorBSplineBasis.from_dict(basis.to_dict())
    assert copy.getShape()==basis.getShape()
    for a, b in zip(copy.getKnots(), basis.getKnots()):
        np.testing.assert_array_equal(a, b)

def test_getSpans_and_knot_multiplicity(cubic_volume):
    assert cubic_volume.getSpans()==[(0., 1.), (0., 1.), (-1., 2.)]
    assert cubic_volume.knot_multiplicity(0., 0)==4
    assert cubic_volume.knot_multiplicity(0.5, 1)==1
    assert cubic_volume.knot_multiplicity(0.5, 2)==0
    cubic_volume.insert_knots(0.5, 2, 2)
    assert cubic_volume.knot_multiplicity(0.5, 2)==2
    assert cubic_volume.getSpans()[2]==(-1., 2.)
