import numpy as np
import pytest
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from multispline import BSplineBasis, KnotVectorType
from multispline.errors import DomainError, KnotMultiplicityError

@pytest.fixture
def quadratic_basis():
    p = 2
    knot = np.array([0, 0, 0, 0.5, 1, 1, 1], dtype='float')
    return BSplineBasis(p, knot)

@pytest.fixture
def ctrlPts():
    return np.array([[0, 1, 1, 0], [0, 1, 2, 3]], dtype='float')

def test___init__(quadratic_basis):
    basis = quadratic_basis
    knot = np.array([0, 0, 0, 0.5, 1, 1, 1], dtype='float')
    assert (basis.p==2 
            and np.all(basis.knot==knot) 
            and basis.m==knot.size - 1 
            and basis.n==basis.m - basis.p - 1 
            and basis.span==(basis.knot[basis.p], basis.knot[basis.m - basis.p]))

def test___init___invalid():
    with pytest.raises(ValueError):
        BSplineBasis(2, [0, 0, 1, 0.5, 1, 1])

def test_N(quadratic_basis):
    basis = quadratic_basis
    XI = np.linspace(0, 1, 11)
    N = np.array([(XI<=0.5)*( 4*XI**2 - 4*XI + 1)                                 , 
                  (XI<=0.5)*(-6*XI**2 + 4*XI + 0) + (XI>0.5)*( 2*XI**2 - 4*XI + 2), 
                  (XI<=0.5)*( 2*XI**2 + 0*XI + 0) + (XI>0.5)*(-6*XI**2 + 8*XI - 2), 
                                                    (XI>0.5)*( 4*XI**2 - 4*XI + 1)], dtype='float')
    DN = np.array([(XI<=0.5)*(  8*XI - 4)                        , 
                   (XI<=0.5)*(-12*XI + 4) + (XI>0.5)*(  4*XI - 4), 
                   (XI<=0.5)*(  4*XI + 0) + (XI>0.5)*(-12*XI + 8), 
                                            (XI>0.5)*(  8*XI - 4)], dtype='float')
    assert np.allclose(N.T, basis.N(XI).toarray()) and np.allclose(DN.T, basis.N(XI, 1).toarray())

def test_N_higher_derivatives(quadratic_basis):
    basis = quadratic_basis
    XI = np.array([0.25, 0.75])
    D2N = np.array([[8, -12, 4, 0], 
                    [0, 4, -12, 8]], dtype='float')
    np.testing.assert_allclose(basis.N(XI, 2).toarray(), D2N)
    np.testing.assert_allclose(basis.N(XI, 3).toarray(), 0.)

def test_N_outside_span(quadratic_basis):
    with pytest.raises(DomainError):
        quadratic_basis.N([0.5, 1.1])
    with pytest.raises(ValueError):
        quadratic_basis.N([0.5], k=-1)

def test_evaluate_local_support(quadratic_basis):
    for xi in np.linspace(0, 1, 7):
        indices, values = quadratic_basis.evaluate(xi)
        assert indices.size==quadratic_basis.p + 1
        assert np.all(np.diff(indices)==1)
        assert np.isclose(values.sum(), 1.)

def test_partition_of_unity_unclamped():
    basis = BSplineBasis(3, np.arange(10))
    assert basis.span==(3., 6.)
    XI = np.linspace(3, 6, 31)
    np.testing.assert_allclose(basis.N(XI).toarray().sum(axis=1), 1.)

def test_knotInsertion(quadratic_basis, ctrlPts):
    basis = quadratic_basis
    XI = np.linspace(0, 1, 11)
    pts_before = (basis.N(XI) @ ctrlPts.T).T
    knots_to_add = np.array([0.5, 0.75], dtype='float')
    D = basis.knotInsertion(knots_to_add)
    ctrlPts = (D@ctrlPts.T).T
    pts_after = (basis.N(XI) @ ctrlPts.T).T
    assert np.allclose(pts_before, pts_after)
    np.testing.assert_array_equal(basis.knot, [0, 0, 0, 0.5, 0.5, 0.75, 1, 1, 1])

def test_knotInsertion_unclamped():
    basis = BSplineBasis(3, np.arange(10))
    ctrlPts = np.random.rand(2, basis.n + 1)
    XI = np.linspace(3, 6, 31)
    pts_before = (basis.N(XI) @ ctrlPts.T).T
    D = basis.knotInsertion([3., 4.5])
    assert D.shape==(8, 6)
    pts_after = (basis.N(XI) @ (D@ctrlPts.T)).T
    assert np.allclose(pts_before, pts_after)

def test_insert_knot_multiplicity(quadratic_basis):
    basis = quadratic_basis
    D = basis.insert_knot(0.5, 2)
    assert D.shape==(6, 4)
    assert basis.knot_multiplicity(0.5)==3

def test_insert_knot_multiplicity_error(quadratic_basis):
    basis = quadratic_basis
    knot = basis.knot.copy()
    with pytest.raises(KnotMultiplicityError):
        basis.insert_knot(0.5, 3)
    with pytest.raises(KnotMultiplicityError):
        basis.insert_knot(1., 1)
    np.testing.assert_array_equal(basis.knot, knot)
    assert basis.n==3

def test_insert_knot_outside_span(quadratic_basis):
    with pytest.raises(DomainError):
        quadratic_basis.insert_knot(1.5)

def test_refine(quadratic_basis, ctrlPts):
    basis = quadratic_basis
    XI = np.linspace(0, 1, 11)
    pts_before = (basis.N(XI) @ ctrlPts.T).T
    D = basis.refine()
    np.testing.assert_allclose(basis.knot, [0, 0, 0, 0.25, 0.5, 0.75, 1, 1, 1])
    pts_after = (basis.N(XI) @ (D@ctrlPts.T)).T
    assert np.allclose(pts_before, pts_after)

def test_reduce_support():
    basis = BSplineBasis(2, [0, 0, 0, 0.25, 0.5, 0.75, 1, 1, 1])
    ctrlPts = np.random.rand(2, basis.n + 1)
    XI = np.linspace(0.3, 0.6, 13)
    pts_before = (basis.N(XI) @ ctrlPts.T).T
    S = basis.reduce_support(0.3, 0.6)
    assert S.shape==(4, 6)
    np.testing.assert_array_equal(basis.knot, [0, 0, 0.25, 0.5, 0.75, 1, 1])
    assert basis.span==(0.25, 0.75)
    pts_after = (basis.N(XI) @ (S@ctrlPts.T)).T
    assert np.allclose(pts_before, pts_after)

def test_reduce_support_to_clamped_bounds():
    basis = BSplineBasis(1, [0, 0, 0.5, 0.5, 1, 1])
    S = basis.reduce_support(0.5, 1.)
    assert basis.span==(0.5, 1.)
    np.testing.assert_array_equal(S.toarray(), [[0, 0, 1, 0], [0, 0, 0, 1]])

@pytest.mark.parametrize("lower, upper", [(0.6, 0.3), (0.5, 0.5), (-0.1, 0.5), (0.5, 1.1)])
def test_reduce_support_invalid(quadratic_basis, lower, upper):
    with pytest.raises(DomainError):
        quadratic_basis.reduce_support(lower, upper)
    assert quadratic_basis.n==3

def test_greville_abscissa(quadratic_basis):
    np.testing.assert_allclose(quadratic_basis.greville_abscissa(), [0, 0.25, 0.75, 1])

def test_from_values():
    basis = BSplineBasis.from_values([0., 1., 2., 3.], 1)
    np.testing.assert_array_equal(basis.knot, [0, 0, 1, 2, 3, 3])
    basis = BSplineBasis.from_values(np.linspace(0, 1, 6), 3, KnotVectorType.EQUIDISTANT)
    assert basis.getNbFunc()==6

def test_to_dict_from_dict(quadratic_basis):
    basis = BSplineBasis.from_dict(quadratic_basis.to_dict())
    assert basis.p==quadratic_basis.p
    np.testing.assert_array_equal(basis.knot, quadratic_basis.knot)

@pytest.mark.parametrize("k", [0, 1])
def test_plotN(quadratic_basis, k):
    plt.figure()
    quadratic_basis.plotN(k=k, show=False)
    ax = plt.gca()
    curves = [line for line in ax.lines if line.get_label().startswith("$N_")]
    assert len(curves)==quadratic_basis.getNbFunc()
    assert ax.get_legend() is not None
    plt.close("all")
