"""
.. include:: ../README.md
"""
from multispline.errors import (SplineError, 
                                IncompleteGridError, 
                                DomainError, 
                                SingularSystemError, 
                                KnotMultiplicityError, 
                                SplineStateError, 
                                SerializationFormatError, 
                                NumericParseError, 
                                InvalidFormatError, 
                                OutOfRangeError)
from multispline.knot_vector import KnotVectorType, build_knot_vector
from multispline.b_spline_basis import BSplineBasis
from multispline.tensor_basis import TensorBSplineBasis
from multispline.data_table import DataTable, DataSample
from multispline.control_points import ControlPointSolver, SparseLUSolver, DenseQRSolver
from multispline.spline_model import SplineModel, BSplineType, ModelState
