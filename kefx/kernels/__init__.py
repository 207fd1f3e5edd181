from .kernelizers import DERIVATIVE_KERNELS, derivative_kernels, kernelize
from .kernels import (
    Gaussian,
    Kernel,
    Polynomial,
    SquaredExponential,
    polynomial_kernel,
    polynomial_kernel_base,
    squared_exponential_kernel,
    squared_exponential_kernel_base,
)
