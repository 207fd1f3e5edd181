from .base import Base, FittedModel
from .basis import BasisExpansion
from .full import Full
from .lite import Lite
from .nystrom import Nystrom

KernelExpFamily = Full
KernelExpFamilyLite = Lite
KernelExpFamilyNystrom = Nystrom
