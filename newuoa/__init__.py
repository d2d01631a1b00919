from .newuoa import *
from .util import NewuoaError, PreconditionViolation, IllConditioned, DivergedGeometry, NonFiniteObjective
from .workspace import Workspace

__version__ = '0.1.0'
