from .base import WorkflowResolver
from .experiment import ExperimentResolver
from .germplasm import GermplasmResolver
from .samples import SampleResolver

__all__ = [
    "ExperimentResolver",
    "GermplasmResolver",
    "SampleResolver",
    "WorkflowResolver",
]
