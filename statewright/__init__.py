"""statewright - desired-state reconciliation engine for cloud resources."""

from .diff import ChangeAction as ChangeAction
from .diff import ChangeSet as ChangeSet
from .diff import Differ as Differ
from .engine import Engine as Engine
from .executor import ApplyResult as ApplyResult
from .executor import ApplyStatus as ApplyStatus
from .executor import PlanExecutor as PlanExecutor
from .graph import ResourceDeclaration as ResourceDeclaration
from .graph import build_graph as build_graph
from .providers import ProviderRegistry as ProviderRegistry
from .state import StateRecord as StateRecord

__version__ = "0.1.0"
