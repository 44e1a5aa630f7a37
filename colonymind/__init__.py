"""
Colonymind - decision core for tick-based colony-management agents.

Decides cheaply, every tick, whether expensive analysis is affordable, what is
already known about each managed area, and which worker to produce next.

Fully decoupled from the host simulation: the tick counter, budget gauge and
area surveys arrive through an injected ColonyHost adapter.
"""

__version__ = "0.1.0"

# Main tick driver
from .orchestrator import ColonyOrchestrator, TickReport

# Core interfaces
from .host import ColonyHost
from .persistence import AreaStore, InMemoryAreaStore, JsonAreaStore

# Components
from .budget import BudgetMonitor, RecoveryPolicy, TierGate
from .cache import CachePolicy, TieredCache, default_value
from .intel import AreaIntel
from .population import PlannerPolicy, PopulationPlanner, body_cost

# Core schemas
from .schemas import (
    AreaFacts,
    BodyPart,
    CoreSnapshot,
    FactCategory,
    ManualOverride,
    PopulationTarget,
    Pressure,
    Priority,
    Role,
    RoleCensus,
    SpawnDecision,
    SpawnPlan,
    UnitInfo,
)

from .config import Config
from .logging_utils import DiagnosticLog

__all__ = [
    # Main class
    "ColonyOrchestrator",
    "TickReport",
    # Core interfaces
    "ColonyHost",
    "AreaStore",
    "InMemoryAreaStore",
    "JsonAreaStore",
    # Components
    "BudgetMonitor",
    "RecoveryPolicy",
    "TierGate",
    "CachePolicy",
    "TieredCache",
    "default_value",
    "AreaIntel",
    "PlannerPolicy",
    "PopulationPlanner",
    "body_cost",
    # Schemas
    "AreaFacts",
    "BodyPart",
    "CoreSnapshot",
    "FactCategory",
    "ManualOverride",
    "PopulationTarget",
    "Pressure",
    "Priority",
    "Role",
    "RoleCensus",
    "SpawnDecision",
    "SpawnPlan",
    "UnitInfo",
    # Utilities
    "Config",
    "DiagnosticLog",
]
