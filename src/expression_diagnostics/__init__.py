"""Expression Diagnostics: can a gated emotion rule ever fire, and how often?

An *expression* is a rule whose JSON-logic prerequisites compare mood
axes, emotion intensities and sexual states against thresholds.  This
package answers, without running the full simulation:

* which AND/OR **branches** exist and whether each one can reach the
  prototype intensities it demands (interval arithmetic over gates)
* how often each clause passes over sampled **contexts**, and whether a
  zero rate is a ceiling problem or a logical impossibility
* which **prototypes** best fit the mood region an expression targets
* whether two prototypes are **behaviorally redundant**, what to do
  about it, and which single-axis gate would pull them apart
* how sensitive the trigger rate is to each blocking threshold

Every tunable number lives in :data:`DEFAULT_THRESHOLDS`.  Every
analyzer accepts an optional logger and falls back to its module's
``logging.getLogger(__name__)``.
"""
from .thresholds import ThresholdRegistry, DEFAULT_THRESHOLDS, validate_thresholds
from .collaborators import (
    MissingDependencyError, DiagnosticsLogger, PrototypeSource, StateGenerator,
    validate_dependency, resolve_logger,
)

# Axes, gates, logic
from .axes import (
    Axis, CANONICAL_AXES, get_axis, normalized_range,
    normalize_context_axes, compute_sexual_arousal,
)
from .gates import (
    AxisInterval, GateConstraint, GateIntervals,
    parse_gate, check_all_gates_pass, extract_gate_intervals,
)
from .logic import (
    Var, Delta, Compare, And, Or, Unknown, LogicVisitor,
    parse_logic, parse_prerequisites, evaluate_logic, evaluate_prerequisites,
)
from .clauses import (
    ExtractedClause, extract_non_axis_clauses, extract_axis_constraints,
)
from .prototypes import (
    Prototype, PrototypeRegistry, compute_intensity, compute_gated_intensity,
)

# Reachability & feasibility
from .reachability import (
    Branch, PrototypeRequirement, BranchReachability, PathAnalysisResult,
    enumerate_branches, compute_reachability, PathSensitiveAnalyzer,
)
from .feasibility import (
    ClauseClassification, ClauseFeasibility, classify_feasibility,
    EmpiricalFeasibilityAnalyzer,
)

# Prototype fit
from .fit_ranking import (
    PrototypeFit, FitRankingResult, ImpliedPrototypeResult,
    compute_composite_score, PrototypeFitRanker,
)

# Behavioral overlap
from .sampling import RandomStateGenerator, SampledState, build_context, generate_contexts
from .implication import GateImplication, evaluate_gate_implication
from .overlap import (
    OverlapResult, OutputVector, compute_output_vector,
    compute_candidate_metrics, BehavioralOverlapEvaluator,
)
from .classifier import OverlapClassification, NearMissResult, OverlapClassifier
from .recommendations import (
    Recommendation, build_evidence, OverlapRecommendationBuilder,
)
from .suggestions import Suggestion, ActionableSuggestionEngine
from .overlap_analysis import (
    OverlapAnalysisResult, NearMissPair, PairFailure, PrototypeOverlapAnalyzer,
)

# Sensitivity
from .sensitivity import (
    Blocker, SensitivityGrid, flatten_blockers, suggest_thresholds,
    SensitivityAnalyzer,
)

__version__ = "0.4.0"

__all__ = [
    # Configuration & collaborators
    "ThresholdRegistry", "DEFAULT_THRESHOLDS", "validate_thresholds",
    "MissingDependencyError", "DiagnosticsLogger", "PrototypeSource",
    "StateGenerator", "validate_dependency", "resolve_logger",
    # Axes, gates, logic
    "Axis", "CANONICAL_AXES", "get_axis", "normalized_range",
    "normalize_context_axes", "compute_sexual_arousal",
    "AxisInterval", "GateConstraint", "GateIntervals",
    "parse_gate", "check_all_gates_pass", "extract_gate_intervals",
    "Var", "Delta", "Compare", "And", "Or", "Unknown", "LogicVisitor",
    "parse_logic", "parse_prerequisites", "evaluate_logic",
    "evaluate_prerequisites",
    "ExtractedClause", "extract_non_axis_clauses", "extract_axis_constraints",
    "Prototype", "PrototypeRegistry", "compute_intensity",
    "compute_gated_intensity",
    # Reachability & feasibility
    "Branch", "PrototypeRequirement", "BranchReachability",
    "PathAnalysisResult", "enumerate_branches", "compute_reachability",
    "PathSensitiveAnalyzer",
    "ClauseClassification", "ClauseFeasibility", "classify_feasibility",
    "EmpiricalFeasibilityAnalyzer",
    # Prototype fit
    "PrototypeFit", "FitRankingResult", "ImpliedPrototypeResult",
    "compute_composite_score", "PrototypeFitRanker",
    # Behavioral overlap
    "RandomStateGenerator", "SampledState", "build_context",
    "generate_contexts",
    "GateImplication", "evaluate_gate_implication",
    "OverlapResult", "OutputVector", "compute_output_vector",
    "compute_candidate_metrics", "BehavioralOverlapEvaluator",
    "OverlapClassification", "NearMissResult", "OverlapClassifier",
    "Recommendation", "build_evidence", "OverlapRecommendationBuilder",
    "Suggestion", "ActionableSuggestionEngine",
    "OverlapAnalysisResult", "NearMissPair", "PairFailure",
    "PrototypeOverlapAnalyzer",
    # Sensitivity
    "Blocker", "SensitivityGrid", "flatten_blockers", "suggest_thresholds",
    "SensitivityAnalyzer",
]
