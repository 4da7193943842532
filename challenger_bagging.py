"""
Online Bagging with a Periodic Challenger for Concept Drift.

This module implements a streaming ensemble classifier that:
1. Trains every member on a Poisson(1) online bootstrap of the stream
2. Trains one extra, non-voting candidate (the challenger) the same way
3. Tracks the running accuracy of every member and of the candidate
4. Every ``window_size`` prediction queries, replaces the worst member with
   the candidate if the candidate is strictly more accurate, then starts a
   fresh candidate
5. Builds the combined vote from each voting member in turn: the slots the
   member covers are cleared, its running accuracy is set at its top class
   and its raw vote is added on top

Each example is seen exactly once; nothing from the stream is buffered.

License: MIT
"""

from typing import Optional, List, Sequence, Union, Iterable
from dataclasses import dataclass, field
import threading

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.datasets import make_classification
from joblib import Parallel, delayed

from base_learners import (
    ConfigurationError,
    IncrementalLearner,
    Instance,
    LearnerFactory,
    Votes,
    has_mass,
    top_class,
)
from poisson_resampler import PoissonResampler, ResamplerConfig

ArrayLike = np.ndarray

__all__ = [
    "ChallengerBaggingClassifier",
    "ChallengerBaggingConfig",
    "ConfigurationError",
    "EnsembleMember",
    "PerformanceCounter",
    "ReplacementDecision",
    "ReplacementPolicy",
    "VoteAggregator",
    "evaluate_prequential",
    "simulate_data_stream",
]


# ============================================================================
# CONFIGURATION
# ============================================================================


@dataclass
class ChallengerBaggingConfig:
    """Configuration for the challenger bagging ensemble.

    Attributes:
        n_estimators: Number of voting members in the ensemble
        base_learner: Learner name for LearnerFactory, or a learner instance
            used as the template for every member and candidate
        window_size: Prediction queries between replacement evaluations
        classes: Class indices of the stream (required by partial_fit learners)
        random_state: Seed for the Poisson resampling stream
        n_jobs: Threads used to train members on each example (1 = sequential)
        verbose: Verbosity level (0=silent, 1=replacements, 2=member accuracies)
    """

    n_estimators: int = 10
    base_learner: Union[str, IncrementalLearner, None] = "hoeffding_tree"
    window_size: int = 1000
    classes: Optional[Sequence[int]] = None
    random_state: Optional[int] = None
    n_jobs: int = 1
    verbose: int = 0


# ============================================================================
# PERFORMANCE TRACKING
# ============================================================================


@dataclass
class PerformanceCounter:
    """Running (correct, total) counts of one learner's predictions."""

    correct: float = 0.0
    total: float = 0.0

    def record(self, correct: bool) -> None:
        if correct:
            self.correct += 1
        self.total += 1

    @property
    def accuracy(self) -> float:
        """correct / total, 0.0 before the first recorded prediction."""
        if self.total == 0:
            return 0.0
        return self.correct / self.total


@dataclass
class EnsembleMember:
    """A learner together with its running performance."""

    learner: IncrementalLearner
    performance: PerformanceCounter = field(default_factory=PerformanceCounter)


# ============================================================================
# REPLACEMENT POLICY
# ============================================================================


@dataclass
class ReplacementDecision:
    """Outcome of one end-of-window evaluation."""

    evaluation: int
    n_queries: int
    worst_index: int
    worst_accuracy: float
    candidate_accuracy: float
    replaced: bool


class ReplacementPolicy:
    """Replace-worst-with-candidate decision, fired once per window.

    Args:
        window_size: Number of prediction queries per window
    """

    def __init__(self, window_size: int = 1000):
        if window_size < 1:
            raise ConfigurationError("window_size must be at least 1")
        self.window_size = window_size
        self.window_counter = 0
        self.n_evaluations = 0

    def tick(self) -> bool:
        """Count one prediction query; True when it completes a window."""
        self.window_counter += 1
        return self.window_counter % self.window_size == 0

    @staticmethod
    def select_worst(members: Sequence[EnsembleMember]) -> int:
        """Index of the least accurate member; the first one wins ties."""
        worst = 0
        for i, member in enumerate(members):
            if member.performance.accuracy < members[worst].performance.accuracy:
                worst = i
        return worst

    def evaluate(
        self,
        members: List[EnsembleMember],
        candidate: EnsembleMember,
        n_queries: int = 0,
    ) -> ReplacementDecision:
        """Swap the candidate into the worst slot if it is strictly better.

        The swap replaces the slot's learner and counters in one assignment.
        The window counter restarts at zero whatever the outcome; starting a
        fresh candidate is up to the caller.
        """
        worst = self.select_worst(members)
        worst_accuracy = members[worst].performance.accuracy
        candidate_accuracy = candidate.performance.accuracy

        replaced = candidate_accuracy > worst_accuracy
        if replaced:
            members[worst] = EnsembleMember(
                learner=candidate.learner,
                performance=PerformanceCounter(
                    candidate.performance.correct, candidate.performance.total
                ),
            )

        self.window_counter = 0
        self.n_evaluations += 1

        return ReplacementDecision(
            evaluation=self.n_evaluations,
            n_queries=n_queries,
            worst_index=worst,
            worst_accuracy=worst_accuracy,
            candidate_accuracy=candidate_accuracy,
            replaced=replaced,
        )


# ============================================================================
# VOTE AGGREGATION
# ============================================================================


class VoteAggregator:
    """Accuracy-boosted vote combination.

    For each non-abstaining member, in slot order, the combined vector is
    cleared over the member's vote length, the member's running accuracy is
    set at its top class and its raw vote is added. Only the last voter's
    slots survive; entries past its vote length keep earlier values.
    Shorter combined vectors are zero-padded.
    """

    @staticmethod
    def _pad(votes: Votes, length: int) -> Votes:
        if len(votes) >= length:
            return votes
        return np.concatenate([votes, np.zeros(length - len(votes))])

    def combine(self, votes: Sequence[Votes], weights: Sequence[float]) -> Votes:
        combined = np.zeros(0)
        for vote, weight in zip(votes, weights):
            vote = np.asarray(vote, dtype=float)
            if not has_mass(vote):
                continue
            combined = self._pad(combined, len(vote))
            combined[: len(vote)] = 0.0
            combined[top_class(vote)] = weight
            combined[: len(vote)] += vote
        return combined


# ============================================================================
# MAIN ENSEMBLE CLASS
# ============================================================================


class ChallengerBaggingClassifier(BaseEstimator, ClassifierMixin):
    """
    Online bagging ensemble with a periodically promoted challenger.

    Parameters
    ----------
    config : ChallengerBaggingConfig, optional
        Configuration object for the ensemble
    **kwargs : dict
        Configuration parameters (used if config is None)

    Attributes
    ----------
    members_ : list of EnsembleMember
        Voting members, fixed at ``n_estimators``
    candidate_ : EnsembleMember
        The current challenger; trained but never voting
    policy_ : ReplacementPolicy
        Window counter and replacement decision
    replacement_history_ : list of ReplacementDecision
        One entry per completed window
    n_classes_ : int
        Number of classes seen so far (largest class index + 1)
    n_samples_seen_ : int
        Training instances processed
    n_queries_ : int
        Prediction queries processed

    Examples
    --------
    >>> ensemble = ChallengerBaggingClassifier(n_estimators=10, random_state=42)
    >>> for instance in simulate_data_stream(n_samples=2000):
    ...     votes = ensemble.predict_votes(instance)
    ...     ensemble.train_one(instance)
    """

    def __init__(
        self,
        config: Optional[ChallengerBaggingConfig] = None,
        **kwargs,
    ):
        self.config = config or ChallengerBaggingConfig(**kwargs)
        self._validate_config()
        self._lock = threading.RLock()
        self.reset()

    def _validate_config(self) -> None:
        """Validate configuration parameters."""
        if self.config.n_estimators < 1:
            raise ConfigurationError("n_estimators must be at least 1")

        if self.config.window_size < 1:
            raise ConfigurationError("window_size must be at least 1")

        if self.config.base_learner is None:
            raise ConfigurationError("base_learner must be set")

        if not isinstance(self.config.base_learner, (str, IncrementalLearner)):
            raise ConfigurationError(
                "base_learner must be a learner name or an IncrementalLearner, "
                f"got {type(self.config.base_learner).__name__}"
            )

    def _build_template(self) -> IncrementalLearner:
        """Blank learner every member and candidate is copied from."""
        if isinstance(self.config.base_learner, str):
            template = LearnerFactory.create(
                self.config.base_learner,
                classes=self.config.classes,
                random_state=self.config.random_state,
            )
        else:
            template = self.config.base_learner.copy()
        return template.reset()

    def _new_member(self) -> EnsembleMember:
        return EnsembleMember(learner=self.template_.copy().reset())

    def reset(self) -> "ChallengerBaggingClassifier":
        """Discard all learned state and start over from blank learners."""
        with self._lock:
            self.template_ = self._build_template()
            self.members_: List[EnsembleMember] = [
                EnsembleMember(learner=self.template_.copy())
                for _ in range(self.config.n_estimators)
            ]
            self.candidate_ = self._new_member()
            self.policy_ = ReplacementPolicy(self.config.window_size)
            self.aggregator_ = VoteAggregator()

            self.rng_ = np.random.RandomState(self.config.random_state)
            self.resampler_ = PoissonResampler(
                rng=self.rng_,
                config=ResamplerConfig(lam=1.0, random_state=self.config.random_state),
            )

            self.replacement_history_: List[ReplacementDecision] = []
            self.n_samples_seen_ = 0
            self.n_queries_ = 0
            classes = self.config.classes
            self.n_classes_ = (
                int(np.max(classes)) + 1 if classes is not None and len(classes) else 0
            )
        return self

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train_one(self, instance: Instance) -> "ChallengerBaggingClassifier":
        """Train every member and the candidate on one Poisson-weighted instance."""
        if not instance.is_labeled:
            raise ValueError("Training instances must carry a label")

        with self._lock:
            # Members first, in slot order, then the candidate
            learners = [m.learner for m in self.members_] + [self.candidate_.learner]

            jobs = []
            for learner in learners:
                weighted = self.resampler_.resample(instance)
                if weighted is not None:
                    jobs.append((learner, weighted))

            if self.config.n_jobs == 1 or len(jobs) < 2:
                for learner, weighted in jobs:
                    learner.train(weighted)
            else:
                Parallel(n_jobs=self.config.n_jobs, prefer="threads")(
                    delayed(learner.train)(weighted) for learner, weighted in jobs
                )

            self.n_samples_seen_ += 1
            self.n_classes_ = max(self.n_classes_, int(instance.y) + 1)

        return self

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def _replace_worst_and_reset(self) -> ReplacementDecision:
        decision = self.policy_.evaluate(
            self.members_, self.candidate_, n_queries=self.n_queries_
        )
        self.candidate_ = self._new_member()
        self.replacement_history_.append(decision)

        if self.config.verbose > 0:
            outcome = (
                f"candidate replaced member {decision.worst_index}"
                if decision.replaced
                else "ensemble kept"
            )
            print(
                f"  Window #{decision.evaluation} ({decision.n_queries} queries): "
                f"{outcome} (candidate={decision.candidate_accuracy:.4f}, "
                f"worst={decision.worst_accuracy:.4f})"
            )
            if self.config.verbose > 1:
                scores = [f"{m.performance.accuracy:.3f}" for m in self.members_]
                print(f"    Member accuracies: {scores}")

        return decision

    def predict_votes(self, instance: Instance) -> Votes:
        """
        Combined vote vector for one instance.

        On the query that completes a window the replacement policy runs
        before voting, so a newly promoted member already votes here. When
        the instance carries its label, the running accuracy of every voting
        member and of the candidate is updated; unlabeled queries leave all
        counters untouched.

        Parameters
        ----------
        instance : Instance
            Instance to classify

        Returns
        -------
        votes : array of shape (n_classes_seen,)
            Combined scores, indexed by class index (empty if all abstain)
        """
        with self._lock:
            self.n_queries_ += 1
            if self.policy_.tick():
                self._replace_worst_and_reset()

            votes, weights = [], []
            for member in self.members_:
                vote = member.learner.predict(instance)
                if not has_mass(vote):
                    continue

                # Weight with the accuracy from before this query
                votes.append(vote)
                weights.append(member.performance.accuracy)
                if instance.is_labeled:
                    member.performance.record(top_class(vote) == instance.y)

            if instance.is_labeled:
                self.candidate_.performance.record(
                    self.candidate_.learner.correctly_classifies(instance)
                )

            return self.aggregator_.combine(votes, weights)

    # ------------------------------------------------------------------
    # scikit-learn interface
    # ------------------------------------------------------------------

    def partial_fit(
        self,
        X: ArrayLike,
        y: ArrayLike,
        classes: Optional[ArrayLike] = None,
        sample_weight: Optional[ArrayLike] = None,
    ) -> "ChallengerBaggingClassifier":
        """
        Train on a batch of samples, one instance at a time, in order.

        Parameters
        ----------
        X : array-like of shape (n_samples, n_features)
            Training data
        y : array-like of shape (n_samples,)
            Class indices
        classes : array-like, optional
            All possible class indices
        sample_weight : array-like of shape (n_samples,), optional
            Per-sample weights (default 1.0)

        Returns
        -------
        self : ChallengerBaggingClassifier
        """
        X = np.asarray(X)
        y = np.asarray(y)

        if classes is not None:
            self.n_classes_ = max(self.n_classes_, int(np.max(classes)) + 1)

        if sample_weight is None:
            sample_weight = np.ones(len(X))

        for x_i, y_i, w_i in zip(X, y, sample_weight):
            self.train_one(Instance(x=x_i, y=int(y_i), weight=float(w_i)))

        return self

    def decision_votes(self, X: ArrayLike, y: Optional[ArrayLike] = None) -> ArrayLike:
        """
        Raw combined vote vectors for a batch of samples.

        Passing ``y`` lets the queries update member and candidate
        accuracies, as in test-then-train evaluation.

        Returns
        -------
        votes : array of shape (n_samples, n_classes)
        """
        X = np.asarray(X)
        labels = [None] * len(X) if y is None else [int(v) for v in np.asarray(y)]

        rows = [
            self.predict_votes(Instance(x=x_i, y=y_i)) for x_i, y_i in zip(X, labels)
        ]

        width = max([self.n_classes_, 1] + [len(r) for r in rows])
        result = np.zeros((len(rows), width))
        for i, row in enumerate(rows):
            result[i, : len(row)] = row
        return result

    def predict_proba(self, X: ArrayLike, y: Optional[ArrayLike] = None) -> ArrayLike:
        """
        Class probabilities from the combined votes.

        Each row of ``decision_votes`` is normalized to sum to 1; rows where
        every member abstained become uniform.

        Returns
        -------
        proba : array of shape (n_samples, n_classes)
        """
        votes = self.decision_votes(X, y)
        row_sums = votes.sum(axis=1, keepdims=True)

        proba = np.full_like(votes, 1.0 / votes.shape[1])
        voted = row_sums[:, 0] > 0
        proba[voted] = votes[voted] / row_sums[voted]
        return proba

    def predict(self, X: ArrayLike, y: Optional[ArrayLike] = None) -> ArrayLike:
        """Predict class indices (argmax of the combined votes)."""
        return np.argmax(self.decision_votes(X, y), axis=1)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_sub_classifiers(self) -> List[IncrementalLearner]:
        """Voting member learners, in slot order."""
        return [member.learner for member in self.members_]

    def get_performance_summary(self) -> pd.DataFrame:
        """Running performance of every member and of the candidate.

        Returns:
            DataFrame with one row per slot plus one for the candidate
        """
        rows = [
            {
                "slot": i,
                "role": "member",
                "correct": m.performance.correct,
                "total": m.performance.total,
                "accuracy": m.performance.accuracy,
            }
            for i, m in enumerate(self.members_)
        ]
        rows.append(
            {
                "slot": None,
                "role": "candidate",
                "correct": self.candidate_.performance.correct,
                "total": self.candidate_.performance.total,
                "accuracy": self.candidate_.performance.accuracy,
            }
        )
        return pd.DataFrame(rows)

    def get_replacement_summary(self) -> dict:
        """Get replacement statistics.

        Returns:
            Dictionary with replacement statistics
        """
        replaced = [d for d in self.replacement_history_ if d.replaced]
        return {
            "n_evaluations": len(self.replacement_history_),
            "n_replacements": len(replaced),
            "replaced_slots": [d.worst_index for d in replaced],
            "window_size": self.config.window_size,
        }


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def simulate_data_stream(
    n_samples: int = 5000,
    n_features: int = 10,
    n_classes: int = 2,
    drift_points: Optional[List[int]] = None,
    noise_level: float = 0.1,
    random_state: int = 42,
) -> Iterable[Instance]:
    """Simulate a labeled data stream with abrupt concept drift.

    Args:
        n_samples: Total number of instances
        n_features: Number of features
        n_classes: Number of classes
        drift_points: Sample positions where the concept changes
        noise_level: Fraction of flipped labels
        random_state: Seed; each concept uses a different derived seed

    Yields:
        Labeled Instance objects
    """
    if drift_points is None:
        drift_points = [n_samples // 3, 2 * n_samples // 3]

    bounds = [0] + sorted(p for p in drift_points if 0 < p < n_samples) + [n_samples]

    for concept, (start, stop) in enumerate(zip(bounds[:-1], bounds[1:])):
        X, y = make_classification(
            n_samples=stop - start,
            n_features=n_features,
            n_informative=max(2, n_features // 2),
            n_redundant=max(0, n_features // 4),
            n_classes=n_classes,
            n_clusters_per_class=1,
            flip_y=noise_level,
            random_state=random_state + concept * 1000,
        )
        for x_i, y_i in zip(X, y):
            yield Instance(x=x_i, y=int(y_i))


def evaluate_prequential(
    model: Union[ChallengerBaggingClassifier, IncrementalLearner],
    stream: Iterable[Instance],
    report_every: int = 500,
) -> pd.DataFrame:
    """Test-then-train evaluation over a stream.

    Every instance is first predicted, then used for training.

    Args:
        model: Ensemble or single incremental learner
        stream: Labeled instances
        report_every: Number of instances per reported window

    Returns:
        DataFrame with cumulative and per-window accuracy
    """
    if hasattr(model, "predict_votes"):
        predict, train = model.predict_votes, model.train_one
    else:
        predict, train = model.predict, model.train

    results = []
    n_seen, n_correct, window_correct = 0, 0, 0

    for instance in stream:
        votes = predict(instance)
        correct = has_mass(votes) and top_class(votes) == instance.y
        train(instance)

        n_seen += 1
        n_correct += int(correct)
        window_correct += int(correct)

        if n_seen % report_every == 0:
            results.append(
                {
                    "n_samples": n_seen,
                    "accuracy": n_correct / n_seen,
                    "window_accuracy": window_correct / report_every,
                }
            )
            window_correct = 0

    return pd.DataFrame(results, columns=["n_samples", "accuracy", "window_accuracy"])
