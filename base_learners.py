"""
Incremental Base Learners for Online Ensembles.

This module defines the capability interface every ensemble member must
implement, plus adapters for the learners used in practice:
1. HoeffdingTreeLearner: incremental decision tree (default base learner)
2. PartialFitLearner: any scikit-learn estimator supporting partial_fit

Class labels are integer class indices (0, 1, 2, ...). Vote vectors are
indexed by class index; an empty or all-zero vector means the learner
abstains.

License: MIT
"""

from typing import Optional, Sequence, Union
from collections.abc import Mapping
from dataclasses import dataclass, replace
from abc import ABC, abstractmethod
import copy
import inspect
import warnings

import numpy as np
from river.tree import HoeffdingTreeClassifier
from sklearn.base import ClassifierMixin, clone
from sklearn.linear_model import SGDClassifier, Perceptron
from sklearn.naive_bayes import GaussianNB


# ============================================================================
# TYPE DEFINITIONS
# ============================================================================

Features = Union[np.ndarray, Mapping]
Votes = np.ndarray


class ConfigurationError(ValueError):
    """Raised when an ensemble or learner is configured with invalid values."""


# ============================================================================
# INSTANCE
# ============================================================================


@dataclass(frozen=True, eq=False)
class Instance:
    """A single weighted example from the stream.

    Attributes:
        x: Feature vector (array-like or {feature: value} mapping)
        y: True class index, None when the label is not known
        weight: Instance weight
    """

    x: Features
    y: Optional[int] = None
    weight: float = 1.0

    def __post_init__(self):
        if self.weight < 0:
            raise ValueError(f"weight must be non-negative, got {self.weight}")

    def with_weight(self, weight: float) -> "Instance":
        """Return a copy of this instance carrying a new weight."""
        return replace(self, weight=weight)

    @property
    def is_labeled(self) -> bool:
        return self.y is not None


def top_class(votes: Votes) -> int:
    """Index of the highest vote, ties broken by the lowest index."""
    return int(np.argmax(votes))


def has_mass(votes: Votes) -> bool:
    """Whether a vote vector expresses any opinion at all."""
    return len(votes) > 0 and float(np.sum(votes)) > 0.0


# ============================================================================
# LEARNER INTERFACE
# ============================================================================


class IncrementalLearner(ABC):
    """Capability interface for ensemble members.

    The ensemble only ever calls these five operations; nothing else about
    the concrete model is assumed.
    """

    @abstractmethod
    def train(self, instance: Instance) -> None:
        """Update the model with one (weighted) instance."""

    @abstractmethod
    def predict(self, instance: Instance) -> Votes:
        """Per-class votes for an instance, indexed by class index."""

    @abstractmethod
    def reset(self) -> "IncrementalLearner":
        """Return the model to its blank, untrained state."""

    def copy(self) -> "IncrementalLearner":
        """Independent copy, including any learned state."""
        return copy.deepcopy(self)

    def correctly_classifies(self, instance: Instance) -> bool:
        """Whether the top prediction matches the instance label.

        An abstaining learner predicts class 0. Unlabeled instances never
        count as correct.
        """
        if not instance.is_labeled:
            return False
        votes = self.predict(instance)
        if not has_mass(votes):
            return instance.y == 0
        return top_class(votes) == instance.y


# ============================================================================
# ADAPTERS
# ============================================================================


class HoeffdingTreeLearner(IncrementalLearner):
    """Incremental decision tree backed by river's Hoeffding tree.

    Args:
        **tree_params: Keyword arguments for HoeffdingTreeClassifier
    """

    def __init__(self, **tree_params):
        self.tree_params = tree_params
        self.model = HoeffdingTreeClassifier(**tree_params)

    @staticmethod
    def _as_dict(x: Features) -> dict:
        if isinstance(x, Mapping):
            return dict(x)
        return {i: float(v) for i, v in enumerate(np.ravel(x))}

    def train(self, instance: Instance) -> None:
        self.model.learn_one(self._as_dict(instance.x), int(instance.y), w=instance.weight)

    def predict(self, instance: Instance) -> Votes:
        proba = self.model.predict_proba_one(self._as_dict(instance.x))
        if not proba:
            return np.zeros(0)

        votes = np.zeros(max(int(c) for c in proba) + 1)
        for cls, p in proba.items():
            votes[int(cls)] = p
        return votes

    def reset(self) -> "HoeffdingTreeLearner":
        self.model = self.model.clone()
        return self

    def __repr__(self) -> str:
        return f"HoeffdingTreeLearner({self.tree_params})"


class PartialFitLearner(IncrementalLearner):
    """Adapter for scikit-learn estimators that support ``partial_fit``.

    Args:
        estimator: Unfitted scikit-learn classifier with partial_fit
        classes: All class indices the stream may contain
    """

    def __init__(self, estimator: ClassifierMixin, classes: Sequence[int]):
        if not hasattr(estimator, "partial_fit"):
            raise ConfigurationError(
                f"{type(estimator).__name__} does not support partial_fit"
            )
        if classes is None or len(classes) == 0:
            raise ConfigurationError("classes must be provided for partial_fit learners")

        self.estimator = estimator
        self.classes = np.asarray(classes, dtype=int)
        self.n_classes = int(self.classes.max()) + 1
        self._fitted = False
        self._accepts_weight = (
            "sample_weight" in inspect.signature(estimator.partial_fit).parameters
        )
        self._weight_warning_issued = False

        if not hasattr(estimator, "predict_proba"):
            warnings.warn(
                f"{type(estimator).__name__} does not support predict_proba. "
                "Votes will be one-hot predictions."
            )

    def _row(self, instance: Instance) -> np.ndarray:
        return np.asarray(instance.x, dtype=float).reshape(1, -1)

    def train(self, instance: Instance) -> None:
        X = self._row(instance)
        y = np.array([int(instance.y)])
        kwargs = {}
        if not self._fitted:
            kwargs["classes"] = self.classes

        if self._accepts_weight:
            kwargs["sample_weight"] = np.array([instance.weight])
        elif instance.weight != 1.0 and not self._weight_warning_issued:
            warnings.warn(
                f"{type(self.estimator).__name__}.partial_fit ignores sample weights"
            )
            self._weight_warning_issued = True

        self.estimator.partial_fit(X, y, **kwargs)
        self._fitted = True

    def predict(self, instance: Instance) -> Votes:
        if not self._fitted:
            return np.zeros(0)

        X = self._row(instance)
        votes = np.zeros(self.n_classes)

        # Some losses (e.g. hinge) expose predict_proba but refuse to use it
        try:
            proba = self.estimator.predict_proba(X)[0]
        except AttributeError:
            votes[int(self.estimator.predict(X)[0])] = 1.0
            return votes

        # Early single-sample updates can leave zero variances behind
        if not np.all(np.isfinite(proba)):
            return np.zeros(0)

        # Align estimator columns with class indices
        for i, cls in enumerate(self.estimator.classes_):
            votes[int(cls)] = proba[i]
        return votes

    def reset(self) -> "PartialFitLearner":
        self.estimator = clone(self.estimator)
        self._fitted = False
        return self

    def __repr__(self) -> str:
        return f"PartialFitLearner({type(self.estimator).__name__})"


# ============================================================================
# LEARNER FACTORY
# ============================================================================


class LearnerFactory:
    """Factory for creating base learners by name."""

    _sklearn_learners = {
        "naive_bayes": lambda random_state, **params: GaussianNB(**params),
        "sgd": lambda random_state, **params: SGDClassifier(
            loss="log_loss", random_state=random_state, **params
        ),
        "perceptron": lambda random_state, **params: Perceptron(
            random_state=random_state, **params
        ),
    }

    @classmethod
    def available(cls) -> list:
        return ["hoeffding_tree"] + list(cls._sklearn_learners)

    @classmethod
    def create(
        cls,
        name: str,
        classes: Optional[Sequence[int]] = None,
        random_state: Optional[int] = None,
        **params,
    ) -> IncrementalLearner:
        """Create a base learner.

        Args:
            name: Learner name (see ``available()``)
            classes: Class indices, required by scikit-learn backed learners
            random_state: Seed passed to learners that use randomness
            **params: Extra keyword arguments for the underlying model

        Returns:
            IncrementalLearner instance

        Raises:
            ConfigurationError: If the name is unknown or classes are missing
        """
        if name == "hoeffding_tree":
            return HoeffdingTreeLearner(**params)

        if name not in cls._sklearn_learners:
            valid = ", ".join(cls.available())
            raise ConfigurationError(f"Unknown base learner: {name}. Valid learners: {valid}")

        if classes is None:
            raise ConfigurationError(f"Base learner '{name}' requires classes to be set")

        estimator = cls._sklearn_learners[name](random_state, **params)
        return PartialFitLearner(estimator, classes=classes)
