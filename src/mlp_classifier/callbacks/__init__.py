"""Epoch-end training callbacks for mlp_classifier."""

from mlp_classifier.callbacks.base import PlateauTracker
from mlp_classifier.callbacks.controller import CallbackController, CallbackDecision
from mlp_classifier.callbacks.early_stopping import EarlyStopping, EarlyStoppingState
from mlp_classifier.callbacks.reduce_lr import ReduceLROnPlateau, ReduceLROnPlateauState

__all__ = [
    "CallbackController",
    "CallbackDecision",
    "EarlyStopping",
    "EarlyStoppingState",
    "PlateauTracker",
    "ReduceLROnPlateau",
    "ReduceLROnPlateauState",
]
