#!/usr/bin/env python3
"""
Offline Training Script - TinyTeach
Trains the classifier head from a dataset exported with the 's' key.

Usage:
    python scripts/train_model.py --dataset data/dataset.npz --output models/head.pkl
"""

import argparse
import os
from functools import partial

import numpy as np
import yaml
from sklearn.metrics import classification_report
from sklearn.model_selection import train_test_split

from tinyteach.ai.trainable_model import MLPClassifierModel
from tinyteach.ai.training_coordinator import TrainingCoordinator
from tinyteach.session.dataset import Dataset
from tinyteach.session.state import SessionState
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)


def split_dataset(session: SessionState, full: Dataset, test_size: float):
    """Stratified train/test split. Returns (train Dataset, X_test, y_test index array)."""
    features, labels = full.snapshot()
    train = Dataset(session)
    if test_size <= 0 or len(set(labels.tolist())) < 2:
        for vector, label_id in zip(features, labels):
            train.add(vector, int(label_id))
        return train, None, None

    X_train, X_test, y_train, y_test = train_test_split(
        features, labels, test_size=test_size, random_state=42, stratify=labels
    )
    for vector, label_id in zip(X_train, y_train):
        train.add(vector, int(label_id))
    y_index = np.array([session.class_index(int(i)) for i in y_test])
    return train, X_test, y_index


def main():
    parser = argparse.ArgumentParser(description="Train a TinyTeach classifier head offline")
    parser.add_argument("--config", default="config/system_config.yaml")
    parser.add_argument("--dataset", default=None, help="Exported .npz dataset")
    parser.add_argument("--output", default="models/head.pkl")
    parser.add_argument("--mode", default=None, help="Mode whose hidden size to use")
    parser.add_argument("--test-size", type=float, default=0.2)
    args = parser.parse_args()

    with open(args.config) as f:
        config = yaml.safe_load(f)

    dataset_path = args.dataset or config["system"].get("dataset_path", "data/dataset.npz")
    if not os.path.exists(dataset_path):
        logger.error(f"No dataset at {dataset_path}. Collect samples and press 's' first.")
        return

    logger.info("=" * 55)
    logger.info("  TinyTeach — Offline Training")
    logger.info("=" * 55)

    session = SessionState()
    full = Dataset(session)
    full.load(dataset_path)
    train, X_test, y_test = split_dataset(session, full, args.test_size)

    coordinator = TrainingCoordinator(session, train, config.get("training"))
    if args.mode:
        hidden_units = config.get("modes", {}).get(args.mode, {}).get("hidden_units")
        if hidden_units:
            coordinator.model_factory = partial(MLPClassifierModel, hidden_units=hidden_units)
    coordinator.progress_listeners.append(
        lambda epoch, total, metrics: logger.info(f"[{epoch}/{total}] {coordinator.current_run.describe()}")
    )

    run = coordinator.train()
    logger.info(f"Run {run.status.value}: {run.describe()}")

    if X_test is not None:
        y_pred = np.array([int(np.argmax(coordinator.model.predict(x))) for x in X_test])
        acc = (y_pred == y_test).mean() * 100
        logger.info(f"Test Accuracy: {acc:.2f}%")
        logger.info("\n" + classification_report(
            y_test, y_pred,
            labels=list(range(len(session.classes))),
            target_names=session.class_names,
            zero_division=0,
        ))

    os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
    coordinator.model.save(args.output, session.class_names)
    logger.info("=" * 55)
    logger.info(f"  ✅ Training complete! Model: {args.output}")
    logger.info("=" * 55)


if __name__ == "__main__":
    main()
